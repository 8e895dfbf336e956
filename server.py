"""
MCP Server for Fastmail Mail, Contacts and Calendar
===================================================

This module implements a Model Context Protocol (MCP) server that exposes
a Fastmail account as tools.  Mail, identities, contacts and calendars
are reached through Fastmail's JMAP API; calendars can alternatively be
served over CalDAV when an app password is configured.  The server uses
the `fastmcp` framework to handle the protocol machinery.  Each function
decorated with `@mcp.tool()` becomes a callable tool and is automatically
registered with the MCP runtime.

**Prerequisites**

* `fastmcp` - simplifies building MCP servers and clients.
* `requests` - HTTP transport for JMAP.
* `caldav` and `icalendar` - CalDAV access and event serialization.
* `python-dotenv` - loads environment variables from a `.env` file.

```bash
pip install -e .
```

Create an API token under Fastmail Settings > Privacy & Security >
Connected Apps & API tokens and set ``FASTMAIL_API_TOKEN``.  For CalDAV
calendars also set ``FASTMAIL_CALDAV_USERNAME`` and
``FASTMAIL_CALDAV_API_TOKEN`` (an app password with CalDAV access).  See
:mod:`config` for every supported variable.

**Functionality**

* **Mail:** list mailboxes and their statistics, list, search and fetch
  emails, follow threads, send mail, mark read/unread, move and delete
  (to Trash), singly or in bulk, and resolve attachment download URLs.
* **Identities:** list the addresses the account may send from.
* **Contacts:** list, search and fetch contact cards.
* **Calendar:** list calendars and events, fetch single events and create
  new ones.

All tools return their results as structured content (JSON objects)
under the ``structuredContent`` field of the MCP tool result.  The JSON is
also serialized into a text block in the ``content`` field.

**Security considerations**

The API token grants read/write access to your mail.  The default stdio
transport only talks to the local MCP host.  If you switch to the HTTP
transport, keep it bound to localhost or place it behind an
authenticating reverse proxy.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

import requests
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.tools.tool import ToolResult
from mcp.types import TextContent
from starlette.requests import Request
from starlette.responses import PlainTextResponse

from caldav_client import CalDavCalendarClient
from config import (
    MCP_TRANSPORT,
    SERVER_HOST,
    SERVER_PORT,
    ConfigError,
    TOKEN_KEYS,
    find_env_value,
    load_caldav_settings,
    load_jmap_settings,
    mask_secret,
)
from contacts_calendar import ENABLEMENT_DOCS, ContactsCalendarClient
from jmap_client import CALENDARS_CAPABILITY, CONTACTS_CAPABILITY, JmapClient, JmapError

# Logging goes to stderr, which keeps the stdio transport clean.
logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
log = logging.getLogger("fastmail-mcp")

ATTACHMENT_ERROR = "Attachment download failed. Verify emailId and attachmentId and try again."
BULK_TEST_MAX = 10
BULK_TEST_DELAY_SECONDS = 0.5

EMAIL_TOOLS = [
    "list_mailboxes", "list_emails", "get_email", "send_email", "search_emails",
    "get_recent_emails", "mark_email_read", "delete_email", "move_email",
    "get_email_attachments", "download_attachment", "advanced_search", "get_thread",
    "get_mailbox_stats", "get_account_summary", "bulk_mark_read", "bulk_move", "bulk_delete",
]
CONTACT_TOOLS = ["list_contacts", "get_contact", "search_contacts"]
CALENDAR_TOOLS = ["list_calendars", "list_calendar_events", "get_calendar_event", "create_calendar_event"]


# ---------------------------------------------------------------------------
#  Backend handles
#
# Each client is built on first use and then reused, so the JMAP session
# is discovered (and the CalDAV principal fetched) once per process.
# ---------------------------------------------------------------------------


class Backends:
    """Lazily constructed backend clients shared by every tool call."""

    def __init__(self) -> None:
        self._jmap: Optional[JmapClient] = None
        self._contacts_calendar: Optional[ContactsCalendarClient] = None
        self._caldav: Optional[CalDavCalendarClient] = None
        self._caldav_checked = False

    def jmap(self) -> JmapClient:
        if self._jmap is None:
            self._jmap = JmapClient(load_jmap_settings())
        return self._jmap

    def contacts_calendar(self) -> ContactsCalendarClient:
        if self._contacts_calendar is None:
            self._contacts_calendar = ContactsCalendarClient(load_jmap_settings())
        return self._contacts_calendar

    def caldav(self) -> Optional[CalDavCalendarClient]:
        """Return the CalDAV client, or None when CalDAV is not configured."""
        if not self._caldav_checked:
            settings = load_caldav_settings()
            if settings is not None:
                self._caldav = CalDavCalendarClient(settings)
                log.info("CalDAV calendars enabled for %s", settings.username)
            self._caldav_checked = True
        return self._caldav


backends = Backends()


# ---------------------------------------------------------------------------
#  MCP Server
# ---------------------------------------------------------------------------

mcp = FastMCP("fastmail-mcp", instructions=(
    "This server exposes a Fastmail account (mail, identities, contacts "
    "and calendars) via the Model Context Protocol.  Use list_mailboxes "
    "to discover mailbox ids before listing or moving email.  Dates are "
    "ISO 8601 (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS, optionally with Z or an "
    "offset).  Call check_function_availability to see whether contacts "
    "and calendars are enabled for this account."
))


@mcp.custom_route("/health", methods=["GET"])
async def health(_: Request) -> PlainTextResponse:
    """Simple health check for infrastructure monitoring."""
    return PlainTextResponse("OK")


def _tool_result(payload: Dict[str, Any], *, text: Optional[str] = None) -> ToolResult:
    """Create a ToolResult that keeps both summary text and JSON detail."""
    blocks: List[TextContent] = []
    if text:
        blocks.append(TextContent(type="text", text=text))
    blocks.append(TextContent(type="text", text=json.dumps(payload, indent=2, sort_keys=True, default=str)))
    return ToolResult(content=blocks, structured_content=payload)


def _require(condition: Any, message: str) -> None:
    if not condition:
        raise ToolError(message)


@contextmanager
def _backend_errors(tool: str, message: Optional[str] = None) -> Iterator[None]:
    """
    Convert backend failures raised inside the block into ``ToolError``.

    Configuration problems keep their own message.  Everything else is
    reported as ``Tool execution failed: ...`` unless ``message`` replaces
    it outright.
    """
    try:
        yield
    except ToolError:
        raise
    except ConfigError as exc:
        log.error("%s configuration error: %s", tool, exc)
        raise ToolError(str(exc)) from exc
    except Exception as exc:
        log.error("%s error: %s", tool, exc)
        raise ToolError(message or f"Tool execution failed: {exc}") from exc


def _now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


# ---------------------------------------------------------------------------
#  Mail Tools
# ---------------------------------------------------------------------------


@mcp.tool()
def list_mailboxes() -> ToolResult:
    """
    List all mailboxes in the account.

    Each mailbox carries its JMAP ``id`` (used by the other tools),
    ``name``, ``role`` (``inbox``, ``sent``, ``drafts``, ``trash``, ...),
    ``parentId`` and message counts.
    """
    with _backend_errors("list_mailboxes"):
        mailboxes = backends.jmap().get_mailboxes()
    return _tool_result({"mailboxes": mailboxes}, text=f"{len(mailboxes)} mailbox(es)")


@mcp.tool()
def list_emails(mailboxId: Optional[str] = None, limit: int = 20) -> ToolResult:
    """
    List emails, newest first.

    Args:
        mailboxId: Mailbox to list (optional, defaults to all mail).
        limit: Maximum number of emails to return (default 20, max 100).
    """
    with _backend_errors("list_emails"):
        emails = backends.jmap().get_emails(mailboxId, limit)
    return _tool_result({"emails": emails}, text=f"{len(emails)} email(s)")


@mcp.tool()
def get_email(emailId: str) -> ToolResult:
    """
    Fetch one email including its text and HTML body values and
    attachment metadata.

    Args:
        emailId: JMAP id of the email.
    """
    _require(emailId, "emailId is required")
    with _backend_errors("get_email"):
        message = backends.jmap().get_email_by_id(emailId)
    return _tool_result({"email": message})


@mcp.tool()
def send_email(
    to: List[str],
    subject: str,
    textBody: Optional[str] = None,
    htmlBody: Optional[str] = None,
    cc: Optional[List[str]] = None,
    bcc: Optional[List[str]] = None,
    fromAddress: Optional[str] = None,
    mailboxId: Optional[str] = None,
) -> ToolResult:
    """
    Send an email.

    The message is created as a draft and submitted in the same JMAP
    request; once delivered it is filed under Sent and marked read.

    Args:
        to: Recipient addresses (at least one).
        subject: Subject line.
        textBody: Plain text body.
        htmlBody: HTML body.  At least one of ``textBody``/``htmlBody``
            is required.
        cc: CC addresses (optional).
        bcc: BCC addresses (optional).
        fromAddress: Sender address.  Must match one of the account's
            sending identities; defaults to the primary identity.
        mailboxId: Mailbox to create the draft in (defaults to Drafts).

    Returns: ``{"submissionId": ...}``.
    """
    _require(to, "to field is required and must be a non-empty array")
    _require(subject, "subject is required")
    _require(textBody or htmlBody, "Either textBody or htmlBody is required")
    with _backend_errors("send_email"):
        submission_id = backends.jmap().send_email(
            to=to,
            subject=subject,
            text_body=textBody,
            html_body=htmlBody,
            cc=cc,
            bcc=bcc,
            from_address=fromAddress,
            mailbox_id=mailboxId,
        )
    return _tool_result(
        {"submissionId": submission_id},
        text=f"Email sent successfully. Submission ID: {submission_id}",
    )


@mcp.tool()
def search_emails(query: str, limit: int = 20) -> ToolResult:
    """
    Full-text search across subject and body.

    Args:
        query: Text to search for.
        limit: Maximum number of results (default 20, max 100).
    """
    _require(query, "query is required")
    with _backend_errors("search_emails"):
        emails = backends.jmap().search_emails(query, limit)
    return _tool_result({"emails": emails}, text=f"{len(emails)} email(s)")


@mcp.tool()
def get_recent_emails(limit: int = 10, mailboxName: str = "inbox") -> ToolResult:
    """
    Most recent emails from one mailbox.

    Args:
        limit: Number of emails (default 10, max 50).
        mailboxName: Mailbox role or a substring of its name (default
            ``inbox``).
    """
    with _backend_errors("get_recent_emails"):
        emails = backends.jmap().get_recent_emails(limit, mailboxName)
    return _tool_result({"emails": emails}, text=f"{len(emails)} email(s)")


@mcp.tool()
def mark_email_read(emailId: str, read: bool = True) -> ToolResult:
    """
    Mark an email as read or unread.

    Args:
        emailId: JMAP id of the email.
        read: True for read (default), False for unread.
    """
    _require(emailId, "emailId is required")
    with _backend_errors("mark_email_read"):
        backends.jmap().mark_email_read(emailId, read)
    state = "read" if read else "unread"
    return _tool_result({"emailId": emailId, "read": read}, text=f"Email marked as {state} successfully")


@mcp.tool()
def delete_email(emailId: str) -> ToolResult:
    """Delete an email by moving it to Trash."""
    _require(emailId, "emailId is required")
    with _backend_errors("delete_email"):
        backends.jmap().delete_email(emailId)
    return _tool_result({"emailId": emailId, "deleted": True}, text="Email deleted successfully (moved to trash)")


@mcp.tool()
def move_email(emailId: str, targetMailboxId: str) -> ToolResult:
    """
    Move an email into another mailbox.

    Args:
        emailId: JMAP id of the email.
        targetMailboxId: Destination mailbox id from ``list_mailboxes``.
    """
    _require(emailId and targetMailboxId, "emailId and targetMailboxId are required")
    with _backend_errors("move_email"):
        backends.jmap().move_email(emailId, targetMailboxId)
    return _tool_result(
        {"emailId": emailId, "mailboxId": targetMailboxId},
        text="Email moved successfully",
    )


@mcp.tool()
def get_email_attachments(emailId: str) -> ToolResult:
    """List the attachments of an email (``partId``, ``blobId``, ``name``, ``type``, ``size``)."""
    _require(emailId, "emailId is required")
    with _backend_errors("get_email_attachments"):
        attachments = backends.jmap().get_email_attachments(emailId)
    return _tool_result({"attachments": attachments}, text=f"{len(attachments)} attachment(s)")


@mcp.tool()
def download_attachment(emailId: str, attachmentId: str) -> ToolResult:
    """
    Resolve an attachment to an authenticated download URL.

    Args:
        emailId: JMAP id of the email.
        attachmentId: The attachment's ``partId`` or ``blobId`` from
            ``get_email_attachments``, or its zero-based index.

    Returns: ``{"downloadUrl": ...}``.  The URL requires the same bearer
    token as the API.
    """
    _require(emailId and attachmentId, "emailId and attachmentId are required")
    with _backend_errors("download_attachment", message=ATTACHMENT_ERROR):
        url = backends.jmap().download_attachment(emailId, attachmentId)
    return _tool_result({"downloadUrl": url}, text=f"Download URL: {url}")


@mcp.tool()
def advanced_search(
    query: Optional[str] = None,
    fromAddress: Optional[str] = None,
    to: Optional[str] = None,
    subject: Optional[str] = None,
    hasAttachment: Optional[bool] = None,
    isUnread: Optional[bool] = None,
    mailboxId: Optional[str] = None,
    after: Optional[str] = None,
    before: Optional[str] = None,
    limit: int = 50,
) -> ToolResult:
    """
    Search email with several criteria at once.  All criteria are
    optional and combined with AND.

    Args:
        query: Text to search for in subject and body.
        fromAddress: Sender address.
        to: Recipient address.
        subject: Subject text.
        hasAttachment: Only mail with (True) or without (False) attachments.
        isUnread: True for unread mail only, False for read mail only.
        mailboxId: Restrict to one mailbox.
        after: Received after this ISO 8601 date-time.
        before: Received before this ISO 8601 date-time.
        limit: Maximum results (default 50, max 100).
    """
    with _backend_errors("advanced_search"):
        emails = backends.jmap().advanced_search(
            limit=limit,
            query=query,
            from_address=fromAddress,
            to=to,
            subject=subject,
            has_attachment=hasAttachment,
            is_unread=isUnread,
            mailbox_id=mailboxId,
            after=after,
            before=before,
        )
    return _tool_result({"emails": emails}, text=f"{len(emails)} email(s)")


@mcp.tool()
def get_thread(threadId: str) -> ToolResult:
    """
    All emails in a conversation thread.

    Args:
        threadId: Thread id.  An email id is also accepted and resolved to
            the thread it belongs to.
    """
    _require(threadId, "threadId is required")
    with _backend_errors("get_thread"):
        emails = backends.jmap().get_thread(threadId)
    return _tool_result({"emails": emails}, text=f"{len(emails)} email(s) in thread")


@mcp.tool()
def get_mailbox_stats(mailboxId: Optional[str] = None) -> ToolResult:
    """Email and thread counts (total and unread) for one mailbox or all of them."""
    with _backend_errors("get_mailbox_stats"):
        stats = backends.jmap().get_mailbox_stats(mailboxId)
    if mailboxId:
        return _tool_result({"mailbox": stats})
    return _tool_result({"mailboxes": stats})


@mcp.tool()
def get_account_summary() -> ToolResult:
    """Account id, mailbox and identity counts, and summed mail statistics."""
    with _backend_errors("get_account_summary"):
        summary = backends.jmap().get_account_summary()
    return _tool_result(summary)


@mcp.tool()
def bulk_mark_read(emailIds: List[str], read: bool = True) -> ToolResult:
    """
    Mark several emails read or unread in one request.

    Args:
        emailIds: Ids of the emails to update.
        read: True for read (default), False for unread.
    """
    _require(emailIds, "emailIds array is required and must not be empty")
    with _backend_errors("bulk_mark_read"):
        backends.jmap().bulk_mark_read(emailIds, read)
    state = "read" if read else "unread"
    return _tool_result(
        {"emailIds": emailIds, "read": read},
        text=f"{len(emailIds)} emails marked as {state} successfully",
    )


@mcp.tool()
def bulk_move(emailIds: List[str], targetMailboxId: str) -> ToolResult:
    """
    Move several emails into one mailbox in a single request.

    Args:
        emailIds: Ids of the emails to move.
        targetMailboxId: Destination mailbox id.
    """
    _require(emailIds, "emailIds array is required and must not be empty")
    _require(targetMailboxId, "targetMailboxId is required")
    with _backend_errors("bulk_move"):
        backends.jmap().bulk_move(emailIds, targetMailboxId)
    return _tool_result(
        {"emailIds": emailIds, "mailboxId": targetMailboxId},
        text=f"{len(emailIds)} emails moved successfully",
    )


@mcp.tool()
def bulk_delete(emailIds: List[str]) -> ToolResult:
    """Move several emails to Trash in a single request."""
    _require(emailIds, "emailIds array is required and must not be empty")
    with _backend_errors("bulk_delete"):
        backends.jmap().bulk_delete(emailIds)
    return _tool_result(
        {"emailIds": emailIds, "deleted": True},
        text=f"{len(emailIds)} emails deleted successfully (moved to trash)",
    )


@mcp.tool()
def test_bulk_operations(dryRun: bool = True, limit: int = 3) -> ToolResult:
    """
    Exercise ``bulk_mark_read`` against a few recent inbox emails.

    The test marks the emails read and then unread again.  With
    ``dryRun`` (the default) the two operations are only described.

    Args:
        dryRun: Describe the operations without performing them.
        limit: Number of emails to use (default 3, max 10).
    """
    test_limit = min(max(int(limit), 1), BULK_TEST_MAX)
    with _backend_errors("test_bulk_operations"):
        client = backends.jmap()
        emails = client.get_recent_emails(test_limit, "inbox")
    if not emails:
        return _tool_result(
            {"testEmails": [], "operations": []},
            text="No emails found for bulk operation testing. Try sending yourself a test email first.",
        )

    email_ids = [message["id"] for message in emails[:test_limit]]
    operations = [
        {
            "name": "bulk_mark_read",
            "description": f"Mark {len(email_ids)} emails as read",
            "parameters": {"emailIds": email_ids, "read": True},
        },
        {
            "name": "bulk_mark_read (undo)",
            "description": f"Mark {len(email_ids)} emails as unread (undo previous)",
            "parameters": {"emailIds": email_ids, "read": False},
        },
    ]
    results: Dict[str, Any] = {
        "dryRun": dryRun,
        "testEmails": [
            {
                "id": message.get("id"),
                "subject": message.get("subject"),
                "from": ((message.get("from") or [{}])[0] or {}).get("email") or "unknown",
                "receivedAt": message.get("receivedAt"),
            }
            for message in emails
        ],
        "operations": [],
    }

    if dryRun:
        results["operations"] = [
            {**op, "status": "DRY RUN - Would execute but not actually performed", "executed": False}
            for op in operations
        ]
        return _tool_result(
            results,
            text="BULK OPERATIONS TEST (DRY RUN). To actually execute the test, set dryRun: false",
        )

    for index, op in enumerate(operations):
        try:
            client.bulk_mark_read(op["parameters"]["emailIds"], op["parameters"]["read"])
        except (JmapError, requests.RequestException) as exc:
            log.error("test_bulk_operations %s failed: %s", op["name"], exc)
            results["operations"].append({
                **op, "status": "FAILED", "executed": False, "error": str(exc), "timestamp": _now_iso(),
            })
            continue
        results["operations"].append({**op, "status": "SUCCESS", "executed": True, "timestamp": _now_iso()})
        if index < len(operations) - 1:
            time.sleep(BULK_TEST_DELAY_SECONDS)
    return _tool_result(results, text="BULK OPERATIONS TEST (EXECUTED)")


# ---------------------------------------------------------------------------
#  Identity and availability tools
# ---------------------------------------------------------------------------


@mcp.tool()
def list_identities() -> ToolResult:
    """List sending identities (addresses this account may send from)."""
    with _backend_errors("list_identities"):
        identities = backends.jmap().get_identities()
    return _tool_result({"identities": identities}, text=f"{len(identities)} identity(ies)")


def _scope_status(available: bool, feature: str, functions: List[str]) -> Dict[str, Any]:
    status: Dict[str, Any] = {
        "available": available,
        "functions": functions,
        "note": (
            f"{feature} is available" if available
            else f"{feature} access not available - may require enabling in Fastmail account settings"
        ),
        "enablementGuide": None,
    }
    if not available:
        status["enablementGuide"] = {
            "steps": [
                "1. Log into Fastmail web interface",
                "2. Go to Settings > Privacy & Security > Connected Apps & API tokens",
                f"3. Check if {feature.lower()} scope is enabled for your API token",
                "4. If not available, you may need to upgrade your Fastmail plan or contact support",
            ],
            "documentation": ENABLEMENT_DOCS,
        }
    return status


@mcp.tool()
def check_function_availability() -> ToolResult:
    """
    Report which tool groups this account can use.

    Contacts and calendar tools over JMAP depend on the API token's
    scopes; the report includes steps to enable a missing scope.  The
    ``caldav`` entry shows whether calendar tools are served over CalDAV
    instead.
    """
    with _backend_errors("check_function_availability"):
        session = backends.jmap().get_session()
        caldav = backends.caldav()
    capabilities = session.capabilities
    payload = {
        "email": {"available": True, "functions": EMAIL_TOOLS},
        "identity": {"available": True, "functions": ["list_identities"]},
        "contacts": _scope_status(CONTACTS_CAPABILITY in capabilities, "Contacts", CONTACT_TOOLS),
        "calendar": _scope_status(
            caldav is not None or CALENDARS_CAPABILITY in capabilities, "Calendar", CALENDAR_TOOLS
        ),
        "caldav": {
            "configured": caldav is not None,
            "functions": CALENDAR_TOOLS if caldav is not None else [],
        },
        "capabilities": sorted(capabilities),
    }
    return _tool_result(payload)


# ---------------------------------------------------------------------------
#  Contact Tools
# ---------------------------------------------------------------------------


@mcp.tool()
def list_contacts(limit: int = 50) -> ToolResult:
    """
    List contact cards.

    Args:
        limit: Maximum number of contacts (default 50, max 200).
    """
    with _backend_errors("list_contacts"):
        contacts = backends.contacts_calendar().get_contacts(limit)
    return _tool_result({"contacts": contacts}, text=f"{len(contacts)} contact(s)")


@mcp.tool()
def get_contact(contactId: str) -> ToolResult:
    """Fetch one contact card by id."""
    _require(contactId, "contactId is required")
    with _backend_errors("get_contact"):
        contact = backends.contacts_calendar().get_contact_by_id(contactId)
    return _tool_result({"contact": contact})


@mcp.tool()
def search_contacts(query: str, limit: int = 20) -> ToolResult:
    """
    Search contacts by name, email or any other text.

    Args:
        query: Text to search for.
        limit: Maximum number of results (default 20, max 200).
    """
    _require(query, "query is required")
    with _backend_errors("search_contacts"):
        contacts = backends.contacts_calendar().search_contacts(query, limit)
    return _tool_result({"contacts": contacts}, text=f"{len(contacts)} contact(s)")


# ---------------------------------------------------------------------------
#  Calendar Tools
#
# CalDAV is used whenever it is configured; JMAP calendars are the
# fallback.  The two backends return different event shapes: CalDAV events
# are flattened by ics.parse_ics, JMAP events are JSCalendar objects.
# ---------------------------------------------------------------------------


@mcp.tool()
def list_calendars() -> ToolResult:
    """
    List all calendars.

    Over CalDAV each item contains ``id`` and ``url`` (the calendar URL,
    accepted by the other calendar tools), ``name``, ``color`` and
    ``description``.
    """
    with _backend_errors("list_calendars"):
        caldav = backends.caldav()
        if caldav is not None:
            calendars = caldav.get_calendars()
        else:
            calendars = backends.contacts_calendar().get_calendars()
    return _tool_result({"calendars": calendars}, text=f"{len(calendars)} calendar(s)")


@mcp.tool()
def list_calendar_events(
    calendarId: Optional[str] = None,
    limit: int = 50,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
) -> ToolResult:
    """
    List calendar events ordered by start.

    Args:
        calendarId: Calendar id, URL or display name (optional, defaults
            to all calendars).
        limit: Maximum number of events (default 50, max 500).
        startDate: Start of the range, e.g. ``2026-01-26``.
        endDate: End of the range, e.g. ``2026-02-02``.  A bare date
            covers the whole day.  The range is applied only when both
            bounds are given and only over CalDAV.
    """
    with _backend_errors("list_calendar_events"):
        caldav = backends.caldav()
        if caldav is not None:
            events = caldav.get_calendar_events(calendarId, limit, startDate, endDate)
        else:
            events = backends.contacts_calendar().get_calendar_events(calendarId, limit)
    return _tool_result({"events": events}, text=f"{len(events)} event(s)")


@mcp.tool()
def get_calendar_event(eventId: str) -> ToolResult:
    """
    Fetch one calendar event.

    Args:
        eventId: Event UID (or calendar object URL) over CalDAV, JMAP
            event id otherwise.
    """
    _require(eventId, "eventId is required")
    with _backend_errors("get_calendar_event"):
        caldav = backends.caldav()
        if caldav is not None:
            event = caldav.get_calendar_event_by_id(eventId)
        else:
            event = backends.contacts_calendar().get_calendar_event_by_id(eventId)
    return _tool_result({"event": event})


@mcp.tool()
def create_calendar_event(
    calendarId: str,
    title: str,
    start: str,
    end: str,
    description: Optional[str] = None,
    location: Optional[str] = None,
    participants: Optional[List[Dict[str, str]]] = None,
) -> ToolResult:
    """
    Create a calendar event.

    Args:
        calendarId: Target calendar (id, URL or display name).
        title: Event title.
        start: ISO 8601 start.  A trailing ``Z`` or offset is converted to
            UTC; without one the time is floating.  A bare date creates an
            all-day event over CalDAV.
        end: ISO 8601 end, not before ``start``.
        description: Event description (optional).
        location: Event location (optional).
        participants: List of ``{"email": ..., "name": ...}`` attendees
            (optional).

    Returns: ``{"eventId": ...}``.
    """
    _require(calendarId and title and start and end, "calendarId, title, start, and end are required")
    with _backend_errors("create_calendar_event"):
        caldav = backends.caldav()
        if caldav is not None:
            event_id = caldav.create_calendar_event(
                calendarId, title, start, end, description, location, participants
            )
        else:
            event_id = backends.contacts_calendar().create_calendar_event(
                calendarId, title, start, end, description, location, participants
            )
    return _tool_result(
        {"eventId": event_id},
        text=f"Calendar event created successfully. Event ID: {event_id}",
    )


# ---------------------------------------------------------------------------
#  Server entry point
# ---------------------------------------------------------------------------

if __name__ == '__main__':
    token = find_env_value(TOKEN_KEYS)
    log.info(
        "Starting Fastmail MCP server (transport=%s, token=%s, CalDAV=%s)",
        MCP_TRANSPORT,
        mask_secret(token.value) if token.value else "missing",
        "configured" if load_caldav_settings() else "not configured",
    )
    if MCP_TRANSPORT == "http":
        mcp.run(transport='http', host=SERVER_HOST, port=SERVER_PORT, path='/mcp')
    else:
        mcp.run()
