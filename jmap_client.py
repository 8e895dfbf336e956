"""
Fastmail JMAP client (RFC 8620 core, RFC 8621 mail).

JMAP sends every operation as a batch of method calls POSTed to a single
API endpoint.  Calls inside one batch can consume an earlier call's result
through a *result reference*: an argument key prefixed with ``#`` whose
value names the earlier call id and a JSON pointer into its result.  The
server resolves those references itself, so a query followed by a fetch
(or a create followed by a submission) costs one HTTP round trip.

The building blocks are:

* :class:`ResultReference` - the ``{"resultOf", "name", "path"}`` marker.
* :class:`MethodCall` - a ``[name, arguments, callId]`` triple.
* :class:`JmapRequest` - an ordered batch plus its ``using`` capabilities.
* :class:`JmapResponse` - the ordered ``methodResponses``; entry *i*
  answers call *i*.

:class:`JmapClient` owns the memoized session and implements the mail
operations on top of those pieces.  Transport failures raise
:class:`JmapError`; per-object failures reported inside a successful
response (``notFound``, ``notUpdated``, ``notCreated``) are checked by
each operation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
from urllib.parse import quote, urljoin

import requests

from config import JmapSettings

log = logging.getLogger("fastmail-mcp.jmap")

CORE_CAPABILITY = "urn:ietf:params:jmap:core"
MAIL_CAPABILITY = "urn:ietf:params:jmap:mail"
SUBMISSION_CAPABILITY = "urn:ietf:params:jmap:submission"
CONTACTS_CAPABILITY = "urn:ietf:params:jmap:contacts"
CALENDARS_CAPABILITY = "urn:ietf:params:jmap:calendars"

MAIL_USING = (CORE_CAPABILITY, MAIL_CAPABILITY)

# Hard ceilings applied to caller supplied limits before transmission.
EMAIL_LIST_MAX = 100
RECENT_EMAILS_MAX = 50
SEARCH_MAX = 100

EMAIL_SUMMARY_PROPERTIES = ["id", "subject", "from", "to", "receivedAt", "preview", "hasAttachment"]
EMAIL_SEARCH_PROPERTIES = [
    "id", "subject", "from", "to", "cc", "receivedAt", "preview",
    "hasAttachment", "keywords", "threadId",
]
MAILBOX_STATS_PROPERTIES = ["id", "name", "role", "totalEmails", "unreadEmails", "totalThreads", "unreadThreads"]

DEFAULT_USER_EMAIL = "user@example.com"


# ---------------------------------------------------------------------------
#  Errors
# ---------------------------------------------------------------------------


class JmapError(Exception):
    """A JMAP request could not be completed."""

    error_type: str = "serverError"

    def __init__(self, reason: str, url: Optional[str] = None, error_type: Optional[str] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.url = url
        if error_type is not None:
            self.error_type = error_type


class JmapAuthError(JmapError):
    """HTTP 401 or 403 from the session or API endpoint."""

    error_type = "forbidden"


class JmapMethodError(JmapError):
    """A method call came back as an ``error`` response (RFC 8620 §3.6.2)."""


class JmapCapabilityError(JmapError):
    """The account does not advertise a capability an operation needs."""

    error_type = "capabilityNotSupported"


# ---------------------------------------------------------------------------
#  Request / response model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResultReference:
    """Back-reference to ``path`` inside the result of call ``result_of``."""

    result_of: str
    name: str
    path: str

    def to_jmap(self) -> Dict[str, str]:
        return {"resultOf": self.result_of, "name": self.name, "path": self.path}


@dataclass
class MethodCall:
    name: str
    arguments: Dict[str, Any]
    call_id: str

    def ref(self, path: str) -> ResultReference:
        """Reference ``path`` (a JSON pointer) in this call's result."""
        return ResultReference(result_of=self.call_id, name=self.name, path=path)

    def to_jmap(self) -> List[Any]:
        arguments: Dict[str, Any] = {}
        for key, value in self.arguments.items():
            if isinstance(value, ResultReference):
                arguments[f"#{key}"] = value.to_jmap()
            else:
                arguments[key] = value
        return [self.name, arguments, self.call_id]


class JmapRequest:
    """An ordered batch of method calls sent in one round trip."""

    def __init__(self, using: Iterable[str] = MAIL_USING) -> None:
        self.using: List[str] = list(dict.fromkeys([CORE_CAPABILITY, *using]))
        self.method_calls: List[MethodCall] = []

    def add(self, name: str, arguments: Dict[str, Any], call_id: str) -> MethodCall:
        if any(call.call_id == call_id for call in self.method_calls):
            raise ValueError(f"Duplicate call id in JMAP request: {call_id}")
        call = MethodCall(name=name, arguments=arguments, call_id=call_id)
        self.method_calls.append(call)
        return call

    def __len__(self) -> int:
        return len(self.method_calls)

    def to_jmap(self) -> Dict[str, Any]:
        return {
            "using": list(self.using),
            "methodCalls": [call.to_jmap() for call in self.method_calls],
        }


@dataclass
class JmapResponse:
    method_responses: List[Tuple[str, Dict[str, Any], str]] = field(default_factory=list)
    session_state: str = ""

    @classmethod
    def from_jmap(cls, data: Dict[str, Any]) -> "JmapResponse":
        responses = [tuple(entry) for entry in data.get("methodResponses", [])]
        return cls(method_responses=responses, session_state=data.get("sessionState", ""))  # type: ignore[arg-type]

    def results_for(self, request: JmapRequest) -> List[Dict[str, Any]]:
        """
        Return one result object per call in ``request``, in call order.

        Responses are matched by position.  A server may follow a response
        with implicit responses carrying the same call id (for example the
        ``Email/set`` triggered by ``onSuccessUpdateEmail``); those are
        skipped so later calls stay aligned.
        """
        results: List[Dict[str, Any]] = []
        position = 0
        previous_id: Optional[str] = None
        for call in request.method_calls:
            while (
                position < len(self.method_responses)
                and self.method_responses[position][2] == previous_id
            ):
                position += 1
            if position >= len(self.method_responses):
                raise JmapError(f"Missing response for method call '{call.call_id}' ({call.name})")
            name, result, call_id = self.method_responses[position]
            if call_id != call.call_id:
                raise JmapError(
                    f"Response {position} answers call '{call_id}', expected '{call.call_id}'"
                )
            if name == "error":
                raise JmapMethodError(
                    f"{call.name} failed: {result}",
                    error_type=result.get("type", "serverError"),
                )
            results.append(result)
            previous_id = call.call_id
            position += 1
        return results


def clamp_limit(limit: Optional[int], ceiling: int, default: int) -> int:
    """Bound a caller supplied limit to ``[1, ceiling]``."""
    if limit is None:
        return min(default, ceiling)
    return max(1, min(int(limit), ceiling))


def find_mailbox(mailboxes: List[Dict[str, Any]], role: str) -> Optional[Dict[str, Any]]:
    """Find a mailbox by JMAP role, falling back to a name substring match."""
    for mailbox in mailboxes:
        if mailbox.get("role") == role:
            return mailbox
    for mailbox in mailboxes:
        if role in (mailbox.get("name") or "").lower():
            return mailbox
    return None


def _seen_patch(read: bool) -> Dict[str, Any]:
    # Patch only the $seen keyword; other flags and labels stay as they are.
    return {"keywords/$seen": True if read else None}


def build_email_filter(
    *,
    query: Optional[str] = None,
    from_address: Optional[str] = None,
    to: Optional[str] = None,
    subject: Optional[str] = None,
    has_attachment: Optional[bool] = None,
    is_unread: Optional[bool] = None,
    mailbox_id: Optional[str] = None,
    after: Optional[str] = None,
    before: Optional[str] = None,
) -> Dict[str, Any]:
    """Translate search options into a JMAP ``FilterCondition``.

    ``is_unread=True`` selects mail without ``$seen``; ``False`` selects mail
    with it; ``None`` leaves read state unconstrained.
    """
    condition: Dict[str, Any] = {}
    if query:
        condition["text"] = query
    if from_address:
        condition["from"] = from_address
    if to:
        condition["to"] = to
    if subject:
        condition["subject"] = subject
    if has_attachment is not None:
        condition["hasAttachment"] = has_attachment
    if is_unread is True:
        condition["notKeyword"] = "$seen"
    elif is_unread is False:
        condition["hasKeyword"] = "$seen"
    if mailbox_id:
        condition["inMailbox"] = mailbox_id
    if after:
        condition["after"] = after
    if before:
        condition["before"] = before
    return condition


@dataclass(frozen=True)
class Session:
    """The parts of the JMAP Session object this server uses."""

    api_url: str
    account_id: str
    capabilities: Dict[str, Any] = field(default_factory=dict)
    download_url: Optional[str] = None
    upload_url: Optional[str] = None
    state: str = ""


def parse_session(url: str, data: Dict[str, Any], account_override: Optional[str] = None) -> Session:
    """Build a :class:`Session` from the session resource JSON.

    The account id is the explicit override if given, else the primary mail
    account, else the first listed account.
    """
    api_url = data.get("apiUrl")
    if not api_url:
        raise JmapError("Session response missing 'apiUrl'", url=url)
    accounts = data.get("accounts") or {}
    account_id = (
        account_override
        or (data.get("primaryAccounts") or {}).get(MAIL_CAPABILITY)
        or next(iter(accounts), None)
    )
    if not account_id:
        raise JmapError("Session response lists no accounts", url=url)
    return Session(
        api_url=urljoin(url, api_url),
        account_id=account_id,
        capabilities=data.get("capabilities") or {},
        download_url=data.get("downloadUrl"),
        upload_url=data.get("uploadUrl"),
        state=data.get("state", ""),
    )


def _check_status(response: Any, url: str, what: str) -> None:
    status = response.status_code
    if status in (401, 403):
        raise JmapAuthError(f"{what}: HTTP {status}", url=url)
    if not 200 <= status < 300:
        raise JmapError(f"{what}: HTTP {status} {getattr(response, 'reason', '') or ''}".rstrip(), url=url)


# ---------------------------------------------------------------------------
#  Client
# ---------------------------------------------------------------------------


class JmapClient:
    """Bearer-token JMAP client with a lazily fetched, memoized session."""

    def __init__(self, settings: JmapSettings, http: Optional[requests.Session] = None) -> None:
        self.settings = settings
        self._http = http if http is not None else requests.Session()
        self._http.headers.update({
            "Authorization": f"Bearer {settings.api_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        })
        self._session: Optional[Session] = None

    # ------------------------------------------------------------ transport

    def get_session(self) -> Session:
        if self._session is not None:
            return self._session
        url = self.settings.session_url
        response = self._http.get(url, timeout=self.settings.timeout)
        _check_status(response, url, "Failed to get session")
        self._session = parse_session(url, response.json(), self.settings.account_id)
        log.info("JMAP session established for account %s", self._session.account_id)
        return self._session

    def make_request(self, request: JmapRequest) -> JmapResponse:
        """POST a batch and return its responses.  Any non-2xx status fails the batch."""
        session = self.get_session()
        log.debug("JMAP POST to %s: %d method call(s)", session.api_url, len(request))
        response = self._http.post(session.api_url, json=request.to_jmap(), timeout=self.settings.timeout)
        _check_status(response, session.api_url, "JMAP request failed")
        return JmapResponse.from_jmap(response.json())

    def call(self, request: JmapRequest) -> List[Dict[str, Any]]:
        """Execute ``request`` and return the result objects in call order."""
        return self.make_request(request).results_for(request)

    def _new_request(self, *capabilities: str) -> Tuple[JmapRequest, str]:
        session = self.get_session()
        return JmapRequest(using=capabilities or MAIL_USING), session.account_id

    def _query_then_get(
        self,
        condition: Dict[str, Any],
        limit: int,
        properties: List[str],
    ) -> List[Dict[str, Any]]:
        request, account_id = self._new_request(*MAIL_USING)
        query = request.add("Email/query", {
            "accountId": account_id,
            "filter": condition,
            "sort": [{"property": "receivedAt", "isAscending": False}],
            "limit": limit,
        }, "query")
        request.add("Email/get", {
            "accountId": account_id,
            "ids": query.ref("/ids"),
            "properties": properties,
        }, "emails")
        return self.call(request)[1].get("list", [])

    def _update_emails(self, updates: Dict[str, Dict[str, Any]], call_id: str) -> Dict[str, Any]:
        request, account_id = self._new_request(*MAIL_USING)
        request.add("Email/set", {"accountId": account_id, "update": updates}, call_id)
        return self.call(request)[0]

    # ------------------------------------------------------------ mailboxes

    def get_mailboxes(self) -> List[Dict[str, Any]]:
        request, account_id = self._new_request(*MAIL_USING)
        request.add("Mailbox/get", {"accountId": account_id}, "mailboxes")
        return self.call(request)[0].get("list", [])

    def _require_mailbox(self, role: str, label: str) -> Dict[str, Any]:
        mailbox = find_mailbox(self.get_mailboxes(), role)
        if mailbox is None:
            raise JmapError(f"Could not find {label} mailbox")
        return mailbox

    def get_mailbox_stats(self, mailbox_id: Optional[str] = None) -> Union[Dict[str, Any], List[Dict[str, Any]], None]:
        if mailbox_id:
            request, account_id = self._new_request(*MAIL_USING)
            request.add("Mailbox/get", {
                "accountId": account_id,
                "ids": [mailbox_id],
                "properties": MAILBOX_STATS_PROPERTIES,
            }, "mailbox")
            found = self.call(request)[0].get("list", [])
            return found[0] if found else None
        return [
            {
                "id": mb.get("id"),
                "name": mb.get("name"),
                "role": mb.get("role"),
                "totalEmails": mb.get("totalEmails") or 0,
                "unreadEmails": mb.get("unreadEmails") or 0,
                "totalThreads": mb.get("totalThreads") or 0,
                "unreadThreads": mb.get("unreadThreads") or 0,
            }
            for mb in self.get_mailboxes()
        ]

    def get_account_summary(self) -> Dict[str, Any]:
        session = self.get_session()
        mailboxes = self.get_mailboxes()
        identities = self.get_identities()
        totals = {"totalEmails": 0, "unreadEmails": 0, "totalThreads": 0, "unreadThreads": 0}
        for mb in mailboxes:
            for key in totals:
                totals[key] += mb.get(key) or 0
        return {
            "accountId": session.account_id,
            "mailboxCount": len(mailboxes),
            "identityCount": len(identities),
            **totals,
            "mailboxes": [
                {
                    "id": mb.get("id"),
                    "name": mb.get("name"),
                    "role": mb.get("role"),
                    "totalEmails": mb.get("totalEmails") or 0,
                    "unreadEmails": mb.get("unreadEmails") or 0,
                }
                for mb in mailboxes
            ],
        }

    # --------------------------------------------------------------- emails

    def get_emails(self, mailbox_id: Optional[str] = None, limit: Optional[int] = 20) -> List[Dict[str, Any]]:
        condition = {"inMailbox": mailbox_id} if mailbox_id else {}
        return self._query_then_get(condition, clamp_limit(limit, EMAIL_LIST_MAX, 20), EMAIL_SUMMARY_PROPERTIES)

    def search_emails(self, query: str, limit: Optional[int] = 20) -> List[Dict[str, Any]]:
        return self._query_then_get({"text": query}, clamp_limit(limit, SEARCH_MAX, 20), EMAIL_SUMMARY_PROPERTIES)

    def get_email_by_id(self, email_id: str) -> Dict[str, Any]:
        request, account_id = self._new_request(*MAIL_USING)
        request.add("Email/get", {
            "accountId": account_id,
            "ids": [email_id],
            "properties": [
                "id", "threadId", "mailboxIds", "keywords", "subject", "from", "to", "cc", "bcc",
                "replyTo", "receivedAt", "textBody", "htmlBody", "attachments", "bodyValues",
            ],
            "bodyProperties": ["partId", "blobId", "type", "size", "name"],
            "fetchTextBodyValues": True,
            "fetchHTMLBodyValues": True,
        }, "email")
        result = self.call(request)[0]
        if email_id in (result.get("notFound") or []):
            raise JmapError(f"Email with ID '{email_id}' not found")
        found = result.get("list") or []
        if not found:
            raise JmapError(f"Email with ID '{email_id}' not found or not accessible")
        return found[0]

    def get_recent_emails(self, limit: Optional[int] = 10, mailbox_name: str = "inbox") -> List[Dict[str, Any]]:
        wanted = (mailbox_name or "inbox").lower()
        target = None
        for mb in self.get_mailboxes():
            if mb.get("role") == wanted or wanted in (mb.get("name") or "").lower():
                target = mb
                break
        if target is None:
            raise JmapError(f"Could not find mailbox: {mailbox_name}")
        return self._query_then_get(
            {"inMailbox": target["id"]},
            clamp_limit(limit, RECENT_EMAILS_MAX, 10),
            EMAIL_SUMMARY_PROPERTIES + ["keywords"],
        )

    def advanced_search(self, *, limit: Optional[int] = None, **criteria: Any) -> List[Dict[str, Any]]:
        """Search with structured criteria; see :func:`build_email_filter`."""
        return self._query_then_get(
            build_email_filter(**criteria),
            clamp_limit(limit, SEARCH_MAX, 50),
            EMAIL_SEARCH_PROPERTIES,
        )

    def get_thread(self, thread_id: str) -> List[Dict[str, Any]]:
        """Return the emails of a thread.  An email id is accepted as well."""
        actual_thread_id = thread_id
        request, account_id = self._new_request(*MAIL_USING)
        request.add("Email/get", {"accountId": account_id, "ids": [thread_id], "properties": ["threadId"]}, "checkEmail")
        try:
            found = self.call(request)[0].get("list") or []
        except JmapError as exc:
            log.debug("Thread id lookup via Email/get failed, using id as-is: %s", exc)
            found = []
        if found and found[0].get("threadId"):
            actual_thread_id = found[0]["threadId"]

        request, account_id = self._new_request(*MAIL_USING)
        thread = request.add("Thread/get", {"accountId": account_id, "ids": [actual_thread_id]}, "getThread")
        request.add("Email/get", {
            "accountId": account_id,
            "ids": thread.ref("/list/*/emailIds"),
            "properties": EMAIL_SEARCH_PROPERTIES,
        }, "emails")
        thread_result, emails_result = self.call(request)
        if actual_thread_id in (thread_result.get("notFound") or []):
            raise JmapError(f"Thread with ID '{actual_thread_id}' not found")
        return emails_result.get("list", [])

    # ------------------------------------------------------------ identities

    def get_identities(self) -> List[Dict[str, Any]]:
        request, account_id = self._new_request(SUBMISSION_CAPABILITY)
        request.add("Identity/get", {"accountId": account_id}, "identities")
        return self.call(request)[0].get("list", [])

    def get_default_identity(self) -> Optional[Dict[str, Any]]:
        identities = self.get_identities()
        for identity in identities:
            if identity.get("mayDelete") is False:
                return identity
        return identities[0] if identities else None

    def get_user_email(self) -> str:
        try:
            identity = self.get_default_identity()
        except (JmapError, requests.RequestException) as exc:
            log.warning("Identity/get unavailable, using placeholder address: %s", exc)
            return DEFAULT_USER_EMAIL
        return (identity or {}).get("email") or DEFAULT_USER_EMAIL

    # --------------------------------------------------------------- sending

    def send_email(
        self,
        to: List[str],
        subject: str,
        text_body: Optional[str] = None,
        html_body: Optional[str] = None,
        cc: Optional[List[str]] = None,
        bcc: Optional[List[str]] = None,
        from_address: Optional[str] = None,
        mailbox_id: Optional[str] = None,
    ) -> str:
        """
        Create a draft, submit it and file it under Sent in one batch.

        The ``EmailSubmission/set`` call references the draft created by
        the preceding ``Email/set`` call (``#draft``); on successful
        submission the server moves the email to the Sent mailbox and
        marks it seen.  Returns the submission id.
        """
        if not text_body and not html_body:
            raise ValueError("Either textBody or htmlBody must be provided")

        identities = self.get_identities()
        if not identities:
            raise JmapError("No sending identities found")
        if from_address:
            wanted = from_address.lower()
            identity = next((i for i in identities if (i.get("email") or "").lower() == wanted), None)
            if identity is None:
                raise JmapError("From address is not verified for sending. Choose one of your verified identities.")
        else:
            identity = next((i for i in identities if i.get("mayDelete") is False), identities[0])
        from_email = identity["email"]

        mailboxes = self.get_mailboxes()
        drafts = find_mailbox(mailboxes, "drafts")
        sent = find_mailbox(mailboxes, "sent")
        if drafts is None:
            raise JmapError("Could not find Drafts mailbox to save email")
        if sent is None:
            raise JmapError("Could not find Sent mailbox to move email after sending")

        body_values: Dict[str, Dict[str, str]] = {}
        draft: Dict[str, Any] = {
            "mailboxIds": {mailbox_id or drafts["id"]: True},
            "keywords": {"$draft": True},
            "from": [{"email": from_email}],
            "to": [{"email": addr} for addr in to],
            "cc": [{"email": addr} for addr in cc or []],
            "bcc": [{"email": addr} for addr in bcc or []],
            "subject": subject,
        }
        if text_body:
            draft["textBody"] = [{"partId": "text", "type": "text/plain"}]
            body_values["text"] = {"value": text_body}
        if html_body:
            draft["htmlBody"] = [{"partId": "html", "type": "text/html"}]
            body_values["html"] = {"value": html_body}
        draft["bodyValues"] = body_values

        recipients = list(dict.fromkeys([*to, *(cc or []), *(bcc or [])]))
        session = self.get_session()
        request = JmapRequest(using=[MAIL_CAPABILITY, SUBMISSION_CAPABILITY])
        request.add("Email/set", {"accountId": session.account_id, "create": {"draft": draft}}, "createEmail")
        request.add("EmailSubmission/set", {
            "accountId": session.account_id,
            "create": {
                "submission": {
                    "emailId": "#draft",
                    "identityId": identity["id"],
                    "envelope": {
                        "mailFrom": {"email": from_email},
                        "rcptTo": [{"email": addr} for addr in recipients],
                    },
                },
            },
            "onSuccessUpdateEmail": {
                "#submission": {
                    "mailboxIds": {sent["id"]: True},
                    "keywords": {"$seen": True},
                },
            },
        }, "submitEmail")

        email_result, submission_result = self.call(request)
        if (email_result.get("notCreated") or {}).get("draft"):
            raise JmapError("Failed to create email. Please check inputs and try again.")
        if (submission_result.get("notCreated") or {}).get("submission"):
            raise JmapError("Failed to submit email. Please try again later.")
        return ((submission_result.get("created") or {}).get("submission") or {}).get("id") or "unknown"

    # ------------------------------------------------------------- mutations

    def mark_email_read(self, email_id: str, read: bool = True) -> None:
        result = self._update_emails({email_id: _seen_patch(read)}, "updateEmail")
        if (result.get("notUpdated") or {}).get(email_id):
            raise JmapError(f"Failed to mark email as {'read' if read else 'unread'}.")

    def move_email(self, email_id: str, target_mailbox_id: str) -> None:
        result = self._update_emails({email_id: {"mailboxIds": {target_mailbox_id: True}}}, "moveEmail")
        if (result.get("notUpdated") or {}).get(email_id):
            raise JmapError("Failed to move email.")

    def delete_email(self, email_id: str) -> None:
        """Move an email to Trash."""
        trash = self._require_mailbox("trash", "Trash")
        result = self._update_emails({email_id: {"mailboxIds": {trash["id"]: True}}}, "moveToTrash")
        if (result.get("notUpdated") or {}).get(email_id):
            raise JmapError("Failed to delete email.")

    def _bulk_update(self, email_ids: List[str], patch: Dict[str, Any], call_id: str, action: str) -> None:
        result = self._update_emails({email_id: dict(patch) for email_id in email_ids}, call_id)
        failed = list(result.get("notUpdated") or {})
        if failed:
            raise JmapError(f"Failed to {action} {len(failed)} of {len(email_ids)} emails: {', '.join(failed)}")

    def bulk_mark_read(self, email_ids: List[str], read: bool = True) -> None:
        self._bulk_update(email_ids, _seen_patch(read), "bulkUpdate", "update")

    def bulk_move(self, email_ids: List[str], target_mailbox_id: str) -> None:
        self._bulk_update(email_ids, {"mailboxIds": {target_mailbox_id: True}}, "bulkMove", "move")

    def bulk_delete(self, email_ids: List[str]) -> None:
        trash = self._require_mailbox("trash", "Trash")
        self._bulk_update(email_ids, {"mailboxIds": {trash["id"]: True}}, "bulkDelete", "delete")

    # ----------------------------------------------------------- attachments

    def get_email_attachments(self, email_id: str) -> List[Dict[str, Any]]:
        request, account_id = self._new_request(*MAIL_USING)
        request.add("Email/get", {"accountId": account_id, "ids": [email_id], "properties": ["attachments"]}, "getAttachments")
        found = self.call(request)[0].get("list") or []
        return (found[0].get("attachments") if found else None) or []

    def download_attachment(self, email_id: str, attachment_id: str) -> str:
        """Resolve an attachment (by partId, blobId or index) to a download URL."""
        session = self.get_session()
        request = JmapRequest(using=MAIL_USING)
        request.add("Email/get", {
            "accountId": session.account_id,
            "ids": [email_id],
            "properties": ["attachments"],
            "bodyProperties": ["partId", "blobId", "size", "name", "type"],
        }, "getEmail")
        found = self.call(request)[0].get("list") or []
        if not found:
            raise JmapError("Email not found")
        attachments = found[0].get("attachments") or []
        attachment = next(
            (att for att in attachments if attachment_id in (att.get("partId"), att.get("blobId"))),
            None,
        )
        if attachment is None and attachment_id.isdigit() and int(attachment_id) < len(attachments):
            attachment = attachments[int(attachment_id)]
        if attachment is None:
            raise JmapError("Attachment not found.")
        if not session.download_url:
            raise JmapError("Download capability not available in session")
        return (
            session.download_url
            .replace("{accountId}", quote(session.account_id, safe=""))
            .replace("{blobId}", quote(attachment["blobId"], safe=""))
            .replace("{type}", quote(attachment.get("type") or "application/octet-stream", safe=""))
            .replace("{name}", quote(attachment.get("name") or "attachment", safe=""))
        )
