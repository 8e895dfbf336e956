import asyncio
from typing import Any, Dict, List, Optional

import pytest
from fastmcp import Client

import config
import server
from jmap_client import CALENDARS_CAPABILITY, CORE_CAPABILITY, MAIL_CAPABILITY, JmapError, Session


class FakeMail:
    """Stands in for JmapClient; records every mutating call."""

    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.session = Session(
            api_url="https://api.fastmail.com/jmap/api/",
            account_id="u1",
            capabilities={CORE_CAPABILITY: {}, MAIL_CAPABILITY: {}, CALENDARS_CAPABILITY: {}},
        )
        self.emails = [
            {"id": "e1", "subject": "Hello", "from": [{"email": "ada@example.com"}], "receivedAt": "2026-01-30T09:00:00Z"},
            {"id": "e2", "subject": "Re: Hello", "from": None, "receivedAt": "2026-01-29T09:00:00Z"},
        ]

    def get_session(self) -> Session:
        return self.session

    def get_mailboxes(self) -> List[Dict[str, Any]]:
        return [{"id": "mb-inbox", "name": "Inbox", "role": "inbox"}]

    def get_emails(self, mailbox_id: Optional[str], limit: int) -> List[Dict[str, Any]]:
        self.calls.append(("get_emails", mailbox_id, limit))
        return self.emails

    def get_email_by_id(self, email_id: str) -> Dict[str, Any]:
        return {"id": email_id, "subject": "Hello"}

    def search_emails(self, query: str, limit: int) -> List[Dict[str, Any]]:
        return self.emails[:1]

    def get_recent_emails(self, limit: int, mailbox_name: str) -> List[Dict[str, Any]]:
        self.calls.append(("get_recent_emails", limit, mailbox_name))
        return self.emails[:limit]

    def advanced_search(self, **kwargs: Any) -> List[Dict[str, Any]]:
        self.calls.append(("advanced_search", kwargs))
        return []

    def get_thread(self, thread_id: str) -> List[Dict[str, Any]]:
        return self.emails

    def get_identities(self) -> List[Dict[str, Any]]:
        return [{"id": "i1", "email": "me@example.com", "mayDelete": False}]

    def send_email(self, **kwargs: Any) -> str:
        self.calls.append(("send_email", kwargs))
        return "sub1"

    def mark_email_read(self, email_id: str, read: bool) -> None:
        self.calls.append(("mark_email_read", email_id, read))

    def delete_email(self, email_id: str) -> None:
        self.calls.append(("delete_email", email_id))

    def move_email(self, email_id: str, target: str) -> None:
        self.calls.append(("move_email", email_id, target))

    def get_email_attachments(self, email_id: str) -> List[Dict[str, Any]]:
        return [{"partId": "2", "blobId": "B1", "name": "a.pdf"}]

    def download_attachment(self, email_id: str, attachment_id: str) -> str:
        if attachment_id != "2":
            raise JmapError(f"Attachment {attachment_id} not found among blobs B-secret-1, B-secret-2")
        return "https://www.fastmailusercontent.com/jmap/download/u1/B1/a.pdf?type=application%2Fpdf"

    def get_mailbox_stats(self, mailbox_id: Optional[str]) -> Any:
        stats = {"id": "mb-inbox", "totalEmails": 2, "unreadEmails": 1}
        return stats if mailbox_id else [stats]

    def get_account_summary(self) -> Dict[str, Any]:
        return {"accountId": "u1", "mailboxCount": 1, "identityCount": 1}

    def bulk_mark_read(self, email_ids: List[str], read: bool) -> None:
        self.calls.append(("bulk_mark_read", list(email_ids), read))

    def bulk_move(self, email_ids: List[str], target: str) -> None:
        self.calls.append(("bulk_move", list(email_ids), target))

    def bulk_delete(self, email_ids: List[str]) -> None:
        self.calls.append(("bulk_delete", list(email_ids)))


class FakeContactsCalendar:
    def __init__(self) -> None:
        self.calls: List[tuple] = []

    def get_contacts(self, limit: int) -> List[Dict[str, Any]]:
        return [{"id": "c1"}]

    def get_contact_by_id(self, contact_id: str) -> Dict[str, Any]:
        return {"id": contact_id}

    def search_contacts(self, query: str, limit: int) -> List[Dict[str, Any]]:
        return [{"id": "c1"}]

    def get_calendars(self) -> List[Dict[str, Any]]:
        self.calls.append(("get_calendars",))
        return [{"id": "jmap-cal", "name": "Personal"}]

    def get_calendar_events(self, calendar_id: Optional[str], limit: int) -> List[Dict[str, Any]]:
        self.calls.append(("get_calendar_events", calendar_id, limit))
        return [{"id": "jmap-ev"}]

    def get_calendar_event_by_id(self, event_id: str) -> Dict[str, Any]:
        return {"id": event_id, "title": "JMAP event"}

    def create_calendar_event(self, *args: Any) -> str:
        self.calls.append(("create_calendar_event",) + args)
        return "jmap-new"


class FakeCalDav:
    def __init__(self) -> None:
        self.calls: List[tuple] = []

    def get_calendars(self) -> List[Dict[str, Any]]:
        return [{"id": "https://caldav.fastmail.com/cal/", "name": "Work"}]

    def get_calendar_events(self, *args: Any) -> List[Dict[str, Any]]:
        self.calls.append(("get_calendar_events",) + args)
        return [{"id": "dav-ev", "title": "Standup"}]

    def get_calendar_event_by_id(self, event_id: str) -> Dict[str, Any]:
        return {"id": event_id, "title": "CalDAV event"}

    def create_calendar_event(self, *args: Any) -> str:
        self.calls.append(("create_calendar_event",) + args)
        return "uid-1@fastmail-mcp"


class FakeBackends:
    def __init__(self, caldav: Optional[FakeCalDav] = None) -> None:
        self.mail = FakeMail()
        self.contacts = FakeContactsCalendar()
        self.dav = caldav

    def jmap(self) -> FakeMail:
        return self.mail

    def contacts_calendar(self) -> FakeContactsCalendar:
        return self.contacts

    def caldav(self) -> Optional[FakeCalDav]:
        return self.dav


@pytest.fixture()
def fake_backends(monkeypatch: pytest.MonkeyPatch) -> FakeBackends:
    backends = FakeBackends()
    monkeypatch.setattr(server, "backends", backends)
    return backends


@pytest.fixture()
def caldav_backends(monkeypatch: pytest.MonkeyPatch) -> FakeBackends:
    backends = FakeBackends(caldav=FakeCalDav())
    monkeypatch.setattr(server, "backends", backends)
    return backends


def _run(calls: List[tuple]) -> List[Any]:
    """Call each (tool, arguments) pair through an in-memory MCP client."""
    client = Client(server.mcp)

    async def _exercise() -> List[Any]:
        async with client:
            return [await client.call_tool_mcp(name, args) for name, args in calls]

    return asyncio.run(_exercise())


def _error_text(result: Any) -> str:
    assert result.isError
    return " ".join(getattr(block, "text", "") for block in result.content)


def test_all_tools_registered() -> None:
    client = Client(server.mcp)

    async def _names() -> set:
        async with client:
            return {tool.name for tool in await client.list_tools()}

    names = asyncio.run(_names())
    assert names == set(server.EMAIL_TOOLS + server.CONTACT_TOOLS + server.CALENDAR_TOOLS) | {
        "list_identities", "check_function_availability", "test_bulk_operations",
    }
    assert len(names) == 28


def test_mail_tools_return_structured_content(fake_backends: FakeBackends) -> None:
    results = _run([
        ("list_mailboxes", {}),
        ("list_emails", {"mailboxId": "mb-inbox", "limit": 5}),
        ("get_email", {"emailId": "e1"}),
        ("search_emails", {"query": "hello"}),
        ("get_recent_emails", {}),
        ("send_email", {"to": ["a@example.com"], "subject": "Hi", "textBody": "Hello", "fromAddress": "me@example.com"}),
        ("mark_email_read", {"emailId": "e1", "read": False}),
        ("delete_email", {"emailId": "e1"}),
        ("move_email", {"emailId": "e1", "targetMailboxId": "mb-archive"}),
        ("get_email_attachments", {"emailId": "e1"}),
        ("download_attachment", {"emailId": "e1", "attachmentId": "2"}),
        ("advanced_search", {"isUnread": True, "fromAddress": "ada@example.com"}),
        ("get_thread", {"threadId": "t1"}),
        ("get_mailbox_stats", {}),
        ("get_mailbox_stats", {"mailboxId": "mb-inbox"}),
        ("get_account_summary", {}),
        ("bulk_mark_read", {"emailIds": ["e1", "e2"]}),
        ("bulk_move", {"emailIds": ["e1"], "targetMailboxId": "mb-x"}),
        ("bulk_delete", {"emailIds": ["e2"]}),
        ("list_identities", {}),
    ])
    for result in results:
        assert not result.isError, result.content
        assert result.structuredContent is not None

    sc = [result.structuredContent for result in results]
    assert sc[0]["mailboxes"][0]["role"] == "inbox"
    assert len(sc[1]["emails"]) == 2
    assert sc[2]["email"]["id"] == "e1"
    assert sc[5] == {"submissionId": "sub1"}
    assert sc[10]["downloadUrl"].startswith("https://www.fastmailusercontent.com/")
    assert isinstance(sc[13]["mailboxes"], list)
    assert sc[14]["mailbox"]["id"] == "mb-inbox"
    assert sc[15]["accountId"] == "u1"
    assert sc[19]["identities"][0]["email"] == "me@example.com"

    calls = fake_backends.mail.calls
    assert ("get_emails", "mb-inbox", 5) in calls
    assert ("get_recent_emails", 10, "inbox") in calls
    assert ("mark_email_read", "e1", False) in calls
    assert ("bulk_mark_read", ["e1", "e2"], True) in calls
    send = next(call for call in calls if call[0] == "send_email")[1]
    assert send["from_address"] == "me@example.com"
    assert send["text_body"] == "Hello"
    search = next(call for call in calls if call[0] == "advanced_search")[1]
    assert search["is_unread"] is True
    assert search["from_address"] == "ada@example.com"
    assert search["limit"] == 50


def test_validation_happens_before_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    class ExplodingBackends:
        def jmap(self) -> Any:
            raise AssertionError("backend must not be touched")

        contacts_calendar = jmap
        caldav = jmap

    monkeypatch.setattr(server, "backends", ExplodingBackends())
    results = _run([
        ("get_email", {"emailId": ""}),
        ("send_email", {"to": [], "subject": "Hi", "textBody": "x"}),
        ("send_email", {"to": ["a@example.com"], "subject": "Hi"}),
        ("move_email", {"emailId": "e1", "targetMailboxId": ""}),
        ("bulk_delete", {"emailIds": []}),
        ("bulk_move", {"emailIds": ["e1"], "targetMailboxId": ""}),
        ("get_contact", {"contactId": ""}),
        ("create_calendar_event", {"calendarId": "c", "title": "", "start": "2026-01-01", "end": "2026-01-01"}),
    ])
    messages = [_error_text(result) for result in results]
    assert "emailId is required" in messages[0]
    assert "to field is required" in messages[1]
    assert "Either textBody or htmlBody is required" in messages[2]
    assert "emailId and targetMailboxId are required" in messages[3]
    assert "emailIds array is required" in messages[4]
    assert "targetMailboxId is required" in messages[5]
    assert "contactId is required" in messages[6]
    assert "calendarId, title, start, and end are required" in messages[7]


def test_backend_errors_are_wrapped(fake_backends: FakeBackends, monkeypatch: pytest.MonkeyPatch) -> None:
    def boom(email_id: str) -> Dict[str, Any]:
        raise JmapError("Email with ID 'e9' not found")

    monkeypatch.setattr(fake_backends.mail, "get_email_by_id", boom)
    (result,) = _run([("get_email", {"emailId": "e9"})])
    assert "Tool execution failed: Email with ID 'e9' not found" in _error_text(result)


def test_attachment_errors_are_sanitized(fake_backends: FakeBackends) -> None:
    (result,) = _run([("download_attachment", {"emailId": "e1", "attachmentId": "99"})])
    text = _error_text(result)
    assert server.ATTACHMENT_ERROR in text
    assert "B-secret" not in text


def test_missing_token_is_reported(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in config.TOKEN_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(server, "backends", server.Backends())
    (result,) = _run([("list_mailboxes", {})])
    assert "FASTMAIL_API_TOKEN environment variable is required" in _error_text(result)


def test_backends_are_memoized(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FASTMAIL_API_TOKEN", "tok")
    for key in config.CALDAV_TOKEN_KEYS:
        monkeypatch.delenv(key, raising=False)
    backends = server.Backends()
    assert backends.jmap() is backends.jmap()
    assert backends.contacts_calendar() is backends.contacts_calendar()
    assert backends.caldav() is None


def test_calendar_tools_fall_back_to_jmap(fake_backends: FakeBackends) -> None:
    results = _run([
        ("list_calendars", {}),
        ("list_calendar_events", {"calendarId": "jmap-cal", "startDate": "2026-01-01", "endDate": "2026-01-31"}),
        ("get_calendar_event", {"eventId": "jmap-ev"}),
        ("create_calendar_event", {"calendarId": "jmap-cal", "title": "Lunch", "start": "2026-01-30T12:00:00Z", "end": "2026-01-30T13:00:00Z"}),
        ("list_contacts", {}),
        ("search_contacts", {"query": "ada"}),
        ("get_contact", {"contactId": "c1"}),
    ])
    for result in results:
        assert not result.isError, result.content
    assert results[0].structuredContent["calendars"][0]["id"] == "jmap-cal"
    assert results[2].structuredContent["event"]["title"] == "JMAP event"
    assert results[3].structuredContent == {"eventId": "jmap-new"}
    assert ("get_calendar_events", "jmap-cal", 50) in fake_backends.contacts.calls


def test_calendar_tools_prefer_caldav(caldav_backends: FakeBackends) -> None:
    results = _run([
        ("list_calendars", {}),
        ("list_calendar_events", {"startDate": "2026-01-26", "endDate": "2026-02-02", "limit": 10}),
        ("get_calendar_event", {"eventId": "dav-ev"}),
        ("create_calendar_event", {
            "calendarId": "Work", "title": "Review", "start": "2026-02-03T10:00:00",
            "end": "2026-02-03T11:00:00", "participants": [{"email": "ada@example.com", "name": "Ada"}],
        }),
    ])
    for result in results:
        assert not result.isError, result.content
    assert results[0].structuredContent["calendars"][0]["name"] == "Work"
    assert results[1].structuredContent["events"][0]["id"] == "dav-ev"
    assert results[2].structuredContent["event"]["title"] == "CalDAV event"
    assert results[3].structuredContent == {"eventId": "uid-1@fastmail-mcp"}

    dav_calls = caldav_backends.dav.calls  # type: ignore[union-attr]
    assert ("get_calendar_events", None, 10, "2026-01-26", "2026-02-02") in dav_calls
    create = next(call for call in dav_calls if call[0] == "create_calendar_event")
    assert create[1:4] == ("Work", "Review", "2026-02-03T10:00:00")
    assert caldav_backends.contacts.calls == []


def test_check_function_availability(caldav_backends: FakeBackends) -> None:
    (result,) = _run([("check_function_availability", {})])
    assert not result.isError
    report = result.structuredContent
    assert report["email"]["available"] is True
    assert report["contacts"]["available"] is False
    assert "steps" in report["contacts"]["enablementGuide"]
    assert report["calendar"]["available"] is True
    assert report["calendar"]["enablementGuide"] is None
    assert report["caldav"]["configured"] is True
    assert MAIL_CAPABILITY in report["capabilities"]


def test_bulk_operations_dry_run(fake_backends: FakeBackends, monkeypatch: pytest.MonkeyPatch) -> None:
    sleeps: List[float] = []
    monkeypatch.setattr(server.time, "sleep", sleeps.append)
    (result,) = _run([("test_bulk_operations", {"limit": 50})])
    assert not result.isError
    report = result.structuredContent
    assert report["dryRun"] is True
    assert [op["executed"] for op in report["operations"]] == [False, False]
    assert report["testEmails"][1]["from"] == "unknown"
    assert ("get_recent_emails", 10, "inbox") in fake_backends.mail.calls
    assert not any(call[0] == "bulk_mark_read" for call in fake_backends.mail.calls)
    assert sleeps == []


def test_bulk_operations_execute(fake_backends: FakeBackends, monkeypatch: pytest.MonkeyPatch) -> None:
    sleeps: List[float] = []
    monkeypatch.setattr(server.time, "sleep", sleeps.append)
    (result,) = _run([("test_bulk_operations", {"dryRun": False, "limit": 2})])
    assert not result.isError
    report = result.structuredContent
    assert [op["status"] for op in report["operations"]] == ["SUCCESS", "SUCCESS"]
    bulk = [call for call in fake_backends.mail.calls if call[0] == "bulk_mark_read"]
    assert bulk == [("bulk_mark_read", ["e1", "e2"], True), ("bulk_mark_read", ["e1", "e2"], False)]
    assert sleeps == [0.5]


def test_bulk_operations_without_mail(fake_backends: FakeBackends) -> None:
    fake_backends.mail.emails = []
    (result,) = _run([("test_bulk_operations", {})])
    assert not result.isError
    assert result.structuredContent["operations"] == []
