import asyncio
import datetime as dt
import os
from pathlib import Path

import pytest
from dotenv import load_dotenv
from fastmcp import Client

# Load the user's Fastmail credentials from the project-level .env file so the
# live tests authenticate against the real account.
ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
load_dotenv(ENV_PATH, override=False)

if not os.environ.get("FASTMAIL_API_TOKEN"):
    pytest.skip(
        "FASTMAIL_API_TOKEN is not set; skipping live Fastmail tests",
        allow_module_level=True,
    )

import server  # noqa: E402  pylint: disable=wrong-import-position

TEST_MAILBOX = os.environ.get("FASTMAIL_TEST_MAILBOX", "inbox")


def test_live_fastmail_read_only_tools() -> None:
    """Exercise read-only MCP tools against the live Fastmail account."""
    client = Client(server.mcp)

    async def _exercise() -> None:
        async with client:
            mailboxes_result = await client.call_tool_mcp("list_mailboxes", {})
            assert not mailboxes_result.isError
            mailboxes = mailboxes_result.structuredContent.get("mailboxes", [])
            assert any(mb.get("role") == "inbox" for mb in mailboxes)

            summary_result = await client.call_tool_mcp("get_account_summary", {})
            assert not summary_result.isError
            assert summary_result.structuredContent.get("mailboxCount") == len(mailboxes)

            identities_result = await client.call_tool_mcp("list_identities", {})
            assert not identities_result.isError

            recent_result = await client.call_tool_mcp(
                "get_recent_emails", {"limit": 3, "mailboxName": TEST_MAILBOX}
            )
            assert not recent_result.isError
            emails = recent_result.structuredContent.get("emails", [])

            availability_result = await client.call_tool_mcp("check_function_availability", {})
            assert not availability_result.isError
            availability = availability_result.structuredContent

            if emails:
                first = emails[0]
                email_result = await client.call_tool_mcp("get_email", {"emailId": first["id"]})
                assert not email_result.isError
                assert email_result.structuredContent["email"]["id"] == first["id"]

                thread_result = await client.call_tool_mcp("get_thread", {"threadId": first["id"]})
                assert not thread_result.isError
                thread_ids = [e["id"] for e in thread_result.structuredContent.get("emails", [])]
                assert first["id"] in thread_ids

                dry_run = await client.call_tool_mcp("test_bulk_operations", {"dryRun": True, "limit": 1})
                assert not dry_run.isError
                assert dry_run.structuredContent["dryRun"] is True

            if availability["contacts"]["available"]:
                contacts_result = await client.call_tool_mcp("list_contacts", {"limit": 5})
                assert not contacts_result.isError

            if not availability["calendar"]["available"]:
                pytest.skip("Calendar access is not enabled; cannot validate calendar tools")

            calendars_result = await client.call_tool_mcp("list_calendars", {})
            assert not calendars_result.isError
            calendars = calendars_result.structuredContent.get("calendars", [])
            if not calendars:
                pytest.skip("No calendars available; cannot validate calendar tools")

            today = dt.date.today()
            events_result = await client.call_tool_mcp(
                "list_calendar_events",
                {
                    "calendarId": str(calendars[0]["id"]),
                    "startDate": (today - dt.timedelta(days=30)).isoformat(),
                    "endDate": (today + dt.timedelta(days=30)).isoformat(),
                    "limit": 5,
                },
            )
            assert not events_result.isError
            events = events_result.structuredContent.get("events", [])
            assert len(events) <= 5

            if events and events[0].get("id"):
                event_result = await client.call_tool_mcp(
                    "get_calendar_event", {"eventId": events[0]["id"]}
                )
                assert not event_result.isError

    asyncio.run(_exercise())
