"""
Contacts and calendars over JMAP.

Fastmail only exposes these to API tokens that were granted the contacts
and calendars scopes, and only on plans that include them.  Every
operation therefore checks the session capabilities first and raises
:class:`~jmap_client.JmapCapabilityError` with enablement instructions
instead of sending a request the server would reject.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, List, Optional

from ics import parse_iso_datetime
from jmap_client import (
    CALENDARS_CAPABILITY,
    CONTACTS_CAPABILITY,
    JmapCapabilityError,
    JmapClient,
    JmapError,
    clamp_limit,
)

log = logging.getLogger("fastmail-mcp.jmap")

CONTACTS_MAX = 200
CALENDAR_EVENTS_MAX = 500

ENABLEMENT_DOCS = "https://www.fastmail.com/help/technical/jmap-api.html"


def format_duration(delta: dt.timedelta) -> str:
    """Render a non-negative timedelta as an ISO 8601 duration (``PT1H30M``)."""
    total_seconds = int(delta.total_seconds())
    days, remainder = divmod(total_seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, seconds = divmod(remainder, 60)
    time_parts = []
    if hours:
        time_parts.append(f"{hours}H")
    if minutes:
        time_parts.append(f"{minutes}M")
    if seconds:
        time_parts.append(f"{seconds}S")
    body = (f"{days}D" if days else "") + (("T" + "".join(time_parts)) if time_parts else "")
    return f"P{body or '0D'}"


def build_jscalendar_event(
    calendar_id: str,
    title: str,
    start: str,
    end: str,
    description: Optional[str] = None,
    location: Optional[str] = None,
    participants: Optional[List[Dict[str, str]]] = None,
) -> Dict[str, Any]:
    """
    Build a JSCalendar ``Event`` for ``CalendarEvent/set``.

    JSCalendar stores a local start plus a duration.  Inputs carrying a
    ``Z`` or an offset are converted to UTC and pinned to ``Etc/UTC``;
    inputs without one stay floating.
    """
    start_dt = parse_iso_datetime(start)
    end_dt = parse_iso_datetime(end)
    if (start_dt.tzinfo is None) != (end_dt.tzinfo is None):
        raise ValueError("start and end must both include a timezone or both omit it")
    if end_dt < start_dt:
        raise ValueError("end must not be before start")

    event: Dict[str, Any] = {
        "@type": "Event",
        "calendarIds": {calendar_id: True},
        "title": title,
        "duration": format_duration(end_dt - start_dt),
    }
    if start_dt.tzinfo is not None:
        start_dt = start_dt.astimezone(dt.timezone.utc)
        event["timeZone"] = "Etc/UTC"
    event["start"] = start_dt.strftime("%Y-%m-%dT%H:%M:%S")
    if description:
        event["description"] = description
    if location:
        event["locations"] = {"loc1": {"@type": "Location", "name": location}}
    if participants:
        event["participants"] = {
            f"p{index}": {
                "@type": "Participant",
                "email": person["email"],
                "sendTo": {"imip": f"mailto:{person['email']}"},
                "roles": {"attendee": True},
                **({"name": person["name"]} if person.get("name") else {}),
            }
            for index, person in enumerate(participants, start=1)
            if person.get("email")
        }
    return event


class ContactsCalendarClient(JmapClient):
    """JMAP client for the contacts (RFC 9610) and calendars capabilities."""

    def _require_capability(self, capability: str, feature: str) -> str:
        session = self.get_session()
        if capability not in session.capabilities:
            raise JmapCapabilityError(
                f"{feature} access not available - the API token may lack the {feature.lower()} scope. "
                "Enable it under Settings > Privacy & Security > Connected Apps & API tokens "
                f"({ENABLEMENT_DOCS})."
            )
        return session.account_id

    # ------------------------------------------------------------- contacts

    def _contacts(self, condition: Dict[str, Any], limit: int) -> List[Dict[str, Any]]:
        account_id = self._require_capability(CONTACTS_CAPABILITY, "Contacts")
        request, _ = self._new_request(CONTACTS_CAPABILITY)
        query_args: Dict[str, Any] = {"accountId": account_id, "limit": limit}
        if condition:
            query_args["filter"] = condition
        query = request.add("ContactCard/query", query_args, "query")
        request.add("ContactCard/get", {"accountId": account_id, "ids": query.ref("/ids")}, "contacts")
        return self.call(request)[1].get("list", [])

    def get_contacts(self, limit: Optional[int] = 50) -> List[Dict[str, Any]]:
        return self._contacts({}, clamp_limit(limit, CONTACTS_MAX, 50))

    def search_contacts(self, query: str, limit: Optional[int] = 20) -> List[Dict[str, Any]]:
        return self._contacts({"text": query}, clamp_limit(limit, CONTACTS_MAX, 20))

    def get_contact_by_id(self, contact_id: str) -> Dict[str, Any]:
        account_id = self._require_capability(CONTACTS_CAPABILITY, "Contacts")
        request, _ = self._new_request(CONTACTS_CAPABILITY)
        request.add("ContactCard/get", {"accountId": account_id, "ids": [contact_id]}, "contact")
        result = self.call(request)[0]
        found = result.get("list") or []
        if contact_id in (result.get("notFound") or []) or not found:
            raise JmapError(f"Contact with ID '{contact_id}' not found")
        return found[0]

    # ------------------------------------------------------------ calendars

    def get_calendars(self) -> List[Dict[str, Any]]:
        account_id = self._require_capability(CALENDARS_CAPABILITY, "Calendar")
        request, _ = self._new_request(CALENDARS_CAPABILITY)
        request.add("Calendar/get", {"accountId": account_id}, "calendars")
        return self.call(request)[0].get("list", [])

    def get_calendar_events(self, calendar_id: Optional[str] = None, limit: Optional[int] = 50) -> List[Dict[str, Any]]:
        account_id = self._require_capability(CALENDARS_CAPABILITY, "Calendar")
        request, _ = self._new_request(CALENDARS_CAPABILITY)
        query_args: Dict[str, Any] = {
            "accountId": account_id,
            "sort": [{"property": "start", "isAscending": True}],
            "limit": clamp_limit(limit, CALENDAR_EVENTS_MAX, 50),
        }
        if calendar_id:
            query_args["filter"] = {"inCalendars": [calendar_id]}
        query = request.add("CalendarEvent/query", query_args, "query")
        request.add("CalendarEvent/get", {"accountId": account_id, "ids": query.ref("/ids")}, "events")
        return self.call(request)[1].get("list", [])

    def get_calendar_event_by_id(self, event_id: str) -> Dict[str, Any]:
        account_id = self._require_capability(CALENDARS_CAPABILITY, "Calendar")
        request, _ = self._new_request(CALENDARS_CAPABILITY)
        request.add("CalendarEvent/get", {"accountId": account_id, "ids": [event_id]}, "event")
        result = self.call(request)[0]
        found = result.get("list") or []
        if event_id in (result.get("notFound") or []) or not found:
            raise JmapError(f"Calendar event with ID '{event_id}' not found")
        return found[0]

    def create_calendar_event(
        self,
        calendar_id: str,
        title: str,
        start: str,
        end: str,
        description: Optional[str] = None,
        location: Optional[str] = None,
        participants: Optional[List[Dict[str, str]]] = None,
    ) -> str:
        """Create an event and return its server-assigned id."""
        event = build_jscalendar_event(calendar_id, title, start, end, description, location, participants)
        account_id = self._require_capability(CALENDARS_CAPABILITY, "Calendar")
        request, _ = self._new_request(CALENDARS_CAPABILITY)
        request.add("CalendarEvent/set", {"accountId": account_id, "create": {"newEvent": event}}, "createEvent")
        result = self.call(request)[0]
        failure = (result.get("notCreated") or {}).get("newEvent")
        if failure:
            log.error("CalendarEvent/set rejected event: %s", failure)
            raise JmapError(f"Failed to create calendar event: {failure.get('description') or failure.get('type')}")
        return ((result.get("created") or {}).get("newEvent") or {}).get("id") or "unknown"
