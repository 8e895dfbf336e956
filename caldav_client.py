"""
Fastmail calendars over CalDAV.

Used instead of JMAP calendars whenever a CalDAV app password is
configured: Fastmail grants CalDAV access to app passwords on every plan,
while JMAP calendar scopes are not available to all API tokens.

The client logs in lazily (the first PROPFIND for the principal) and
keeps the principal for the lifetime of the process.  Calendar objects
are read as raw ICS text and normalized with :func:`ics.parse_ics`.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
from typing import Any, Callable, Dict, List, Optional, Tuple

from caldav.davclient import DAVClient
from caldav.elements import cdav, ical
from caldav.lib.error import DAVError
from icalendar import Calendar as ICalendarCalendar
from icalendar import Event as ICalendarEvent
from icalendar import vCalAddress, vText

from config import CalDavSettings
from ics import parse_ics, parse_iso_datetime

log = logging.getLogger("fastmail-mcp.caldav")

CALDAV_EVENTS_MAX = 500
PRODID = "-//Fastmail MCP//EN"


class CalDavError(Exception):
    """Base class for CalDAV lookup failures."""


class CalendarNotFoundError(CalDavError):
    pass


class EventNotFoundError(CalDavError):
    pass


def widen_time_range(start_date: str, end_date: str) -> Tuple[dt.datetime, dt.datetime]:
    """Turn a pair of ISO bounds into datetimes; bare dates cover the whole day."""
    start = start_date if "T" in start_date else f"{start_date}T00:00:00"
    end = end_date if "T" in end_date else f"{end_date}T23:59:59"
    return parse_iso_datetime(start), parse_iso_datetime(end)


def _ical_value(value: str) -> Any:
    """Convert an ISO input into the value icalendar should serialize."""
    if "T" not in value:
        return parse_iso_datetime(value).date()
    parsed = parse_iso_datetime(value)
    if parsed.tzinfo is not None:
        # UTC serializes as a plain ``...Z`` value with no VTIMEZONE needed.
        parsed = parsed.astimezone(dt.timezone.utc)
    return parsed


_NO_START = dt.datetime.max.replace(tzinfo=dt.timezone.utc)


def _start_key(event: Dict[str, Any]) -> dt.datetime:
    """Sort key for a parsed event; floating times and dates count as UTC."""
    try:
        start = parse_iso_datetime(event["start"])
    except ValueError:
        return _NO_START
    if start.tzinfo is None:
        start = start.replace(tzinfo=dt.timezone.utc)
    return start


def _check_event_times(start: Any, end: Any) -> None:
    if isinstance(start, dt.datetime) != isinstance(end, dt.datetime):
        raise ValueError("start and end must both be dates or both be date-times")
    if isinstance(start, dt.datetime) and (start.tzinfo is None) != (end.tzinfo is None):
        raise ValueError("start and end must both include a timezone or both omit it")
    if end < start:
        raise ValueError("end must not be before start")


class CalDavCalendarClient:
    """Basic-auth CalDAV client with a memoized principal."""

    def __init__(self, settings: CalDavSettings, client_factory: Callable[..., Any] = DAVClient) -> None:
        self.settings = settings
        self._client_factory = client_factory
        self._principal: Any = None

    def _get_principal(self) -> Any:
        if self._principal is None:
            client = self._client_factory(
                url=self.settings.url,
                username=self.settings.username,
                password=self.settings.password,
            )
            self._principal = client.principal()
            log.info("CalDAV login succeeded for %s at %s", self.settings.username, self.settings.url)
        return self._principal

    def _all_calendars(self) -> List[Any]:
        return list(self._get_principal().calendars())

    def _resolve_calendars(self, calendar_id: Optional[str]) -> List[Any]:
        calendars = self._all_calendars()
        if not calendar_id:
            return calendars
        target = [
            cal for cal in calendars
            if str(cal.url) == calendar_id or getattr(cal, "name", None) == calendar_id
        ]
        if not target:
            raise CalendarNotFoundError(f"Calendar not found: {calendar_id}")
        return target

    @staticmethod
    def _calendar_properties(cal: Any) -> Dict[str, Any]:
        try:
            return cal.get_properties([cdav.CalendarDescription(), ical.CalendarColor()]) or {}
        except DAVError as exc:
            log.warning("CalDAV property lookup failed for %s: %s", cal.url, exc)
            return {}

    def get_calendars(self) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for cal in self._all_calendars():
            props = self._calendar_properties(cal)
            out.append({
                "id": str(cal.url),
                "name": getattr(cal, "name", None) or "Unnamed",
                "url": str(cal.url),
                "color": props.get(ical.CalendarColor.tag),
                "description": props.get(cdav.CalendarDescription.tag),
            })
        return out

    def get_calendar_events(
        self,
        calendar_id: Optional[str] = None,
        limit: Optional[int] = 50,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        List events across one calendar (by URL or display name) or all of them.

        A time range is applied only when both ``start_date`` and
        ``end_date`` are given.  Results are ordered by start and cut to
        ``limit``.
        """
        time_range = widen_time_range(start_date, end_date) if start_date and end_date else None
        events: List[Dict[str, Any]] = []
        for cal in self._resolve_calendars(calendar_id):
            if time_range:
                objects = cal.search(event=True, start=time_range[0], end=time_range[1], expand=False)
            else:
                objects = cal.events()
            for obj in objects:
                parsed = parse_ics(obj.data)
                if parsed:
                    events.append(parsed)
        events.sort(key=_start_key)
        cap = CALDAV_EVENTS_MAX if limit is None else max(1, min(int(limit), CALDAV_EVENTS_MAX))
        return events[:cap]

    def get_calendar_event_by_id(self, event_id: str) -> Dict[str, Any]:
        """Find an event by its UID or by the URL of its calendar object."""
        for cal in self._all_calendars():
            for obj in cal.events():
                parsed = parse_ics(obj.data)
                if parsed and (parsed["id"] == event_id or str(obj.url) == event_id):
                    return parsed
        raise EventNotFoundError(f"Calendar event not found: {event_id}")

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
        """Save a new single-VEVENT calendar object and return its UID."""
        dtstart, dtend = _ical_value(start), _ical_value(end)
        _check_event_times(dtstart, dtend)
        cal = self._resolve_calendars(calendar_id)[0]
        uid = os.urandom(16).hex() + "@fastmail-mcp"

        cal_component = ICalendarCalendar()
        cal_component.add("prodid", PRODID)
        cal_component.add("version", "2.0")
        event_component = ICalendarEvent()
        event_component.add("uid", uid)
        event_component.add("dtstamp", dt.datetime.now(dt.timezone.utc))
        event_component.add("summary", title)
        event_component.add("dtstart", dtstart)
        event_component.add("dtend", dtend)
        if description:
            event_component.add("description", description)
        if location:
            event_component.add("location", location)
        for person in participants or []:
            if not person.get("email"):
                continue
            attendee = vCalAddress(f"mailto:{person['email']}")
            if person.get("name"):
                attendee.params["cn"] = vText(person["name"])
            attendee.params["role"] = vText("REQ-PARTICIPANT")
            event_component.add("attendee", attendee, encode=0)
        cal_component.add_component(event_component)

        cal.save_event(cal_component.to_ical().decode())
        log.info("Created CalDAV event %s in %s", uid, cal.url)
        return uid
