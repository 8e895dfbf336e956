"""
iCalendar (ICS) reader for CalDAV calendar objects.

Calendar objects are parsed with ``icalendar`` and the first VEVENT is
flattened into the normalized event dictionary returned by the calendar
tools::

    {"id", "title", "description", "start", "end", "location", "participants"}

Only the event's own properties are read; nested components such as
VALARM reminders are ignored.  Recurrence rules are not expanded,
additional VEVENTs (for example overridden instances) are ignored, and
TZID parameters are dropped.  Dates come back as ``YYYY-MM-DD`` or
``YYYY-MM-DDThh:mm:ss`` with a trailing ``Z`` kept for UTC values.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
from typing import Any, Dict, List, Optional

from icalendar import Calendar as ICalendarCalendar

log = logging.getLogger("fastmail-mcp.ics")

_DATETIME_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})T(\d{2})(\d{2})(\d{2})(Z?)$")


def _first(component: Any, name: str) -> Any:
    value = component.get(name)
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _text(component: Any, name: str) -> str:
    value = _first(component, name)
    return "" if value is None else str(value)


def format_ics_date(value: str) -> str:
    """Convert an ICS DATE or DATE-TIME value to ISO 8601 text."""
    if not value:
        return ""
    # Already ISO formatted
    if "-" in value:
        return value
    if len(value) == 8 and value.isdigit():
        return f"{value[:4]}-{value[4:6]}-{value[6:8]}"
    match = _DATETIME_RE.match(value)
    if match:
        year, month, day, hour, minute, second, zulu = match.groups()
        return f"{year}-{month}-{day}T{hour}:{minute}:{second}{zulu}"
    return value


def _date(component: Any, name: str) -> str:
    prop = _first(component, name)
    if prop is None:
        return ""
    # to_ical() gives the bare value; TZID stays in the dropped parameters.
    return format_ics_date(prop.to_ical().decode())


def extract_attendees(event: Any) -> List[Dict[str, str]]:
    """Collect ``{email, name?}`` entries from the event's ATTENDEE properties."""
    raw = event.get("attendee")
    if raw is None:
        return []
    if not isinstance(raw, list):
        raw = [raw]
    attendees: List[Dict[str, str]] = []
    for address in raw:
        value = str(address).strip()
        if value[:7].lower() != "mailto:" or not value[7:]:
            continue
        attendee = {"email": value[7:]}
        params = getattr(address, "params", None) or {}
        name = str(params.get("CN", "")).strip().strip('"')
        if name:
            attendee["name"] = name
        attendees.append(attendee)
    return attendees


def parse_ics(ics_data: str) -> Optional[Dict[str, Any]]:
    """Parse the first VEVENT in ``ics_data`` into a normalized event.

    Returns None when the text holds no VEVENT or cannot be parsed.
    """
    if not ics_data or not ics_data.strip():
        return None
    try:
        component = ICalendarCalendar.from_ical(ics_data)
    except ValueError as exc:
        log.debug("Unparseable calendar object: %s", exc)
        return None
    events = component.walk("VEVENT")
    if not events:
        return None
    event = events[0]
    return {
        "id": _text(event, "uid"),
        "title": _text(event, "summary") or "Untitled",
        "description": _text(event, "description"),
        "start": _date(event, "dtstart"),
        "end": _date(event, "dtend"),
        "location": _text(event, "location"),
        "participants": extract_attendees(event),
    }


def parse_iso_datetime(value: str) -> dt.datetime:
    """
    Parse an ISO date or date-time string supplied by a tool caller.

    Accepts ``YYYY-MM-DD``, ``YYYY-MM-DDTHH:MM:SS`` and the same suffixed
    with ``Z`` or a UTC offset.  A bare date becomes midnight.
    """
    text = value.strip()
    if text.endswith("Z"):
        return dt.datetime.fromisoformat(text[:-1]).replace(tzinfo=dt.timezone.utc)
    return dt.datetime.fromisoformat(text)
