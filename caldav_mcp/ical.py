"""
iCalendar text codec.

Builds VCALENDAR/VEVENT text for new events and decodes the small set of
VEVENT fields this server reports (SUMMARY, DTSTART, DTEND, RRULE, LOCATION,
DESCRIPTION, RECURRENCE-ID, VALARM) from raw calendar object text.

Decoding works on content lines rather than fully typed values: the text is
unfolded and split by icalendar's content-line parser, BEGIN/END nesting is
tracked here, and property values are kept as the raw strings the server sent.
That keeps the original digits and TZID of every date available for display
and lets one malformed object fail on its own.
"""

import logging
import re
import uuid
from datetime import datetime, timezone as dt_timezone
from typing import Dict, Iterable, List, Optional, Tuple, Union

from icalendar import Alarm, Calendar as iCalendar, Event, vDDDTypes, vRecur, vText
from icalendar.parser import Contentlines
from pydantic import ValidationError

from .models import EventTime, ParsedEvent, ParseFailure, RawCalendarObject, Reminder

logger = logging.getLogger(__name__)

PRODID = "-//caldav-mcp//caldav-mcp//EN"
PARSE_FAILURE_MARKER = "Error: Could not parse event data"

_DATE_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")
_DATETIME_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})T(\d{2})(\d{2})(\d{2})(Z?)$")
_EVENT_ID_RE = re.compile(r"([^/]+)\.ics$")


class EventParseError(ValueError):
    """Raised when calendar object text cannot be decoded into an event."""


# ============================================================================
# Encoding
# ============================================================================


def build_event_ical(
    summary: str,
    start: datetime,
    end: datetime,
    timezone: str,
    recurrence: Optional[str] = None,
    location: Optional[str] = None,
    reminders: Optional[Iterable[Reminder]] = None,
    description: Optional[str] = None,
    uid: Optional[str] = None,
) -> str:
    """Build a complete VCALENDAR text block holding one VEVENT.

    ``start`` and ``end`` are written with their wall-clock fields and tagged
    ``TZID=<timezone>``; they are never converted to UTC, so callers pass
    instants already expressed in ``timezone``.

    Raises:
        ValueError: If the recurrence rule or a reminder trigger is malformed
    """
    cal = iCalendar()
    cal.add("prodid", PRODID)
    cal.add("version", "2.0")

    event = Event()
    event.add("uid", uid or str(uuid.uuid4()))
    event.add("dtstamp", datetime.now(dt_timezone.utc))
    event.add("summary", summary)
    event.add("dtstart", start.replace(tzinfo=None), parameters={"TZID": timezone})
    event.add("dtend", end.replace(tzinfo=None), parameters={"TZID": timezone})

    if recurrence:
        event.add("rrule", vRecur.from_ical(recurrence))
    if location:
        event.add("location", location)
    if description:
        event.add("description", description)

    for reminder in reminders or ():
        event.add_component(build_alarm(reminder))

    cal.add_component(event)
    return cal.to_ical().decode("utf-8")


def build_alarm(reminder: Reminder) -> Alarm:
    """Build a VALARM component for a reminder."""
    trigger = vDDDTypes.from_ical(reminder.trigger)

    alarm = Alarm()
    alarm.add("action", reminder.action)
    if isinstance(trigger, datetime):
        alarm.add("trigger", trigger, parameters={"VALUE": "DATE-TIME"})
    else:
        alarm.add("trigger", trigger)
    if reminder.description:
        alarm.add("description", reminder.description)
    return alarm


# ============================================================================
# Decoding
# ============================================================================


class Component:
    """A BEGIN/END block with its raw properties and nested components."""

    def __init__(self, name: str):
        self.name = name
        self.properties: Dict[str, List[Tuple[Dict[str, str], str]]] = {}
        self.children: List["Component"] = []

    def first(self, name: str) -> Optional[Tuple[Dict[str, str], str]]:
        values = self.properties.get(name)
        return values[0] if values else None

    def value(self, name: str) -> Optional[str]:
        prop = self.first(name)
        return prop[1] if prop else None

    def walk(self, name: str):
        """Yield this component and all descendants named ``name``."""
        if self.name == name:
            yield self
        for child in self.children:
            yield from child.walk(name)


def parse_components(data: str) -> List[Component]:
    """Split iCalendar text into its top-level components.

    Raises:
        EventParseError: On malformed content lines or unbalanced BEGIN/END
    """
    try:
        lines = Contentlines.from_ical(data)
    except ValueError as e:
        raise EventParseError(str(e)) from e

    roots: List[Component] = []
    stack: List[Component] = []

    for line in lines:
        if not line:
            continue
        try:
            name, params, value = line.parts()
        except ValueError as e:
            raise EventParseError(str(e)) from e

        name = name.upper()
        if name == "BEGIN":
            component = Component(value.upper())
            if stack:
                stack[-1].children.append(component)
            else:
                roots.append(component)
            stack.append(component)
        elif name == "END":
            if not stack or stack[-1].name != value.upper():
                raise EventParseError(f"Unexpected END:{value}")
            stack.pop()
        elif stack:
            param_map = {str(k).upper(): str(v) for k, v in params.items()}
            stack[-1].properties.setdefault(name, []).append((param_map, value))

    if stack:
        raise EventParseError(f"Unterminated component {stack[-1].name}")
    return roots


def _event_time(component: Component, name: str) -> EventTime:
    prop = component.first(name)
    if prop is None:
        raise EventParseError(f"Missing {name}")

    params, value = prop
    value = value.strip()
    if not (_DATE_RE.match(value) or _DATETIME_RE.match(value)):
        raise EventParseError(f"Unrecognized {name} value {value!r}")

    all_day = params.get("VALUE", "").upper() == "DATE" or bool(_DATE_RE.match(value))
    return EventTime(value=value, tzid=params.get("TZID") or None, all_day=all_day)


def _text(component: Component, name: str) -> Optional[str]:
    value = component.value(name)
    if value is None:
        return None
    return str(vText.from_ical(value))


def _reminder(alarm: Component, url: Optional[str]) -> Optional[Reminder]:
    """Decode a VALARM; alarms without a usable ACTION or TRIGGER are skipped."""
    try:
        return Reminder(
            action=alarm.value("ACTION") or "DISPLAY",
            trigger=alarm.value("TRIGGER") or "",
            description=_text(alarm, "DESCRIPTION"),
        )
    except ValidationError as e:
        logger.debug("Skipping malformed VALARM in %s: %s", url, e)
        return None


def parse_event(data: str, url: Optional[str] = None) -> ParsedEvent:
    """Decode the first VEVENT in ``data``.

    DTSTART, DTEND and SUMMARY are required; a partially decoded event is
    never returned.

    Raises:
        EventParseError: If the text is malformed or a required field is missing
    """
    if not data:
        raise EventParseError("Event data is missing")

    vevent = None
    for root in parse_components(data):
        vevent = next(root.walk("VEVENT"), None)
        if vevent is not None:
            break
    if vevent is None:
        raise EventParseError("No VEVENT component")

    summary = _text(vevent, "SUMMARY")
    if summary is None:
        raise EventParseError("Missing SUMMARY")

    start = _event_time(vevent, "DTSTART")
    end = _event_time(vevent, "DTEND")

    recurrence_id = vevent.value("RECURRENCE-ID")
    reminders = [
        reminder
        for reminder in (_reminder(alarm, url) for alarm in vevent.children if alarm.name == "VALARM")
        if reminder is not None
    ]

    return ParsedEvent(
        summary=summary,
        start=start,
        end=end,
        uid=vevent.value("UID"),
        rrule=vevent.value("RRULE"),
        location=_text(vevent, "LOCATION"),
        description=_text(vevent, "DESCRIPTION"),
        recurrence_id=recurrence_id,
        url=url,
        master_event_id=extract_event_id(url) if recurrence_id is not None and url else None,
        reminders=reminders,
    )


def decode_object(obj: RawCalendarObject) -> Union[ParsedEvent, ParseFailure]:
    """Decode a fetched object, turning parse errors into a ParseFailure."""
    try:
        return parse_event(obj.data, url=obj.url)
    except EventParseError as e:
        logger.warning("Could not parse calendar object %s: %s", obj.url, e)
        return ParseFailure(url=obj.url, reason=str(e))


def extract_event_id(url: str) -> str:
    """Return the object file name of ``url`` without its ``.ics`` suffix."""
    match = _EVENT_ID_RE.search(url)
    return match.group(1) if match else url


def extract_timezone_id(data: Optional[str]) -> Optional[str]:
    """Return the TZID of the first VTIMEZONE in ``data``, if any."""
    if not data:
        return None
    try:
        roots = parse_components(data)
    except EventParseError:
        return None
    for root in roots:
        for vtimezone in root.walk("VTIMEZONE"):
            tzid = vtimezone.value("TZID")
            if tzid:
                return tzid
    return None


# ============================================================================
# Formatting
# ============================================================================


def format_ical_date(value: str, tzid: Optional[str] = None) -> str:
    """Render ``YYYYMMDD`` or ``YYYYMMDDTHHMMSS[Z]`` in ISO form."""
    date_match = _DATE_RE.match(value)
    if date_match:
        return "{}-{}-{}".format(*date_match.groups())

    datetime_match = _DATETIME_RE.match(value)
    if not datetime_match:
        return value
    year, month, day, hour, minute, second, utc = datetime_match.groups()
    formatted = f"{year}-{month}-{day}T{hour}:{minute}:{second}{utc}"
    return f"{formatted} ({tzid})" if tzid else formatted


def format_event_time(time: EventTime) -> str:
    return format_ical_date(time.value, None if time.all_day else time.tzid)


def format_event(event: Union[ParsedEvent, ParseFailure]) -> str:
    """Format an event as a text block, or the parse-failure marker."""
    if isinstance(event, ParseFailure):
        return PARSE_FAILURE_MARKER

    indicators = []
    if event.all_day:
        indicators.append("All Day")
    if event.is_recurring:
        indicators.append("Recurring")
    if event.is_recurrence_instance:
        indicators.append("Recurrence Instance")
    indicator_str = f" ({', '.join(indicators)})" if indicators else ""

    lines = [
        f"{event.summary}{indicator_str}",
        f"Start: {format_event_time(event.start)}",
        f"End: {format_event_time(event.end)}",
    ]
    if event.location:
        lines.append(f"Location: {event.location}")
    if event.description:
        lines.append(f"Description: {event.description}")
    if event.rrule:
        lines.append(f"Recurrence Rule: {event.rrule}")
    if event.reminders:
        lines.append(
            "Reminders: "
            + ", ".join(f"{r.action} {r.trigger}" for r in event.reminders)
        )
    if event.is_recurrence_instance and event.master_event_id:
        lines.append(f"Master Event ID: {event.master_event_id}")
    return "\n".join(lines)
