"""
Event query/filter engine.

Decides which fetched calendar objects overlap a requested time window.
Timed events are compared as aware instants, with each TZID resolved through
the IANA database; all-day events are compared on calendar dates, with the
RFC 5545 exclusive end date made inclusive.
"""

import logging
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable, List, Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as date_parser

from .errors import InvalidInputError
from .ical import decode_object
from .models import EventTime, ParsedEvent, ParseFailure, RawCalendarObject

logger = logging.getLogger(__name__)


def local_timezone() -> tzinfo:
    """Return the host's local timezone."""
    return datetime.now().astimezone().tzinfo


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """Resolve an IANA timezone name; None means the host's local zone.

    Raises:
        InvalidInputError: If the name is not a known IANA timezone
    """
    if not name:
        return local_timezone()
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError) as e:
        raise InvalidInputError(
            f"Unknown timezone '{name}'. Must be a valid IANA timezone name."
        ) from e


def parse_datetime(value: str, tz: tzinfo) -> datetime:
    """Parse an ISO-8601 string, localizing naive values to ``tz``.

    Raises:
        InvalidInputError: If the string is not ISO-8601
    """
    try:
        dt = date_parser.isoparse(value)
    except (ValueError, OverflowError) as e:
        raise InvalidInputError(f"Invalid ISO-8601 datetime '{value}'") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt


def _zone_for(tzid: Optional[str], default_tz: tzinfo) -> tzinfo:
    if not tzid:
        return default_tz
    try:
        return ZoneInfo(tzid)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        logger.debug("Unknown TZID %r, using %s", tzid, default_tz)
        return default_tz


def _ical_date(time: EventTime) -> date:
    return datetime.strptime(time.value[:8], "%Y%m%d").date()


def _ical_instant(time: EventTime, default_tz: tzinfo) -> datetime:
    naive = datetime.strptime(time.value[:15], "%Y%m%dT%H%M%S")
    if time.value.endswith("Z"):
        return naive.replace(tzinfo=ZoneInfo("UTC"))
    return naive.replace(tzinfo=_zone_for(time.tzid, default_tz))


def event_bounds(
    event: ParsedEvent, default_tz: tzinfo
) -> Union[Tuple[date, date], Tuple[datetime, datetime]]:
    """Return the event's closed interval.

    All-day events yield ``(first_day, last_day)`` dates, the exclusive DTEND
    moved back one day. Timed events yield aware datetimes.
    """
    if event.all_day:
        first_day = _ical_date(event.start)
        last_day = _ical_date(event.end) - timedelta(days=1)
        return first_day, max(first_day, last_day)
    return _ical_instant(event.start, default_tz), _ical_instant(event.end, default_tz)


def overlaps(
    event: ParsedEvent,
    window_start: datetime,
    window_end: datetime,
    default_tz: tzinfo,
) -> bool:
    """Closed-interval overlap; touching endpoints count as overlapping."""
    event_start, event_end = event_bounds(event, default_tz)
    if event.all_day:
        window_start = window_start.astimezone(default_tz).date()
        window_end = window_end.astimezone(default_tz).date()
    return event_start <= window_end and event_end >= window_start


def filter_events(
    objects: Iterable[RawCalendarObject],
    window_start: datetime,
    window_end: datetime,
    default_tz: tzinfo,
) -> List[Union[ParsedEvent, ParseFailure]]:
    """Keep the objects overlapping the window, in their original order.

    Objects that cannot be decoded stay in place as ParseFailure entries so
    the caller can report them; they never abort the rest of the batch.
    """
    selected: List[Union[ParsedEvent, ParseFailure]] = []
    for obj in objects:
        decoded = decode_object(obj)
        if isinstance(decoded, ParseFailure):
            selected.append(decoded)
            continue
        try:
            if overlaps(decoded, window_start, window_end, default_tz):
                selected.append(decoded)
        except ValueError as e:
            logger.warning("Could not evaluate dates of %s: %s", obj.url, e)
            selected.append(ParseFailure(url=obj.url, reason=str(e)))
    return selected
