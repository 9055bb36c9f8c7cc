"""
Calendar service facade.

Owns the authenticated CalDAV client and the calendar list loaded at
initialization, and exposes the operations behind the MCP tools. One instance
lives for the whole process with the stdio transport and for one session with
the HTTP transport.
"""

import asyncio
import logging
import re
import time
from enum import Enum
from functools import partial
from typing import Any, Callable, Iterable, List, Optional, Tuple

import caldav
from caldav.elements import cdav, dav, ical as apple_props
from caldav.lib.error import DAVError, NotFoundError, ReportError

from .config import Settings
from .errors import (
    CalendarNotFoundError,
    ConfigurationError,
    EventNotFoundError,
    InvalidInputError,
    NoCalendarsError,
)
from .ical import build_event_ical, decode_object, extract_timezone_id, format_event
from .models import CalendarRef, RawCalendarObject, Reminder
from .query import filter_events, parse_datetime, resolve_timezone

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., Any]

_CALENDAR_PROPERTIES = (
    dav.DisplayName,
    cdav.CalendarDescription,
    cdav.CalendarTimeZone,
    apple_props.CalendarColor,
)


async def run_caldav_async(func, *args, **kwargs):
    """Run a blocking CalDAV operation in a worker thread.

    Keeps synchronous CalDAV calls from blocking the event loop serving the
    MCP transport.
    """
    if kwargs:
        return await asyncio.to_thread(partial(func, **kwargs), *args)
    return await asyncio.to_thread(func, *args)


def default_client_factory(url: str, username: str, password: str) -> caldav.DAVClient:
    # The client talks to ``url`` as given; it never resolves
    # /.well-known/caldav, so no discovery exchange takes place.
    return caldav.DAVClient(url=url, username=username, password=password)


def make_event_uid(summary: str, now: Optional[float] = None) -> str:
    """Derive an event UID (and file name stem) from a summary and the time."""
    slug = re.sub(r"[^a-z0-9]+", "-", summary.lower()).strip("-") or "event"
    millis = int((time.time() if now is None else now) * 1000)
    return f"{slug}-{millis}"


def describe_calendar(calendar: Any) -> CalendarRef:
    """Collect display metadata for a CalDAV calendar.

    Servers differ in which properties they expose; lookups that fail leave
    the corresponding field unset.
    """
    props = {}
    try:
        props = calendar.get_properties([prop() for prop in _CALENDAR_PROPERTIES]) or {}
    except DAVError as e:
        logger.warning("Could not read properties of calendar %s: %s", calendar.url, e)

    components: List[str] = []
    try:
        components = list(calendar.get_supported_components() or [])
    except DAVError as e:
        logger.warning("Could not read components of calendar %s: %s", calendar.url, e)

    return CalendarRef(
        name=calendar.name or props.get(dav.DisplayName.tag) or "Unnamed Calendar",
        url=str(calendar.url),
        description=props.get(cdav.CalendarDescription.tag) or None,
        timezone=extract_timezone_id(props.get(cdav.CalendarTimeZone.tag)),
        color=props.get(apple_props.CalendarColor.tag) or None,
        components=components,
    )


def format_calendar(calendar: CalendarRef) -> str:
    return (
        f"Calendar: {calendar.name}\n"
        f"URL: {calendar.url}\n"
        f"Description: {calendar.description or 'No description'}\n"
        f"Components: {', '.join(calendar.components) or 'Not specified'}\n"
        f"Timezone: {calendar.timezone or 'Not specified'}\n"
        f"Color: {calendar.color or 'Not specified'}\n"
        "---"
    )


class ServiceState(str, Enum):
    """Lifecycle of a CalendarService."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class CalendarService:
    """Calendar operations backed by one authenticated CalDAV client."""

    def __init__(self, settings: Settings, client_factory: Optional[ClientFactory] = None):
        self.settings = settings
        self.state = ServiceState.UNINITIALIZED
        self._client_factory = client_factory or default_client_factory
        self._client = None
        self._calendars: List[Tuple[CalendarRef, Any]] = []

    @property
    def calendars(self) -> List[CalendarRef]:
        return [ref for ref, _ in self._calendars]

    async def initialize(self) -> None:
        """Authenticate and load the account's calendars.

        Raises:
            ConfigurationError: If CALDAV_BASE_URL is not configured
            NoCalendarsError: If the account exposes no calendars
            caldav.lib.error.DAVError: If the server rejects the requests
        """
        base_url = self.settings.require_base_url()
        self.state = ServiceState.INITIALIZING
        ready = False
        try:
            client = self._client_factory(
                url=base_url,
                username=self.settings.username,
                password=self.settings.password,
            )
            principal = await run_caldav_async(client.principal)
            calendars = await run_caldav_async(principal.calendars)
            if not calendars:
                raise NoCalendarsError()

            loaded = []
            for calendar in calendars:
                ref = await run_caldav_async(describe_calendar, calendar)
                loaded.append((ref, calendar))

            self._client = client
            self._calendars = loaded
            ready = True
            logger.info("Found calendars: %s", ", ".join(ref.name for ref, _ in loaded))
        finally:
            self.state = ServiceState.READY if ready else ServiceState.UNINITIALIZED

    def _require_ready(self) -> None:
        if self.state is not ServiceState.READY:
            if not self.settings.base_url:
                raise ConfigurationError("CALDAV_BASE_URL environment variable is required")
            raise ConfigurationError(
                f"Calendar service is {self.state.value}; initialize() must complete first"
            )

    def _resolve(self, calendar_name: Optional[str] = None) -> Tuple[CalendarRef, Any]:
        self._require_ready()
        if not calendar_name:
            return self._calendars[0]
        for ref, calendar in self._calendars:
            if ref.name == calendar_name:
                return ref, calendar
        raise CalendarNotFoundError(calendar_name)

    def get_calendar(self, calendar_name: Optional[str] = None) -> CalendarRef:
        """Return a calendar by display name, or the first one when no name is given.

        Raises:
            CalendarNotFoundError: If no calendar has that display name
        """
        return self._resolve(calendar_name)[0]

    async def list_calendars(self) -> str:
        self._require_ready()
        return "\n".join(format_calendar(ref) for ref, _ in self._calendars)

    async def create_event(
        self,
        summary: str,
        start: str,
        end: str,
        timezone: str,
        recurrence: Optional[str] = None,
        location: Optional[str] = None,
        calendar_name: Optional[str] = None,
        reminders: Optional[Iterable[Reminder]] = None,
        description: Optional[str] = None,
    ) -> str:
        """Create an event and return the URL of the new calendar object.

        ``start`` and ``end`` are local times in ``timezone``
        (``YYYY-MM-DDTHH:MM:SS``); values carrying a UTC offset are converted
        to that zone's wall clock first.
        """
        self._require_ready()
        if not summary or not summary.strip():
            raise InvalidInputError("Event summary must not be empty")
        if not timezone:
            raise InvalidInputError("A timezone is required to create an event")

        zone = resolve_timezone(timezone)
        start_dt = parse_datetime(start, zone).astimezone(zone)
        end_dt = parse_datetime(end, zone).astimezone(zone)
        if end_dt < start_dt:
            raise InvalidInputError("Event end must not be before its start")

        ref, calendar = self._resolve(calendar_name)
        uid = make_event_uid(summary)
        filename = f"{uid}.ics"

        try:
            ical_text = build_event_ical(
                summary,
                start_dt,
                end_dt,
                timezone,
                recurrence=recurrence,
                location=location,
                reminders=reminders,
                description=description,
                uid=uid,
            )
        except ValueError as e:
            raise InvalidInputError(f"Invalid event data: {e}") from e

        logger.debug("Generated iCalendar text for %s:\n%s", filename, ical_text)

        try:
            created = await run_caldav_async(calendar.save_event, ical_text)
        except Exception:
            logger.exception(
                "Error creating calendar object in calendar %s (filename %s, calendar URL %s)",
                ref.name,
                filename,
                ref.url,
            )
            raise

        event_url = str(created.url)
        logger.info("Created calendar object %s", event_url)
        return event_url

    async def _fetch_objects(self, calendar: Any, start, end) -> List[RawCalendarObject]:
        if self.settings.server_side_filter:
            try:
                results = await run_caldav_async(
                    calendar.search, start=start, end=end, event=True, expand=True
                )
            except ReportError as e:
                logger.warning("Time-range query rejected, fetching all events: %s", e)
                results = await run_caldav_async(calendar.events)
        else:
            results = await run_caldav_async(calendar.events)
        return [RawCalendarObject(url=str(obj.url), data=obj.data or "") for obj in results]

    async def list_events(
        self,
        start: str,
        end: str,
        timezone: Optional[str] = None,
        calendar_name: Optional[str] = None,
    ) -> str:
        """List events overlapping [start, end], one text block per event."""
        self._require_ready()
        zone = resolve_timezone(timezone)
        window_start = parse_datetime(start, zone)
        window_end = parse_datetime(end, zone)
        if window_end < window_start:
            raise InvalidInputError("The end of the time range must not be before its start")

        ref, calendar = self._resolve(calendar_name)
        logger.debug("Fetching events between %s and %s from calendar %s", start, end, ref.name)

        objects = await self._fetch_objects(calendar, window_start, window_end)
        logger.debug("Retrieved %d calendar objects", len(objects))

        selected = filter_events(objects, window_start, window_end, zone)
        return "\n".join(format_event(event) for event in selected)

    async def get_master_event(self, event_id: str, calendar_name: Optional[str] = None) -> str:
        """Fetch and format the calendar object ``<event_id>.ics``.

        Raises:
            EventNotFoundError: If the calendar holds no such object
        """
        self._require_ready()
        if not event_id or "/" in event_id:
            raise InvalidInputError(f"Invalid event id '{event_id}'")

        ref, calendar = self._resolve(calendar_name)
        logger.debug("Fetching master event %s from calendar %s", event_id, ref.name)

        object_url = calendar.url.join(f"{event_id}.ics")
        try:
            obj = await run_caldav_async(calendar.event_by_url, object_url)
        except NotFoundError as e:
            raise EventNotFoundError(event_id) from e

        raw = RawCalendarObject(url=str(obj.url or object_url), data=obj.data or "")
        return format_event(decode_object(raw))
