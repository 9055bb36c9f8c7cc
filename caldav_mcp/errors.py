"""Error types raised by the calendar service."""


class CalendarServiceError(Exception):
    """Base class for errors raised by the calendar service."""


class ConfigurationError(CalendarServiceError):
    """Required configuration is missing or the service is not ready."""


class InvalidInputError(CalendarServiceError, ValueError):
    """A caller-supplied value (timezone, instant, range) is invalid."""


class ResourceNotFoundError(CalendarServiceError):
    """A requested calendar resource does not exist."""


class NoCalendarsError(ResourceNotFoundError):
    """The CalDAV account exposes no calendars."""

    def __init__(self):
        super().__init__("No calendars found")


class CalendarNotFoundError(ResourceNotFoundError):
    """No calendar matches the requested display name."""

    def __init__(self, calendar_name: str):
        super().__init__(f'Calendar "{calendar_name}" not found')
        self.calendar_name = calendar_name


class EventNotFoundError(ResourceNotFoundError):
    """No calendar object matches the requested event id."""

    def __init__(self, event_id: str):
        super().__init__(f"Master event {event_id} not found")
        self.event_id = event_id
