"""
MCP tool surface.

Binds the calendar tools to a CalendarService on a FastMCP server. Each stdio
process builds one server; the HTTP transport builds one per session.
"""

import logging
from typing import Annotated, List, Optional

from caldav.lib.error import AuthorizationError, DAVError
from mcp.server.fastmcp import FastMCP
from mcp.server.lowlevel import Server
from mcp.server.fastmcp.exceptions import ToolError
from pydantic import Field

from .errors import (
    CalendarServiceError,
    ConfigurationError,
    InvalidInputError,
    ResourceNotFoundError,
)
from .models import Reminder
from .service import CalendarService

logger = logging.getLogger(__name__)

SERVER_NAME = "caldav-mcp"
NO_EVENTS_MESSAGE = "No events found."

# Local time, optionally with fractional seconds and a UTC offset
DATETIME_PATTERN = r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?(Z|[+-]\d{2}:\d{2})?$"

_TIME_NOTE = (
    "Examples:\n"
    "- 2024-03-20T15:30:00\n"
    "Note: The timezone will be applied from the timezone parameter. "
    "Values with a UTC offset (2024-03-20T15:30:00-05:00) are converted to that timezone."
)
_TIMEZONE_NOTE = (
    "Examples:\n"
    "- America/New_York\n"
    "- Europe/London\n"
    "- Asia/Tokyo\n"
    "Must be a valid IANA timezone name."
)
_CALENDAR_NOTE = (
    "If not specified, uses the first available calendar.\n"
    "Use list-calendars to see available calendar names."
)


def format_error(error_type: str, message: str, details: Optional[str] = None) -> str:
    """Format error message consistently.

    Args:
        error_type: Type of error (e.g., "Calendar Not Found", "Invalid Input")
        message: Main error message
        details: Optional additional details

    Returns:
        Formatted error string
    """
    result = f"❌ **{error_type}**\n\n{message}"
    if details:
        result += f"\n{details}"
    return result


def tool_error(operation: str, error: Exception, calendar_name: Optional[str] = None) -> ToolError:
    """Translate a service or CalDAV failure into a ToolError for the caller."""
    where = f" in calendar '{calendar_name}'" if calendar_name else ""

    if isinstance(error, AuthorizationError):
        message = format_error(
            "Authentication Failed",
            f"The CalDAV server rejected the credentials while trying to {operation}{where}.",
            "Check CALDAV_USERNAME and CALDAV_PASSWORD.",
        )
    elif isinstance(error, ResourceNotFoundError):
        message = format_error(
            "Not Found",
            str(error),
            "Use `list-calendars` to see available calendars.",
        )
    elif isinstance(error, InvalidInputError):
        message = format_error("Invalid Input", f"Failed to {operation}: {error}")
    elif isinstance(error, ConfigurationError):
        message = format_error("Configuration Error", str(error))
    else:
        message = format_error("Error", f"Failed to {operation}{where}: {error}")

    logger.warning("Tool call failed (%s%s): %s", operation, where, error)
    return ToolError(message)


def build_server(service: CalendarService) -> FastMCP:
    """Create a FastMCP server whose tools operate on ``service``."""
    mcp = FastMCP(SERVER_NAME)

    @mcp.tool(
        name="list-calendars",
        annotations={
            "title": "List Calendars",
            "readOnlyHint": True,
            "destructiveHint": False,
            "idempotentHint": True,
            "openWorldHint": True,
        },
    )
    async def list_calendars() -> str:
        """List all calendars on the CalDAV account.

        Returns one block per calendar with its name, URL, description,
        supported components, timezone and color.
        """
        try:
            return await service.list_calendars()
        except (CalendarServiceError, DAVError) as e:
            raise tool_error("list calendars", e) from e

    @mcp.tool(
        name="create-event",
        annotations={
            "title": "Create Calendar Event",
            "readOnlyHint": False,
            "destructiveHint": False,
            "idempotentHint": False,
            "openWorldHint": True,
        },
    )
    async def create_event(
        summary: Annotated[
            str, Field(description="The title or summary of the calendar event", min_length=1)
        ],
        start: Annotated[
            str,
            Field(
                description="The start time of the event in ISO 8601 format.\n" + _TIME_NOTE,
                pattern=DATETIME_PATTERN,
            ),
        ],
        end: Annotated[
            str,
            Field(
                description="The end time of the event in ISO 8601 format.\n" + _TIME_NOTE,
                pattern=DATETIME_PATTERN,
            ),
        ],
        timezone: Annotated[
            str, Field(description="The timezone for the event.\n" + _TIMEZONE_NOTE)
        ],
        recurrence: Annotated[
            Optional[str],
            Field(
                description=(
                    "Optional recurrence rule in iCalendar RRULE format.\n"
                    "Examples:\n"
                    "- FREQ=DAILY (daily recurrence)\n"
                    "- FREQ=WEEKLY;BYDAY=MO,WE,FR (every Monday, Wednesday, Friday)\n"
                    "- FREQ=MONTHLY;BYDAY=1MO (first Monday of each month)\n"
                    "- FREQ=YEARLY;COUNT=5 (yearly for 5 occurrences)\n"
                    "- FREQ=WEEKLY;UNTIL=20241231T235959Z (weekly until end of 2024)"
                )
            ),
        ] = None,
        location: Annotated[
            Optional[str],
            Field(
                description=(
                    "Optional location for the event.\n"
                    "Examples:\n"
                    "- Conference Room A\n"
                    "- 123 Main St, City, State\n"
                    "- Virtual Meeting (Zoom)"
                )
            ),
        ] = None,
        description: Annotated[
            Optional[str], Field(description="Optional event description/notes")
        ] = None,
        calendarName: Annotated[
            Optional[str],
            Field(
                description="Optional name of the calendar to create the event in.\n"
                + _CALENDAR_NOTE
            ),
        ] = None,
        reminders: Annotated[
            Optional[List[Reminder]],
            Field(
                description=(
                    "Optional array of reminders for the event.\n"
                    "Each reminder can have a different action and trigger time."
                )
            ),
        ] = None,
    ) -> str:
        """Create a new event in a calendar.

        The start and end times are interpreted as wall-clock times in the
        given timezone. Returns the URL of the created calendar object.
        """
        try:
            return await service.create_event(
                summary,
                start,
                end,
                timezone,
                recurrence=recurrence,
                location=location,
                calendar_name=calendarName,
                reminders=reminders,
                description=description,
            )
        except (CalendarServiceError, DAVError) as e:
            raise tool_error("create event", e, calendarName) from e

    @mcp.tool(
        name="list-events",
        annotations={
            "title": "List Calendar Events",
            "readOnlyHint": True,
            "destructiveHint": False,
            "idempotentHint": True,
            "openWorldHint": True,
        },
    )
    async def list_events(
        start: Annotated[
            str,
            Field(
                description="The start of the time range in ISO 8601 format.\n" + _TIME_NOTE,
                pattern=DATETIME_PATTERN,
            ),
        ],
        end: Annotated[
            str,
            Field(
                description="The end of the time range in ISO 8601 format.\n" + _TIME_NOTE,
                pattern=DATETIME_PATTERN,
            ),
        ],
        timezone: Annotated[
            Optional[str],
            Field(
                description="Optional timezone of the time range (defaults to the server's).\n"
                + _TIMEZONE_NOTE
            ),
        ] = None,
        calendarName: Annotated[
            Optional[str],
            Field(
                description="Optional name of the calendar to list events from.\n"
                + _CALENDAR_NOTE
            ),
        ] = None,
    ) -> str:
        """List events that overlap a time range.

        Each event is shown with its summary, start and end, tagged
        All Day / Recurring / Recurrence Instance where applicable.
        Recurrence instances include a Master Event ID usable with
        get-master-event.
        """
        try:
            events = await service.list_events(
                start, end, timezone=timezone, calendar_name=calendarName
            )
        except (CalendarServiceError, DAVError) as e:
            raise tool_error("list events", e, calendarName) from e
        return events or NO_EVENTS_MESSAGE

    @mcp.tool(
        name="get-master-event",
        annotations={
            "title": "Get Master Event",
            "readOnlyHint": True,
            "destructiveHint": False,
            "idempotentHint": True,
            "openWorldHint": True,
        },
    )
    async def get_master_event(
        eventId: Annotated[
            str,
            Field(
                description=(
                    "The ID of the master event to fetch.\n"
                    "This ID can be found in the Master Event ID field when listing events.\n"
                    "Example: team-standup-1700000000000"
                ),
                min_length=1,
            ),
        ],
        calendarName: Annotated[
            Optional[str],
            Field(
                description="Optional name of the calendar containing the event.\n"
                + _CALENDAR_NOTE
            ),
        ] = None,
    ) -> str:
        """Fetch the master event of a recurring series by its event ID."""
        try:
            return await service.get_master_event(eventId, calendar_name=calendarName)
        except (CalendarServiceError, DAVError) as e:
            raise tool_error("get master event", e, calendarName) from e

    return mcp


def low_level_server(mcp: FastMCP) -> Server:
    """Return the protocol-level server behind ``mcp`` for custom transports."""
    return mcp._mcp_server
