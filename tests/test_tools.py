from unittest.mock import MagicMock

import pytest
from caldav.lib.error import AuthorizationError
from mcp.server.fastmcp.exceptions import ToolError
from mcp.server.lowlevel import Server

from caldav_mcp.errors import CalendarNotFoundError, InvalidInputError
from caldav_mcp.models import Reminder
from caldav_mcp.tools import (
    NO_EVENTS_MESSAGE,
    build_server,
    format_error,
    low_level_server,
    tool_error,
)
from tests.conftest import make_object, vevent


def tool_fn(server, name):
    return server._tool_manager.get_tool(name).fn


@pytest.mark.asyncio
async def test_registered_tools(ready_service):
    server = build_server(ready_service)

    tools = await server.list_tools()

    assert sorted(tool.name for tool in tools) == [
        "create-event",
        "get-master-event",
        "list-calendars",
        "list-events",
    ]


@pytest.mark.asyncio
async def test_tool_parameters_use_camel_case(ready_service):
    server = build_server(ready_service)

    tools = {tool.name: tool for tool in await server.list_tools()}

    assert "calendarName" in tools["create-event"].inputSchema["properties"]
    assert tools["get-master-event"].inputSchema["required"] == ["eventId"]
    assert set(tools["list-events"].inputSchema["required"]) == {"start", "end"}


@pytest.mark.asyncio
async def test_list_calendars(ready_service):
    server = build_server(ready_service)

    text = await tool_fn(server, "list-calendars")()

    assert text.startswith("Calendar: Work\n")


@pytest.mark.asyncio
async def test_create_event(ready_service, work_calendar):
    work_calendar.save_event.return_value = MagicMock(url="https://dav.example.com/x.ics")
    server = build_server(ready_service)

    url = await tool_fn(server, "create-event")(
        summary="Review",
        start="2024-03-20T10:00:00",
        end="2024-03-20T11:00:00",
        timezone="Europe/Berlin",
        reminders=[Reminder(action="DISPLAY", trigger="-PT10M")],
    )

    assert url == "https://dav.example.com/x.ics"


@pytest.mark.asyncio
async def test_list_events_empty(ready_service, work_calendar):
    work_calendar.search.return_value = []
    server = build_server(ready_service)

    text = await tool_fn(server, "list-events")(
        start="2024-03-20T00:00:00", end="2024-03-20T23:59:59", timezone="UTC"
    )

    assert text == NO_EVENTS_MESSAGE


@pytest.mark.asyncio
async def test_list_events(ready_service, home_calendar):
    home_calendar.search.return_value = [
        make_object(
            home_calendar,
            "dinner.ics",
            vevent("SUMMARY:Dinner\r\nDTSTART:20240320T180000Z\r\nDTEND:20240320T200000Z\r\n"),
        )
    ]
    server = build_server(ready_service)

    text = await tool_fn(server, "list-events")(
        start="2024-03-20T00:00:00",
        end="2024-03-20T23:59:59",
        timezone="UTC",
        calendarName="Home",
    )

    assert text.startswith("Dinner\nStart: 2024-03-20T18:00:00Z")


@pytest.mark.asyncio
async def test_unknown_calendar_raises_tool_error(ready_service):
    server = build_server(ready_service)

    with pytest.raises(ToolError, match='Calendar "Nope" not found'):
        await tool_fn(server, "get-master-event")(eventId="abc", calendarName="Nope")


@pytest.mark.asyncio
async def test_invalid_timezone_raises_tool_error(ready_service):
    server = build_server(ready_service)

    with pytest.raises(ToolError, match="Invalid Input"):
        await tool_fn(server, "list-events")(
            start="2024-03-20T00:00:00", end="2024-03-20T23:59:59", timezone="Nowhere/City"
        )


def test_tool_error_messages():
    auth = tool_error("list events", AuthorizationError("401"), "Work")
    not_found = tool_error("list events", CalendarNotFoundError("Nope"))
    invalid = tool_error("create event", InvalidInputError("bad range"))

    assert "Authentication Failed" in str(auth)
    assert "in calendar 'Work'" in str(auth)
    assert "list-calendars" in str(not_found)
    assert "Failed to create event: bad range" in str(invalid)


def test_format_error():
    assert format_error("Oops", "Something broke") == "❌ **Oops**\n\nSomething broke"
    assert format_error("Oops", "Something broke", "Try again") == (
        "❌ **Oops**\n\nSomething broke\nTry again"
    )


def test_low_level_server(service):
    server = low_level_server(build_server(service))

    assert isinstance(server, Server)
    assert server.name == "caldav-mcp"
