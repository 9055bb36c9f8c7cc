from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from caldav.elements import cdav, dav, ical as apple_props
from caldav.lib.url import URL

from caldav_mcp.config import Settings
from caldav_mcp.service import CalendarService

BASE_URL = "https://dav.example.com/calendars/user/"

BERLIN_VTIMEZONE = (
    "BEGIN:VCALENDAR\r\n"
    "VERSION:2.0\r\n"
    "BEGIN:VTIMEZONE\r\n"
    "TZID:Europe/Berlin\r\n"
    "END:VTIMEZONE\r\n"
    "END:VCALENDAR\r\n"
)


def make_calendar(name, slug, description=None, timezone=None, color=None, components=("VEVENT",)):
    """A MagicMock standing in for caldav.Calendar."""
    calendar = MagicMock(name=f"calendar-{slug}")
    calendar.name = name
    calendar.url = URL.objectify(f"{BASE_URL}{slug}/")
    calendar.get_properties.return_value = {
        dav.DisplayName.tag: name,
        cdav.CalendarDescription.tag: description,
        cdav.CalendarTimeZone.tag: timezone,
        apple_props.CalendarColor.tag: color,
    }
    calendar.get_supported_components.return_value = list(components)
    return calendar


def make_object(calendar, filename, data):
    """A MagicMock standing in for a fetched caldav.Event."""
    obj = MagicMock(name=f"object-{filename}")
    obj.url = calendar.url.join(filename)
    obj.data = data
    return obj


def vevent(body, filename_uid="event-1"):
    return (
        "BEGIN:VCALENDAR\r\n"
        "VERSION:2.0\r\n"
        "PRODID:-//Example//Test//EN\r\n"
        "BEGIN:VEVENT\r\n"
        f"UID:{filename_uid}\r\n"
        f"{body}"
        "END:VEVENT\r\n"
        "END:VCALENDAR\r\n"
    )


@pytest.fixture
def settings():
    return Settings(base_url=BASE_URL, username="user@example.com", password="secret")


@pytest.fixture
def work_calendar():
    return make_calendar(
        "Work",
        "work",
        description="Work events",
        timezone=BERLIN_VTIMEZONE,
        color="#FF0000FF",
        components=("VEVENT", "VTODO"),
    )


@pytest.fixture
def home_calendar():
    return make_calendar("Home", "home")


@pytest.fixture
def dav_client(work_calendar, home_calendar):
    client = MagicMock(name="DAVClient")
    client.principal.return_value.calendars.return_value = [work_calendar, home_calendar]
    return client


@pytest.fixture
def client_factory(dav_client):
    return MagicMock(name="client_factory", return_value=dav_client)


@pytest.fixture
def service(settings, client_factory):
    return CalendarService(settings, client_factory=client_factory)


@pytest_asyncio.fixture
async def ready_service(service):
    await service.initialize()
    return service
