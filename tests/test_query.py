from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from caldav_mcp.errors import InvalidInputError
from caldav_mcp.ical import parse_event
from caldav_mcp.models import ParsedEvent, ParseFailure, RawCalendarObject
from caldav_mcp.query import (
    event_bounds,
    filter_events,
    overlaps,
    parse_datetime,
    resolve_timezone,
)
from tests.conftest import vevent

UTC = ZoneInfo("UTC")
NEW_YORK = ZoneInfo("America/New_York")

HOLIDAY = vevent(
    "SUMMARY:Holiday\r\nDTSTART;VALUE=DATE:20240101\r\nDTEND;VALUE=DATE:20240103\r\n"
)
MEETING = vevent(
    "SUMMARY:Meeting\r\nDTSTART:20240320T100000Z\r\nDTEND:20240320T110000Z\r\n"
)


def window(start, end, tz=UTC):
    return parse_datetime(start, tz), parse_datetime(end, tz)


class TestAllDayOverlap:
    def test_exclusive_end_becomes_inclusive(self):
        assert event_bounds(parse_event(HOLIDAY), UTC) == (date(2024, 1, 1), date(2024, 1, 2))

    def test_window_on_last_day_includes_event(self):
        start, end = window("2024-01-02T00:00:00", "2024-01-02T23:59:59")

        assert overlaps(parse_event(HOLIDAY), start, end, UTC)

    def test_window_after_last_day_excludes_event(self):
        start, end = window("2024-01-03T00:00:00", "2024-01-05T23:59:59")

        assert not overlaps(parse_event(HOLIDAY), start, end, UTC)

    def test_single_day_event(self):
        event = parse_event(
            vevent("SUMMARY:Birthday\r\nDTSTART;VALUE=DATE:20240105\r\nDTEND;VALUE=DATE:20240106\r\n")
        )
        start, end = window("2024-01-05T12:00:00", "2024-01-05T13:00:00")

        assert overlaps(event, start, end, UTC)


class TestTimedOverlap:
    def test_touching_endpoints_overlap(self):
        start, end = window("2024-03-20T11:00:00", "2024-03-20T12:00:00")

        assert overlaps(parse_event(MEETING), start, end, UTC)

    def test_window_before_event(self):
        start, end = window("2024-03-20T08:00:00", "2024-03-20T09:59:59")

        assert not overlaps(parse_event(MEETING), start, end, UTC)

    def test_named_zone_is_resolved(self):
        # 16:00 CET is 11:00 EDT on 2024-03-20
        event = parse_event(
            vevent(
                "SUMMARY:Berlin call\r\n"
                "DTSTART;TZID=Europe/Berlin:20240320T160000\r\n"
                "DTEND;TZID=Europe/Berlin:20240320T170000\r\n"
            )
        )

        inside = window("2024-03-20T11:30:00", "2024-03-20T11:45:00", NEW_YORK)
        before = window("2024-03-20T09:00:00", "2024-03-20T10:00:00", NEW_YORK)

        assert overlaps(event, *inside, NEW_YORK)
        assert not overlaps(event, *before, NEW_YORK)

    def test_floating_time_uses_request_zone(self):
        event = parse_event(
            vevent("SUMMARY:Floating\r\nDTSTART:20240320T100000\r\nDTEND:20240320T110000\r\n")
        )
        start, end = window("2024-03-20T10:30:00", "2024-03-20T10:45:00", NEW_YORK)

        assert overlaps(event, start, end, NEW_YORK)


class TestFilterEvents:
    def test_keeps_order_and_failures(self):
        objects = [
            RawCalendarObject(url="https://x/meeting.ics", data=MEETING),
            RawCalendarObject(url="https://x/broken.ics", data=vevent("SUMMARY:Broken\r\n")),
            RawCalendarObject(url="https://x/holiday.ics", data=HOLIDAY),
            RawCalendarObject(
                url="https://x/late.ics",
                data=vevent(
                    "SUMMARY:Late\r\nDTSTART:20240320T150000Z\r\nDTEND:20240320T160000Z\r\n"
                ),
            ),
        ]
        start, end = window("2024-03-20T09:00:00", "2024-03-20T14:00:00")

        selected = filter_events(objects, start, end, UTC)

        assert len(selected) == 2
        assert isinstance(selected[0], ParsedEvent)
        assert selected[0].summary == "Meeting"
        assert isinstance(selected[1], ParseFailure)
        assert selected[1].url == "https://x/broken.ics"

    def test_empty(self):
        start, end = window("2024-03-20T09:00:00", "2024-03-20T14:00:00")

        assert filter_events([], start, end, UTC) == []


class TestInputParsing:
    def test_naive_value_is_localized(self):
        dt = parse_datetime("2024-03-20T15:30:00", NEW_YORK)

        assert dt.tzinfo is NEW_YORK
        assert dt.hour == 15

    def test_offset_value_is_kept(self):
        dt = parse_datetime("2024-03-20T15:30:00Z", NEW_YORK)

        assert dt == datetime(2024, 3, 20, 15, 30, tzinfo=UTC)

    def test_invalid_value(self):
        with pytest.raises(InvalidInputError):
            parse_datetime("next tuesday", UTC)

    def test_unknown_timezone(self):
        with pytest.raises(InvalidInputError, match="Mars/Olympus_Mons"):
            resolve_timezone("Mars/Olympus_Mons")

    def test_missing_timezone_means_local(self):
        assert resolve_timezone(None) is not None


class TestMalformedObjects:
    def test_bad_alarm_does_not_abort_batch(self):
        objects = [
            RawCalendarObject(
                url="https://x/alarm.ics",
                data=vevent(
                    "SUMMARY:Odd alarm\r\n"
                    "DTSTART:20240320T100000Z\r\n"
                    "DTEND:20240320T110000Z\r\n"
                    "BEGIN:VALARM\r\nACTION:DISPLAY\r\nTRIGGER: \r\nEND:VALARM\r\n"
                ),
            ),
            RawCalendarObject(url="https://x/meeting.ics", data=MEETING),
        ]
        start, end = window("2024-03-20T09:00:00", "2024-03-20T14:00:00")

        selected = filter_events(objects, start, end, UTC)

        assert [event.summary for event in selected] == ["Odd alarm", "Meeting"]
        assert selected[0].reminders == []

    def test_directory_tzid_falls_back_to_request_zone(self):
        objects = [
            RawCalendarObject(
                url="https://x/region.ics",
                data=vevent(
                    "SUMMARY:Region\r\n"
                    "DTSTART;TZID=America:20240320T100000\r\n"
                    "DTEND;TZID=America:20240320T110000\r\n"
                ),
            ),
            RawCalendarObject(url="https://x/meeting.ics", data=MEETING),
        ]
        start, end = window("2024-03-20T09:00:00", "2024-03-20T14:00:00")

        selected = filter_events(objects, start, end, UTC)

        assert [event.summary for event in selected] == ["Region", "Meeting"]

    def test_directory_timezone_name_is_invalid_input(self):
        with pytest.raises(InvalidInputError, match="America"):
            resolve_timezone("America")
