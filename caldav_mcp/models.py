"""Data model shared by the codec, the filter engine and the service."""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


ReminderAction = Literal["DISPLAY", "AUDIO", "EMAIL"]


class Reminder(BaseModel):
    """A VALARM attached to an event."""

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    action: ReminderAction = Field(
        ...,
        description=(
            "The type of reminder action.\n"
            "- DISPLAY: Shows a notification\n"
            "- AUDIO: Plays a sound\n"
            "- EMAIL: Sends an email"
        ),
    )
    trigger: str = Field(
        ...,
        description=(
            "When the reminder should trigger.\n"
            "Examples:\n"
            "- -PT15M (15 minutes before)\n"
            "- -PT1H (1 hour before)\n"
            "- -P1D (1 day before)\n"
            "- 20240320T100000Z (specific date/time)"
        ),
        min_length=1,
    )
    description: Optional[str] = Field(
        default=None,
        description=(
            "Optional description for the reminder.\n"
            "For DISPLAY and EMAIL actions, this will be shown in the notification/email."
        ),
    )

    @field_validator("action", mode="before")
    @classmethod
    def _upper_action(cls, value):
        return value.upper() if isinstance(value, str) else value


class CalendarRef(BaseModel):
    """One calendar collection on the CalDAV account."""

    model_config = ConfigDict(frozen=True)

    name: str
    url: str
    description: Optional[str] = None
    timezone: Optional[str] = None
    color: Optional[str] = None
    components: List[str] = Field(default_factory=list)


class RawCalendarObject(BaseModel):
    """A fetched calendar resource: its URL and iCalendar text."""

    url: str
    data: str


class EventTime(BaseModel):
    """A DTSTART/DTEND value as it appears in the source text."""

    model_config = ConfigDict(frozen=True)

    value: str
    tzid: Optional[str] = None
    all_day: bool = False


class ParsedEvent(BaseModel):
    """Fields decoded from a single VEVENT."""

    summary: str
    start: EventTime
    end: EventTime
    uid: Optional[str] = None
    rrule: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    recurrence_id: Optional[str] = None
    url: Optional[str] = None
    master_event_id: Optional[str] = None
    reminders: List[Reminder] = Field(default_factory=list)

    @property
    def all_day(self) -> bool:
        return self.start.all_day or self.end.all_day

    @property
    def is_recurring(self) -> bool:
        return self.rrule is not None

    @property
    def is_recurrence_instance(self) -> bool:
        return self.recurrence_id is not None


class ParseFailure(BaseModel):
    """A calendar object whose text could not be decoded."""

    url: Optional[str] = None
    reason: str
