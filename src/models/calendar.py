"""
Calendar Data Models

A calendar event row plays one of three roles:

- regular event:    no frequency, no parent
- recurring master: frequency set, no parent
- exception:        parent_event_id + original_date set; it replaces
                    (or, when deleted, suppresses) exactly one
                    occurrence of its master

Occurrences of a master are never stored. They are recomputed as
VirtualOccurrence objects for every query window.

DESIGN DECISION: RecurringEventRule is the only thing the expander sees.
It validates itself at construction so that an unknown frequency or a
zero-length event can never reach the expansion loop.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from src.dates import day_key, ensure_aware
from src.errors import InvalidRuleError


def new_id() -> str:
    return uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class RecurrenceFrequency(str, Enum):
    """Fixed calendar step applied to the anchor start."""
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"

    @classmethod
    def coerce(cls, value: Any) -> "RecurrenceFrequency":
        """
        Accept an enum member or its (case-insensitive) name.

        Raises:
            InvalidRuleError: for anything else, including None.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str) and value.strip().upper() in cls.__members__:
            return cls[value.strip().upper()]
        raise InvalidRuleError(
            f"Unknown recurrence frequency: {value!r}",
            field="frequency",
        )


class EditMode(str, Enum):
    """Scope of an edit on a recurring event."""
    THIS = "this"
    ALL = "all"


class DeleteMode(str, Enum):
    """Scope of a delete on a recurring event."""
    THIS = "this"
    FUTURE = "future"
    ALL = "all"


# =============================================================================
# RECURRENCE
# =============================================================================

class RecurringEventRule(BaseModel):
    """
    Input to the recurrence expander.

    Invariants enforced at construction:
    - frequency is one of DAILY/WEEKLY/MONTHLY/YEARLY
    - end > start (the duration is copied onto every occurrence)
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Master event id")
    start: datetime = Field(..., description="Start of the first occurrence")
    end: datetime = Field(..., description="End of the first occurrence")
    frequency: RecurrenceFrequency
    recurrence_end: Optional[datetime] = Field(
        default=None,
        description="No occurrence starts after this instant",
    )

    @model_validator(mode="before")
    @classmethod
    def validate_frequency(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            data["frequency"] = RecurrenceFrequency.coerce(data.get("frequency"))
        return data

    @field_validator("start", "end", "recurrence_end")
    @classmethod
    def make_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(v) if v is not None else None

    @model_validator(mode="after")
    def validate_duration(self) -> "RecurringEventRule":
        if self.end <= self.start:
            raise InvalidRuleError(
                f"Recurring event {self.id} must end after it starts",
                field="end",
            )
        return self

    @property
    def duration(self):
        return self.end - self.start


class ExceptionMarker(BaseModel):
    """
    A per-occurrence edit or deletion of a recurring series.

    Identity is (parent_event_id, original_date): the calendar day on which
    the un-modified occurrence would have started.
    """

    parent_event_id: str
    original_date: date
    is_deleted: bool = False
    override_start: Optional[datetime] = None
    override_end: Optional[datetime] = None
    title: Optional[str] = None

    @property
    def date_key(self) -> str:
        return day_key(self.original_date)

    @property
    def key(self) -> tuple[str, str]:
        return self.parent_event_id, self.date_key


class VirtualOccurrence(BaseModel):
    """One computed occurrence of a recurring master. Never persisted."""
    model_config = ConfigDict(frozen=True)

    parent_id: str
    start: datetime
    end: datetime
    virtual_id: str = Field(..., description="parent_id + '__' + YYYY-MM-DD")


# =============================================================================
# EVENTS
# =============================================================================

class SubCalendar(BaseModel):
    """A user-owned calendar that groups events."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    user_id: str
    name: str = Field(..., min_length=1, max_length=100)
    color: str = Field(default="#6C63FF", pattern=r"^#[0-9a-fA-F]{6}$")
    is_visible: bool = True
    sort_order: int = 0


class CalendarEvent(BaseModel):
    """A stored calendar event (regular, recurring master or exception)."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    user_id: str
    sub_calendar_id: str
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    location: Optional[str] = None

    start: datetime
    end: datetime
    is_all_day: bool = False

    # Recurring master
    frequency: Optional[RecurrenceFrequency] = None
    recurrence_end: Optional[datetime] = None

    # Exception
    parent_event_id: Optional[str] = None
    original_date: Optional[date] = None

    # iCal bookkeeping
    ical_uid: Optional[str] = None
    is_locally_modified: bool = False
    is_locally_deleted: bool = False

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("start", "end", "recurrence_end", "created_at", "updated_at")
    @classmethod
    def make_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(v) if v is not None else None

    @model_validator(mode="after")
    def validate_shape(self) -> "CalendarEvent":
        if self.end < self.start:
            raise ValueError("Event end cannot be before start")
        if (self.parent_event_id is None) != (self.original_date is None):
            raise ValueError("Exceptions need both parent_event_id and original_date")
        if self.parent_event_id is not None and self.frequency is not None:
            raise ValueError("An exception cannot carry its own recurrence")
        return self

    @property
    def is_recurring(self) -> bool:
        return self.frequency is not None and self.parent_event_id is None

    @property
    def is_exception(self) -> bool:
        return self.parent_event_id is not None

    def to_rule(self) -> RecurringEventRule:
        """Build the expander input for a recurring master."""
        return RecurringEventRule(
            id=self.id,
            start=self.start,
            end=self.end,
            frequency=self.frequency,
            recurrence_end=self.recurrence_end,
        )

    def to_exception_marker(self) -> ExceptionMarker:
        if not self.is_exception:
            raise ValueError(f"Event {self.id} is not an exception")
        return ExceptionMarker(
            parent_event_id=self.parent_event_id,
            original_date=self.original_date,
            is_deleted=self.is_locally_deleted,
            override_start=self.start,
            override_end=self.end,
            title=self.title,
        )


class EventChanges(BaseModel):
    """
    Partial update for an event.

    Only fields explicitly set are applied, so `description=None`
    clears the description while an omitted description keeps it.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    location: Optional[str] = None
    sub_calendar_id: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    is_all_day: Optional[bool] = None
    frequency: Optional[RecurrenceFrequency] = None
    recurrence_end: Optional[datetime] = None

    def applied_to(self, event: CalendarEvent) -> dict[str, Any]:
        """Field values for `event` after this change (unset fields kept)."""
        values = event.model_dump()
        for name in self.model_fields_set:
            value = getattr(self, name)
            if name in ("title", "sub_calendar_id", "start", "end", "is_all_day") and value is None:
                continue
            values[name] = value
        return values


class CalendarEntry(BaseModel):
    """One item of a merged calendar window."""

    event: CalendarEvent
    start: datetime
    end: datetime
    is_virtual: bool = False
    virtual_id: Optional[str] = None

    @property
    def entry_id(self) -> str:
        return self.virtual_id or self.event.id
