"""Data models for recurring Hebrew-date events and their occurrences."""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, validator
import pytz


class RecurrenceRule(str, Enum):
    """Recurrence kinds. Only yearly anniversaries are materialized."""

    YEARLY = "yearly"


class HebrewDate(BaseModel):
    """A (day, month, year) triple in the Hebrew calendar.

    Months are numbered from Nisan (1) to Adar (12), with Adar II as 13.
    """

    day: int = Field(..., ge=1, le=30)
    month: int = Field(..., ge=1, le=13)
    year: int = Field(..., ge=1, le=9999)


class SyncWindow(BaseModel):
    """Closed interval of Hebrew years that should have an occurrence."""

    start: int
    end: int

    @validator('end')
    def end_not_before_start(cls, v, values):
        if 'start' in values and v < values['start']:
            raise ValueError(f"Window end ({v}) precedes start ({values['start']})")
        return v

    def years(self) -> List[int]:
        return list(range(self.start, self.end + 1))

    def __contains__(self, year: int) -> bool:
        return self.start <= year <= self.end

    def __len__(self) -> int:
        return self.end - self.start + 1


class RecurringEvent(BaseModel):
    """User-defined anniversary anchored to a Hebrew date."""

    id: UUID
    user_id: str
    title: str
    description: Optional[str] = None
    hebrew_year: int
    hebrew_month: int
    hebrew_day: int
    recurrence_rule: RecurrenceRule = RecurrenceRule.YEARLY
    last_synced_hebrew_year: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def anchor(self) -> HebrewDate:
        return HebrewDate(day=self.hebrew_day, month=self.hebrew_month, year=self.hebrew_year)

    @classmethod
    def from_db(cls, row) -> 'RecurringEvent':
        return cls(
            id=row.id,
            user_id=row.user_id,
            title=row.title,
            description=row.description,
            hebrew_year=row.hebrew_year,
            hebrew_month=row.hebrew_month,
            hebrew_day=row.hebrew_day,
            recurrence_rule=RecurrenceRule(row.recurrence_rule),
            last_synced_hebrew_year=row.last_synced_hebrew_year,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


class EventOccurrence(BaseModel):
    """One materialized, dated instance of a recurring event."""

    id: UUID
    event_id: UUID
    hebrew_year: int
    gregorian_date: date
    google_event_id: str

    @classmethod
    def from_db(cls, row) -> 'EventOccurrence':
        return cls(
            id=row.id,
            event_id=row.event_id,
            hebrew_year=row.hebrew_year,
            gregorian_date=row.gregorian_date,
            google_event_id=row.google_event_id,
        )


class OccurrenceRecord(BaseModel):
    """A successfully created remote entry, not yet persisted."""

    hebrew_year: int
    gregorian_date: date
    google_event_id: str


class MaterializationResult(BaseModel):
    """Accumulator returned by a materialization batch."""

    created: List[OccurrenceRecord] = Field(default_factory=list)
    failed_years: List[int] = Field(default_factory=list)
    errors: Dict[int, str] = Field(default_factory=dict)

    @property
    def created_years(self) -> List[int]:
        return [record.hebrew_year for record in self.created]

    @property
    def attempted(self) -> int:
        return len(self.created) + len(self.failed_years)


class CalendarResolution(BaseModel):
    """Outcome of resolving a user's calendar binding."""

    calendar_id: str
    exists: bool = True
    created: bool = False


class YearProgressionStatus(BaseModel):
    """Progression state of one event."""

    event_id: UUID
    title: str
    hebrew_year: int
    last_synced_year: Optional[int] = None
    current_year: int
    window: SyncWindow
    years_needing_sync: List[int] = Field(default_factory=list)
    needs_update: bool = False


class SyncNewYearsResult(BaseModel):
    """Result of filling the missing years of one event."""

    event_id: UUID
    years_synced: List[int] = Field(default_factory=list)
    failed_years: List[int] = Field(default_factory=list)
    last_synced_year: Optional[int] = None
    calendar_id: Optional[str] = None
    window: Optional[SyncWindow] = None


class YearProgressionResult(BaseModel):
    """Aggregate of a user-wide progression run."""

    total_events: int = 0
    events_needing_update: int = 0
    events_updated: int = 0
    events_failed: int = 0
    errors: List[str] = Field(default_factory=list)
    updated_events: List[YearProgressionStatus] = Field(default_factory=list)


class YearProgressionSummary(BaseModel):
    """Dashboard summary of a user's progression state."""

    total_events: int = 0
    events_needing_update: int = 0
    events_up_to_date: int = 0
    last_checked: datetime = Field(default_factory=lambda: datetime.now(pytz.UTC))


class UpdateResult(BaseModel):
    """Outcome of propagating an edit to every occurrence."""

    event_id: UUID
    updated: int = 0
    failed: List[str] = Field(default_factory=list)
    calendar_id: Optional[str] = None


class DeleteResult(BaseModel):
    """Outcome of deleting an event and its occurrences."""

    event_id: UUID
    remote_deleted: int = 0
    remote_failed: int = 0
    local_occurrences_deleted: int = 0
    warning: Optional[str] = None


class CreateEventRequest(BaseModel):
    """Validated payload for creating an event."""

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    hebrew_year: int = Field(..., ge=1, le=9999)
    hebrew_month: int = Field(..., ge=1, le=13)
    hebrew_day: int = Field(..., ge=1, le=30)
    recurrence_rule: RecurrenceRule = RecurrenceRule.YEARLY
    sync_with_calendar: bool = Field(True, description="Materialize occurrences right away")

    @validator('title')
    def title_not_blank(cls, v):
        if not v.strip():
            raise ValueError("Title is required")
        return v.strip()


class UpdateEventRequest(BaseModel):
    """Validated payload for editing an event's display fields."""

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)

    @validator('title')
    def title_not_blank(cls, v):
        if not v.strip():
            raise ValueError("Title is required")
        return v.strip()


def event_payload_summary(payload: Dict[str, Any]) -> str:
    """Short description of an event payload for log lines."""
    start = payload.get('start', {}).get('date')
    return f"'{payload.get('summary', '')}' on {start}"


class CalendarInfo(BaseModel):
    """Calendar information model."""

    id: str = Field(..., description="Calendar ID")
    name: str = Field(..., description="Calendar name")
    description: Optional[str] = Field(None)
    timezone: str = Field("UTC")
    access_role: Optional[str] = Field(None)
    is_primary: bool = Field(False)
