"""Data models for recurrence virtualization - recurringthings."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_serializer,
    field_validator,
    model_validator,
)


def _as_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to UTC; naive values are rejected."""
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError("datetime must be timezone-aware")
    return value.astimezone(UTC)


class EntryType(str, Enum):
    """Kind of a computed calendar entry."""

    RECURRENCE = "recurrence"
    STANDALONE = "standalone"
    VIRTUALIZED = "virtualized"


class MonthDayBehavior(str, Enum):
    """How monthly rules treat a day-of-month missing from some months."""

    THROW = "throw"
    SKIP = "skip"
    CLAMP = "clamp"


class CreateRecurrenceOptions(BaseModel):
    """Options for recurrence creation."""

    month_day_behavior: MonthDayBehavior = Field(
        default=MonthDayBehavior.THROW,
        description="Out-of-bounds day-of-month handling for monthly rules",
    )


# Persisted domain records


class Recurrence(BaseModel):
    """A repeating rule bounded in time and tagged with an IANA timezone."""

    id: UUID = Field(default_factory=uuid4, frozen=True)
    organization: str = Field(..., frozen=True, description="Tenant scope")
    resource_path: str = Field(..., frozen=True, description="Resource scope")
    type: str = Field(..., frozen=True, description="Caller-defined entry type")

    start_time: datetime = Field(..., frozen=True, description="UTC start of the first occurrence")
    duration: timedelta = Field(..., description="Duration of each occurrence")
    recurrence_end_time: datetime = Field(
        ..., frozen=True, description="UTC bound matching the rule's UNTIL"
    )
    rrule: str = Field(..., frozen=True, description="RFC 5545 rule body")
    time_zone: str = Field(..., frozen=True, description="IANA timezone identifier")
    month_day_behavior: Optional[MonthDayBehavior] = Field(
        default=None, frozen=True, description="Stored out-of-bounds policy (skip or clamp)"
    )

    extensions: Optional[dict[str, str]] = Field(default=None, description="Free-form metadata")

    model_config = ConfigDict(validate_assignment=True)

    @field_validator("start_time", "recurrence_end_time")
    @classmethod
    def normalize_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_validator(mode="after")
    def check_bounds(self) -> Recurrence:
        if self.start_time > self.recurrence_end_time:
            raise ValueError("start_time must not be after recurrence_end_time")
        return self

    @field_serializer("start_time", "recurrence_end_time")
    def serialize_datetime(self, dt: datetime) -> str:
        """Serialize datetime to ISO format."""
        return dt.isoformat()


class Occurrence(BaseModel):
    """A standalone, non-repeating entry."""

    id: UUID = Field(default_factory=uuid4, frozen=True)
    organization: str = Field(..., frozen=True)
    resource_path: str = Field(..., frozen=True)
    type: str
    start_time: datetime
    duration: timedelta
    time_zone: str = Field(..., frozen=True)
    extensions: Optional[dict[str, str]] = None

    model_config = ConfigDict(validate_assignment=True)

    @field_validator("start_time")
    @classmethod
    def normalize_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def end_time(self) -> datetime:
        """End of the occurrence, always derived from start_time + duration."""
        return self.start_time + self.duration


class OccurrenceException(BaseModel):
    """Permanent cancellation of one slot of a recurrence."""

    id: UUID = Field(default_factory=uuid4, frozen=True)
    organization: str = Field(..., frozen=True)
    resource_path: str = Field(..., frozen=True)
    recurrence_id: UUID = Field(..., frozen=True)
    original_time: datetime = Field(..., frozen=True, description="Generated UTC slot time")
    extensions: Optional[dict[str, str]] = None

    @field_validator("original_time")
    @classmethod
    def normalize_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class OccurrenceOverride(BaseModel):
    """Modification of one slot of a recurrence."""

    id: UUID = Field(default_factory=uuid4, frozen=True)
    organization: str = Field(..., frozen=True)
    resource_path: str = Field(..., frozen=True)
    recurrence_id: UUID = Field(..., frozen=True)
    original_time: datetime = Field(..., frozen=True, description="Generated UTC slot time")

    start_time: datetime
    duration: timedelta
    extensions: Optional[dict[str, str]] = None

    # Snapshot of the pattern when the override was first created
    original_duration: timedelta = Field(..., frozen=True)
    original_extensions: Optional[dict[str, str]] = Field(default=None, frozen=True)

    model_config = ConfigDict(validate_assignment=True)

    @field_validator("original_time", "start_time")
    @classmethod
    def normalize_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def end_time(self) -> datetime:
        return self.start_time + self.duration


# Computed result shapes


class OriginalDetails(BaseModel):
    """Pattern-derived values of a slot before an override was applied."""

    start_time: datetime = Field(..., description="UTC slot time")
    duration: timedelta
    extensions: Optional[dict[str, str]] = None


class RecurrenceDetails(BaseModel):
    """Pattern information attached to recurrence and virtualized entries."""

    rrule: str
    month_day_behavior: Optional[MonthDayBehavior] = None


class CalendarEntry(BaseModel):
    """Computed, never-persisted view of a pattern, standalone or virtualized entry.

    start_time and end_time are aware datetimes expressed in time_zone, so they
    show the wall-clock time while still comparing correctly against UTC.
    """

    organization: str
    resource_path: str
    type: str
    entry_type: EntryType

    start_time: datetime
    end_time: datetime
    duration: timedelta
    time_zone: str
    extensions: Optional[dict[str, str]] = None

    recurrence_id: Optional[UUID] = None
    occurrence_id: Optional[UUID] = None
    override_id: Optional[UUID] = None

    original_time: Optional[datetime] = Field(
        default=None, description="UTC slot key, set on every virtualized entry"
    )
    recurrence_details: Optional[RecurrenceDetails] = None
    original: Optional[OriginalDetails] = Field(
        default=None, description="Present only for virtualized entries with an override"
    )

    @property
    def is_overridden(self) -> bool:
        return self.override_id is not None

    @field_serializer("start_time", "end_time")
    def serialize_datetime(self, dt: datetime) -> str:
        return dt.isoformat()

    @field_serializer("original_time", when_used="unless-none")
    def serialize_optional_datetime(self, dt: datetime) -> str:
        return dt.isoformat()
