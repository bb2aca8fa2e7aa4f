"""Provider availability models: weekly template and blocked slots."""

from datetime import datetime, time
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from models.slot import TimeRange
from utils.datetime_utils import ensure_aware, parse_time_of_day


class ProviderAvailability(BaseModel):
    """
    One weekday of a provider's weekly availability template.

    Times of day are wall-clock times in the practice timezone. The record
    enforces start < end and, when a break is set,
    start <= break_start < break_end <= end.
    """

    id: Optional[str] = None
    provider_id: str
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Sunday")
    start_time: time
    end_time: time
    break_start_time: Optional[time] = None
    break_end_time: Optional[time] = None
    is_available: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator(
        "start_time", "end_time", "break_start_time", "break_end_time", mode="before"
    )
    @classmethod
    def parse_time(cls, value):
        if value is None or value == "":
            return None
        return parse_time_of_day(value)

    @model_validator(mode="after")
    def check_window(self) -> "ProviderAvailability":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")

        if (self.break_start_time is None) != (self.break_end_time is None):
            raise ValueError("break_start_time and break_end_time must be set together")

        if self.break_start_time is not None:
            if not (
                self.start_time
                <= self.break_start_time
                < self.break_end_time
                <= self.end_time
            ):
                raise ValueError("break must lie inside the working window")
        return self

    @property
    def has_break(self) -> bool:
        return self.break_start_time is not None


class BlockedSlot(BaseModel):
    """Explicit exception (meeting, PTO) that overrides availability."""

    id: Optional[str] = None
    provider_id: Optional[str] = None  # None blocks every provider
    provider_name: Optional[str] = None
    title: str = "Blocked"
    start_time: datetime
    end_time: datetime
    reason: Optional[str] = None
    is_recurring: bool = False
    recurrence_pattern: Optional[str] = None  # JSON-serialized RecurrencePattern
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("start_time", "end_time", mode="after")
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @field_validator("is_recurring", mode="before")
    @classmethod
    def null_is_false(cls, value):
        return bool(value)

    @property
    def range(self) -> TimeRange:
        return TimeRange(self.start_time, self.end_time)

    def applies_to(self, provider_id: Optional[str]) -> bool:
        return self.provider_id is None or self.provider_id == provider_id
