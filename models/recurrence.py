"""Recurrence models: patterns, series and per-instance exceptions."""

import json
from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from models.appointment import AppointmentCreate
from utils.datetime_utils import ensure_aware


class RecurrenceType(str, Enum):
    """How often a series repeats."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class RecurrencePattern(BaseModel):
    """
    Repeat rule of a series.

    Field values are checked by the expander rather than here, so a
    malformed pattern surfaces as a ValidationError before any instance
    is produced.
    """

    type: RecurrenceType
    interval: int = 1
    days_of_week: Optional[List[int]] = None  # 0 = Sunday ... 6 = Saturday
    day_of_month: Optional[int] = None
    end_date: Optional[date] = None
    max_occurrences: Optional[int] = None

    class Config:
        json_schema_extra = {
            "example": {
                "type": "weekly",
                "interval": 1,
                "days_of_week": [1, 3],
                "max_occurrences": 8,
            }
        }

    def to_json(self) -> str:
        """Serialize for the appointments.recurrence_pattern column."""
        return self.model_dump_json(exclude_none=True)

    @classmethod
    def from_json(cls, raw: str) -> "RecurrencePattern":
        return cls.model_validate(json.loads(raw))


class SeriesState(str, Enum):
    """Lifecycle state of a recurring series."""

    ACTIVE = "active"
    CANCELLED_FROM = "cancelled_from"


class RecurringSeries(BaseModel):
    """Template plus pattern of a recurring appointment series."""

    id: Optional[str] = None
    base_appointment: AppointmentCreate
    pattern: RecurrencePattern
    created_instances: int = Field(default=0, ge=0)
    is_active: bool = True
    cancelled_from: Optional[datetime] = None
    last_generated: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("cancelled_from", mode="after")
    @classmethod
    def ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(value) if value is not None else None

    @property
    def state(self) -> SeriesState:
        if self.cancelled_from is not None or not self.is_active:
            return SeriesState.CANCELLED_FROM
        return SeriesState.ACTIVE


class ExceptionType(str, Enum):
    """Kind of change applied to a single instance of a series."""

    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    MODIFIED = "modified"


class SeriesException(BaseModel):
    """Exception recorded against one instance of a series."""

    id: Optional[str] = None
    series_id: str
    original_date: datetime
    exception_type: ExceptionType
    new_start_time: Optional[datetime] = None
    new_end_time: Optional[datetime] = None
    reason: Optional[str] = None
    created_at: Optional[datetime] = None
