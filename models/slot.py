"""Slot models: half-open time ranges and open booking slots."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel, Field


@dataclass(frozen=True)
class TimeRange:
    """Half-open instant range ``[start, end)``."""

    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: "TimeRange") -> bool:
        """Two ranges conflict iff each starts before the other ends."""
        return self.start < other.end and self.end > other.start

    def overlaps_between(self, start: datetime, end: datetime) -> bool:
        return self.start < end and self.end > start

    def shifted(self, delta: timedelta) -> "TimeRange":
        return TimeRange(self.start + delta, self.end + delta)

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


class AvailableSlot(BaseModel):
    """Open slot offered for booking."""

    start: datetime
    end: datetime
    duration: int = Field(..., gt=0, description="Duration in minutes")
    provider_id: str

    class Config:
        json_schema_extra = {
            "example": {
                "start": "2024-01-01T09:00:00Z",
                "end": "2024-01-01T10:00:00Z",
                "duration": 60,
                "provider_id": "uuid-here",
            }
        }

    @property
    def range(self) -> TimeRange:
        return TimeRange(self.start, self.end)


class RejectedInstance(BaseModel):
    """Candidate instance turned down during a batch, with its reason code."""

    start: datetime
    end: datetime
    reason: str
    detail: Optional[str] = None
