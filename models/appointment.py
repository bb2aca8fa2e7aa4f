"""Appointment models for patient bookings."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from utils.constants import MAX_NOTES_LENGTH, MAX_TITLE_LENGTH
from utils.datetime_utils import ensure_aware


class AppointmentStatus(str, Enum):
    """Appointment status."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class AppointmentType(str, Enum):
    """Kind of visit."""

    CONSULTATION = "consultation"
    TREATMENT = "treatment"
    FOLLOW_UP = "follow_up"
    PROCEDURE = "procedure"


class Appointment(BaseModel):
    """Appointment row as stored in the appointments table."""

    id: Optional[str] = None
    title: str = ""
    patient_id: Optional[str] = None
    patient_name: Optional[str] = None
    provider_id: Optional[str] = None
    provider_name: Optional[str] = None
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    appointment_type: AppointmentType = AppointmentType.CONSULTATION
    location: Optional[str] = None
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    is_recurring: bool = False
    recurring_appointment_id: Optional[str] = None
    recurrence_pattern: Optional[str] = None  # JSON-serialized RecurrencePattern
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("start_time", "end_time", mode="after")
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @property
    def is_cancelled(self) -> bool:
        return self.status == AppointmentStatus.CANCELLED


class AppointmentCreate(BaseModel):
    """Appointment creation model, also used as a series template."""

    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH)
    patient_id: str = Field(..., description="Patient ID (Supabase UUID)")
    provider_id: Optional[str] = None
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    appointment_type: AppointmentType = AppointmentType.CONSULTATION
    location: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=MAX_NOTES_LENGTH)

    class Config:
        json_schema_extra = {
            "example": {
                "title": "Initial consultation",
                "patient_id": "uuid-here",
                "provider_id": "uuid-here",
                "start_time": "2024-01-01T09:00:00Z",
                "end_time": "2024-01-01T09:30:00Z",
                "appointment_type": "consultation",
            }
        }

    @field_validator("start_time", "end_time", mode="after")
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @model_validator(mode="after")
    def check_end_after_start(self) -> "AppointmentCreate":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class AppointmentUpdate(BaseModel):
    """Partial update of an appointment or of a series template."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=MAX_TITLE_LENGTH)
    patient_id: Optional[str] = None
    provider_id: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    status: Optional[AppointmentStatus] = None
    appointment_type: Optional[AppointmentType] = None
    location: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=MAX_NOTES_LENGTH)

    @field_validator("start_time", "end_time", mode="after")
    @classmethod
    def ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(value) if value is not None else None

    def apply_to(self, template: AppointmentCreate) -> AppointmentCreate:
        """Return a copy of ``template`` with the set fields replaced."""
        changes = self.model_dump(exclude_unset=True, exclude_none=True)
        return AppointmentCreate(**{**template.model_dump(), **changes})
