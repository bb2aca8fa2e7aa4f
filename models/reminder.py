"""Appointment reminder models."""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ReminderType(str, Enum):
    """Delivery channel."""

    EMAIL = "email"
    SMS = "sms"
    IN_APP = "in_app"


class ReminderStatus(str, Enum):
    """Reminder delivery status."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class AppointmentReminder(BaseModel):
    """Reminder row."""

    id: Optional[str] = None
    appointment_id: str
    reminder_type: ReminderType = ReminderType.EMAIL
    minutes_before: int = Field(..., ge=0)
    status: ReminderStatus = ReminderStatus.PENDING
    message: Optional[str] = None
    sent_at: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    def due_at(self, appointment_start: datetime) -> datetime:
        return appointment_start - timedelta(minutes=self.minutes_before)


class ReminderCreate(BaseModel):
    """Reminder creation model."""

    appointment_id: str
    reminder_type: ReminderType = ReminderType.EMAIL
    minutes_before: int = Field(default=24 * 60, ge=0, le=60 * 24 * 30)
    message: Optional[str] = None
    created_by: Optional[str] = None
