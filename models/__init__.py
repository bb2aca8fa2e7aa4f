"""Pydantic models for data validation and serialization."""

from .appointment import (
    Appointment,
    AppointmentCreate,
    AppointmentStatus,
    AppointmentType,
    AppointmentUpdate,
)
from .availability import BlockedSlot, ProviderAvailability
from .custom_fields import (
    PATIENT_CUSTOM_FIELDS,
    CustomFieldDefinition,
    CustomFieldSchema,
    CustomFieldType,
    CustomFieldValues,
)
from .events import ChangeEvent, ChangeType, EventFilter
from .patient import Patient, Profile
from .preferences import SessionPreferences
from .recurrence import (
    ExceptionType,
    RecurrencePattern,
    RecurrenceType,
    RecurringSeries,
    SeriesException,
    SeriesState,
)
from .reminder import AppointmentReminder, ReminderCreate, ReminderStatus, ReminderType
from .slot import AvailableSlot, RejectedInstance, TimeRange

__all__ = [
    "Appointment",
    "AppointmentCreate",
    "AppointmentStatus",
    "AppointmentType",
    "AppointmentUpdate",
    "AppointmentReminder",
    "AvailableSlot",
    "BlockedSlot",
    "ChangeEvent",
    "ChangeType",
    "CustomFieldDefinition",
    "CustomFieldSchema",
    "CustomFieldType",
    "CustomFieldValues",
    "EventFilter",
    "ExceptionType",
    "PATIENT_CUSTOM_FIELDS",
    "Patient",
    "Profile",
    "ProviderAvailability",
    "RecurrencePattern",
    "RecurrenceType",
    "RecurringSeries",
    "RejectedInstance",
    "ReminderCreate",
    "ReminderStatus",
    "ReminderType",
    "SeriesException",
    "SeriesState",
    "SessionPreferences",
    "TimeRange",
]
