"""
Custom exception classes for scheduling and data access.
Provides specific error types instead of generic exceptions.
"""

from typing import Optional


class DatabaseError(Exception):
    """Base exception for database operations."""

    pass


class NotFoundError(DatabaseError):
    """Raised when a referenced record does not exist."""

    entity = "record"

    def __init__(self, record_id: str, message: Optional[str] = None):
        self.record_id = record_id
        super().__init__(message or f"{self.entity} {record_id} not found")


class PatientNotFoundError(NotFoundError):
    """Raised when a patient is not found."""

    entity = "Patient"


class ProviderNotFoundError(NotFoundError):
    """Raised when a provider profile is not found."""

    entity = "Provider"


class SeriesNotFoundError(NotFoundError):
    """Raised when a recurring series is not found."""

    entity = "Recurring series"


class AppointmentNotFoundError(NotFoundError):
    """Raised when an appointment is not found."""

    entity = "Appointment"


class ValidationError(Exception):
    """Raised when input validation fails."""

    pass


class ConflictError(Exception):
    """Raised when a single time range is rejected by the conflict checker."""

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or f"Time range rejected: {reason}")


class NotificationError(Exception):
    """Raised when a notification edge function call fails."""

    pass
