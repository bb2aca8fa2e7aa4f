"""Appointment scheduling: recurrence expansion, conflict checking, series lifecycle."""

from .conflicts import BatchResult, ConflictReason, SlotDecision, check_batch, check_slot
from .recurrence import RecurrenceExpansion, validate_pattern
from .series import SeriesCancellation, cancel_from, next_batch, split_for_edit
from .service import SchedulingService, SeriesResult
from .slots import generate_available_slots

__all__ = [
    "BatchResult",
    "ConflictReason",
    "RecurrenceExpansion",
    "SchedulingService",
    "SeriesCancellation",
    "SeriesResult",
    "SlotDecision",
    "cancel_from",
    "check_batch",
    "check_slot",
    "generate_available_slots",
    "next_batch",
    "split_for_edit",
    "validate_pattern",
]
