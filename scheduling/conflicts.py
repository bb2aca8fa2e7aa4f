"""
Slot / conflict checking.

Decides whether a candidate range can be booked for a provider, given the
provider's weekly availability, blocked slots and existing appointments.
Conflicts are ordinary results (SlotDecision), not exceptions.
"""

from dataclasses import dataclass, field
from datetime import datetime, time
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from models.appointment import Appointment
from models.availability import BlockedSlot, ProviderAvailability
from models.recurrence import RecurrencePattern
from models.slot import RejectedInstance, TimeRange
from scheduling.recurrence import RecurrenceExpansion
from utils.datetime_utils import day_of_week, to_local
from utils.exceptions import ValidationError


class ConflictReason(str, Enum):
    """Why a candidate range was rejected."""

    PROVIDER_UNAVAILABLE = "provider_unavailable"
    OUTSIDE_AVAILABILITY = "outside_availability"
    BREAK_CONFLICT = "break_conflict"
    BLOCKED_SLOT = "blocked_slot"
    APPOINTMENT_CONFLICT = "appointment_conflict"


@dataclass(frozen=True)
class SlotDecision:
    """ACCEPT (reason is None) or REJECT with a reason code."""

    candidate: TimeRange
    reason: Optional[ConflictReason] = None
    conflicting_id: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.reason is None

    def to_dict(self) -> dict:
        data = {
            **self.candidate.to_dict(),
            "accepted": self.accepted,
            "reason": self.reason.value if self.reason else None,
        }
        if self.conflicting_id:
            data["conflicting_id"] = self.conflicting_id
        return data


@dataclass
class BatchResult:
    """Per-instance outcome of checking a sequence of candidates."""

    accepted: List[TimeRange] = field(default_factory=list)
    rejected: List[RejectedInstance] = field(default_factory=list)


def availability_for_day(
    weekly: Iterable[ProviderAvailability], provider_id: str, weekday: int
) -> Optional[ProviderAvailability]:
    """Pick the provider's template record for a weekday (0 = Sunday)."""
    for record in weekly:
        if record.provider_id == provider_id and record.day_of_week == weekday:
            return record
    return None


def _times_overlap(start: time, end: time, other_start: time, other_end: time) -> bool:
    return start < other_end and end > other_start


def blocked_ranges(
    blocked: BlockedSlot, window: TimeRange, tz_name: str = "UTC"
) -> Iterable[TimeRange]:
    """
    Concrete ranges a blocked slot covers up to the end of ``window``.

    Recurring blocks are expanded from their first occurrence; a stored
    pattern that cannot be parsed or expanded falls back to the single range.
    """
    if not blocked.is_recurring or not blocked.recurrence_pattern:
        return [blocked.range]

    try:
        pattern = RecurrencePattern.from_json(blocked.recurrence_pattern)
        return RecurrenceExpansion(
            blocked.range, pattern, until=window.end, tz_name=tz_name
        )
    except (ValueError, ValidationError):
        return [blocked.range]


def check_slot(
    provider_id: str,
    candidate: TimeRange,
    weekly_availability: Iterable[ProviderAvailability],
    blocked_slots: Iterable[BlockedSlot] = (),
    appointments: Iterable[Appointment] = (),
    tz_name: str = "UTC",
    exclude_appointment_id: Optional[str] = None,
) -> SlotDecision:
    """
    Decide ACCEPT or REJECT for one candidate range.

    Checks run in order: weekday availability, working window, break,
    blocked slots, existing non-cancelled appointments. All intersection
    tests are half-open, so back-to-back ranges are accepted.
    """
    local_start = to_local(candidate.start, tz_name)
    local_end = to_local(candidate.end, tz_name)

    day = availability_for_day(weekly_availability, provider_id, day_of_week(local_start))
    if day is None or not day.is_available:
        return SlotDecision(candidate, ConflictReason.PROVIDER_UNAVAILABLE)

    # Time-of-day comparison; a range crossing midnight cannot fit one day
    if local_start.date() != local_end.date():
        return SlotDecision(candidate, ConflictReason.OUTSIDE_AVAILABILITY)

    start_tod = local_start.time().replace(tzinfo=None)
    end_tod = local_end.time().replace(tzinfo=None)
    if start_tod < day.start_time or end_tod > day.end_time:
        return SlotDecision(candidate, ConflictReason.OUTSIDE_AVAILABILITY)

    if day.has_break and _times_overlap(
        start_tod, end_tod, day.break_start_time, day.break_end_time
    ):
        return SlotDecision(candidate, ConflictReason.BREAK_CONFLICT)

    for blocked in blocked_slots:
        if not blocked.applies_to(provider_id):
            continue
        for blocked_range in blocked_ranges(blocked, candidate, tz_name):
            if candidate.overlaps(blocked_range):
                return SlotDecision(candidate, ConflictReason.BLOCKED_SLOT, blocked.id)

    for appointment in appointments:
        if appointment.is_cancelled or appointment.provider_id != provider_id:
            continue
        if exclude_appointment_id and appointment.id == exclude_appointment_id:
            continue
        if candidate.overlaps_between(appointment.start_time, appointment.end_time):
            return SlotDecision(
                candidate, ConflictReason.APPOINTMENT_CONFLICT, appointment.id
            )

    return SlotDecision(candidate)


def check_batch(
    provider_id: str,
    candidates: Iterable[TimeRange],
    weekly_availability: Sequence[ProviderAvailability],
    blocked_slots: Sequence[BlockedSlot] = (),
    appointments: Sequence[Appointment] = (),
    tz_name: str = "UTC",
) -> BatchResult:
    """
    Check candidates one by one as independent decisions.

    Each candidate is also checked against the candidates accepted before
    it, so accepted ranges never overlap each other.
    """
    result = BatchResult()
    booked = list(appointments)

    for candidate in candidates:
        decision = check_slot(
            provider_id,
            candidate,
            weekly_availability,
            blocked_slots,
            booked,
            tz_name=tz_name,
        )
        if decision.accepted:
            result.accepted.append(candidate)
            booked.append(
                Appointment(
                    provider_id=provider_id,
                    start_time=candidate.start,
                    end_time=candidate.end,
                )
            )
        else:
            result.rejected.append(
                RejectedInstance(
                    start=candidate.start,
                    end=candidate.end,
                    reason=decision.reason.value,
                    detail=decision.conflicting_id,
                )
            )

    return result
