"""
Open slot generation for UI display.

Walks a provider's working window for one day in steps of
duration + buffer, jumping over the break and dropping slots that hit a
blocked slot or an existing appointment.
"""

from datetime import date, datetime, timedelta
from typing import List, Sequence

from models.appointment import Appointment
from models.availability import BlockedSlot, ProviderAvailability
from models.slot import AvailableSlot, TimeRange
from scheduling.conflicts import availability_for_day, blocked_ranges
from utils.constants import MAX_SLOT_DURATION_MINUTES
from utils.datetime_utils import day_of_week, get_timezone
from utils.exceptions import ValidationError


def _localize(day: date, tod, tz_name: str) -> datetime:
    return get_timezone(tz_name).localize(datetime.combine(day, tod))


def generate_available_slots(
    provider_id: str,
    day: date,
    weekly_availability: Sequence[ProviderAvailability],
    blocked_slots: Sequence[BlockedSlot] = (),
    appointments: Sequence[Appointment] = (),
    duration_minutes: int = 60,
    buffer_minutes: int = 15,
    tz_name: str = "UTC",
) -> List[AvailableSlot]:
    """
    Open slots of ``duration_minutes`` for a provider on ``day``.

    Args:
        provider_id: provider whose template is used
        day: calendar day in the practice timezone
        weekly_availability: provider availability records
        blocked_slots: blocked slots overlapping the day
        appointments: the provider's appointments overlapping the day
        duration_minutes: slot length
        buffer_minutes: gap kept after each slot
        tz_name: practice timezone

    Returns:
        list of AvailableSlot in chronological order (empty when the
        provider does not work that day)
    """
    if not 0 < duration_minutes <= MAX_SLOT_DURATION_MINUTES:
        raise ValidationError(
            f"duration_minutes must be between 1 and {MAX_SLOT_DURATION_MINUTES}"
        )
    if buffer_minutes < 0:
        raise ValidationError("buffer_minutes must not be negative")

    record = availability_for_day(weekly_availability, provider_id, day_of_week(day))
    if record is None or not record.is_available:
        return []

    window_start = _localize(day, record.start_time, tz_name)
    window_end = _localize(day, record.end_time, tz_name)
    window = TimeRange(window_start, window_end)

    break_range = None
    if record.has_break:
        break_range = TimeRange(
            _localize(day, record.break_start_time, tz_name),
            _localize(day, record.break_end_time, tz_name),
        )

    busy: List[TimeRange] = []
    for blocked in blocked_slots:
        if blocked.applies_to(provider_id):
            busy.extend(
                r for r in blocked_ranges(blocked, window, tz_name) if r.overlaps(window)
            )
    for appointment in appointments:
        if not appointment.is_cancelled and appointment.provider_id == provider_id:
            busy.append(TimeRange(appointment.start_time, appointment.end_time))

    duration = timedelta(minutes=duration_minutes)
    step = duration + timedelta(minutes=buffer_minutes)

    slots: List[AvailableSlot] = []
    current = window_start
    while current < window_end:
        slot = TimeRange(current, current + duration)

        if current + step > window_end:
            break

        if break_range is not None and slot.overlaps(break_range):
            current = break_range.end
            continue

        if not any(slot.overlaps(other) for other in busy):
            slots.append(
                AvailableSlot(
                    start=slot.start,
                    end=slot.end,
                    duration=duration_minutes,
                    provider_id=provider_id,
                )
            )

        current += step

    return slots
