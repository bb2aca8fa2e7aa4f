"""
Recurring series lifecycle.

    active --cancel_from(date)--> cancelled_from(date)

Cancelling from a date cancels every instance starting at or after it and
stops further generation past it. Editing "this and future" cancels from
the date and starts a new series there with the modified template.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from models.appointment import Appointment, AppointmentStatus, AppointmentUpdate
from models.recurrence import RecurrencePattern, RecurringSeries
from models.slot import TimeRange
from scheduling.recurrence import RecurrenceExpansion, occurrence_starts
from utils.datetime_utils import ensure_aware, to_local
from utils.exceptions import ValidationError

# Instances in these states already happened and are left alone
_HISTORICAL_STATUSES = (AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW)


@dataclass
class SeriesCancellation:
    series: RecurringSeries
    cancelled: List[Appointment]
    untouched: List[Appointment]


def cancel_from(
    series: RecurringSeries,
    instances: Sequence[Appointment],
    from_date: datetime,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SeriesCancellation:
    """
    Apply ``cancelled_from(from_date)`` to a series and its instances.

    Returns copies; the inputs are not mutated. Instances before
    ``from_date``, instances already started at ``now`` (when given) and
    historical (completed/no-show) instances keep their status. The series
    is deactivated when ``from_date`` is on or before its first start.
    """
    from_date = ensure_aware(from_date)
    earliest = max(from_date, ensure_aware(now)) if now is not None else from_date
    if series.cancelled_from is not None and series.cancelled_from <= from_date:
        cutoff = series.cancelled_from
    else:
        cutoff = from_date

    cancelled: List[Appointment] = []
    untouched: List[Appointment] = []
    for instance in instances:
        if (
            instance.start_time >= earliest
            and not instance.is_cancelled
            and instance.status not in _HISTORICAL_STATUSES
        ):
            cancelled.append(
                instance.model_copy(
                    update={
                        "status": AppointmentStatus.CANCELLED,
                        "cancellation_reason": reason,
                    }
                )
            )
        else:
            untouched.append(instance)

    is_active = series.is_active and from_date > series.base_appointment.start_time
    updated = series.model_copy(update={"cancelled_from": cutoff, "is_active": is_active})
    return SeriesCancellation(series=updated, cancelled=cancelled, untouched=untouched)


def next_batch(
    series: RecurringSeries, count: int, tz_name: str = "UTC"
) -> List[TimeRange]:
    """
    The next ``count`` instances after those already created.

    Nothing is produced past ``cancelled_from`` or for an inactive series.
    """
    if not series.is_active:
        return []

    base = series.base_appointment
    expansion = RecurrenceExpansion(
        TimeRange(base.start_time, base.end_time),
        series.pattern,
        generate_count=count,
        until=series.cancelled_from,
        skip=series.created_instances,
        tz_name=tz_name,
    )
    return expansion.to_list()


def first_occurrence_from(
    series: RecurringSeries, from_date: datetime, tz_name: str = "UTC"
) -> Optional[datetime]:
    """First start of the series pattern at or after ``from_date`` within its bounds."""
    from_date = ensure_aware(from_date)
    base = series.base_appointment
    pattern = series.pattern

    starts = occurrence_starts(base.start_time, pattern, tz_name)
    for index, start in enumerate(starts):
        if pattern.max_occurrences is not None and index >= pattern.max_occurrences:
            return None
        if pattern.end_date is not None:
            if to_local(start, tz_name).date() > pattern.end_date:
                return None
        if start >= from_date:
            return start
    return None


def occurrences_before(
    series: RecurringSeries, from_date: datetime, tz_name: str = "UTC"
) -> int:
    """How many occurrences of the pattern start before ``from_date``."""
    from_date = ensure_aware(from_date)
    count = 0
    for start in occurrence_starts(
        series.base_appointment.start_time, series.pattern, tz_name
    ):
        if start >= from_date:
            break
        count += 1
    return count


def split_for_edit(
    series: RecurringSeries,
    from_date: datetime,
    updates: AppointmentUpdate,
    pattern: Optional[RecurrencePattern] = None,
    tz_name: str = "UTC",
) -> Tuple[RecurringSeries, RecurringSeries]:
    """
    Plan an edit of "this and future" instances.

    Returns the original series cancelled from ``from_date`` (instances
    are not touched here, see cancel_from) and the new series template.
    The new series starts at the first occurrence at/after ``from_date``
    unless ``updates`` sets explicit times; a ``max_occurrences`` bound
    keeps counting the occurrences already used by the original series.

    Raises:
        ValidationError: when the series has no occurrence at/after the date
    """
    from_date = ensure_aware(from_date)
    start = first_occurrence_from(series, from_date, tz_name)
    if start is None:
        raise ValidationError("Series has no occurrences on or after the given date")

    base = series.base_appointment
    shifted = base.model_copy(
        update={
            "start_time": start,
            "end_time": start + (base.end_time - base.start_time),
        }
    )
    template = updates.apply_to(shifted)

    new_pattern = pattern or series.pattern
    if pattern is None and series.pattern.max_occurrences is not None:
        used = occurrences_before(series, from_date, tz_name)
        new_pattern = series.pattern.model_copy(
            update={"max_occurrences": series.pattern.max_occurrences - used}
        )

    cancelled = series.model_copy(
        update={
            "cancelled_from": from_date,
            "is_active": series.is_active and from_date > base.start_time,
        }
    )
    new_series = RecurringSeries(
        base_appointment=template,
        pattern=new_pattern,
        created_by=series.created_by,
    )
    return cancelled, new_series
