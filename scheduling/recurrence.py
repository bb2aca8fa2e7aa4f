"""
Recurrence expansion.

Turns a base appointment range plus a RecurrencePattern into the ordered
candidate ranges of a series. Expansion is pure: no database access, and
the returned RecurrenceExpansion can be iterated any number of times.
"""

from datetime import datetime, timedelta
from itertools import islice
from typing import Iterator, List, Optional

from models.recurrence import RecurrencePattern, RecurrenceType
from models.slot import TimeRange
from utils.constants import DAYS_IN_WEEK, MAX_GENERATE_COUNT
from utils.datetime_utils import (
    add_months,
    day_of_week,
    ensure_aware,
    from_wall_clock,
    to_local,
    wall_clock,
)
from utils.exceptions import ValidationError


def validate_pattern(
    base: TimeRange,
    pattern: RecurrencePattern,
    generate_count: Optional[int] = None,
    until: Optional[datetime] = None,
    tz_name: str = "UTC",
) -> None:
    """
    Reject malformed expansion input.

    Raises:
        ValidationError: describing the first problem found
    """
    if base.end <= base.start:
        raise ValidationError("Appointment end must be after its start")

    if pattern.interval < 1:
        raise ValidationError("Recurrence interval must be a positive integer")

    if pattern.days_of_week:
        invalid = [d for d in pattern.days_of_week if not 0 <= d <= 6]
        if invalid:
            raise ValidationError(f"Invalid days_of_week: {invalid}")

    if pattern.day_of_month is not None and not 1 <= pattern.day_of_month <= 31:
        raise ValidationError("day_of_month must be between 1 and 31")

    if pattern.max_occurrences is not None and pattern.max_occurrences < 1:
        raise ValidationError("max_occurrences must be a positive integer")

    if generate_count is not None and not 1 <= generate_count <= MAX_GENERATE_COUNT:
        raise ValidationError(
            f"generate_count must be between 1 and {MAX_GENERATE_COUNT}"
        )

    first_day = to_local(base.start, tz_name).date()
    if pattern.end_date is not None and pattern.end_date < first_day:
        raise ValidationError("Recurrence end_date is before the first appointment")

    if (
        generate_count is None
        and until is None
        and pattern.end_date is None
        and pattern.max_occurrences is None
    ):
        raise ValidationError(
            "Recurrence needs an end_date, max_occurrences or a generate count"
        )


class RecurrenceExpansion:
    """
    Lazy, finite, restartable sequence of candidate ranges.

    Stops at the first of: ``generate_count`` ranges produced, the pattern's
    ``end_date`` passed (the end date itself is included),
    ``max_occurrences`` reached, or a start at/after ``until``.
    ``skip`` drops that many leading occurrences (already-created instances)
    before counting towards ``generate_count``; ``max_occurrences`` always
    counts from the first occurrence of the series.

    Calendar steps (days, weeks, weekdays, months) are taken on the local
    wall clock of ``tz_name``, so every occurrence keeps the base's local
    time of day across DST changes.
    """

    def __init__(
        self,
        base: TimeRange,
        pattern: RecurrencePattern,
        generate_count: Optional[int] = None,
        until: Optional[datetime] = None,
        skip: int = 0,
        tz_name: str = "UTC",
    ):
        base = TimeRange(ensure_aware(base.start), ensure_aware(base.end))
        validate_pattern(base, pattern, generate_count, until, tz_name)
        if skip < 0:
            raise ValidationError("skip must not be negative")

        self.base = base
        self.pattern = pattern
        self.generate_count = generate_count
        self.until = ensure_aware(until) if until is not None else None
        self.skip = skip
        self.tz_name = tz_name

    def __iter__(self) -> Iterator[TimeRange]:
        occurrences = self._bounded_starts()
        limit = None
        if self.generate_count is not None:
            limit = self.skip + self.generate_count

        duration = self.base.duration
        for start in islice(occurrences, self.skip, limit):
            yield TimeRange(start, start + duration)

    def to_list(self) -> List[TimeRange]:
        return list(self)

    def _bounded_starts(self) -> Iterator[datetime]:
        produced = 0
        for start in occurrence_starts(self.base.start, self.pattern, self.tz_name):
            if self.pattern.max_occurrences is not None and produced >= self.pattern.max_occurrences:
                return
            if (
                self.pattern.end_date is not None
                and to_local(start, self.tz_name).date() > self.pattern.end_date
            ):
                return
            if self.until is not None and start >= self.until:
                return
            produced += 1
            yield start


def occurrence_starts(
    first: datetime, pattern: RecurrencePattern, tz_name: str = "UTC"
) -> Iterator[datetime]:
    """Unbounded chronological start instants of a pattern; callers bound it."""
    for local in _local_starts(wall_clock(first, tz_name), pattern):
        yield from_wall_clock(local, tz_name)


def _local_starts(first: datetime, pattern: RecurrencePattern) -> Iterator[datetime]:
    if pattern.type == RecurrenceType.DAILY:
        step = timedelta(days=pattern.interval)
        current = first
        while True:
            yield current
            current += step

    elif pattern.type == RecurrenceType.WEEKLY:
        if pattern.days_of_week:
            yield from _weekly_on_days(first, pattern)
        else:
            step = timedelta(weeks=pattern.interval)
            current = first
            while True:
                yield current
                current += step

    elif pattern.type == RecurrenceType.MONTHLY:
        yield first
        k = 1
        while True:
            yield add_months(first, k * pattern.interval, pattern.day_of_month or 0)
            k += 1

    elif pattern.type == RecurrenceType.YEARLY:
        k = 0
        while True:
            yield add_months(first, 12 * k * pattern.interval)
            k += 1

    else:
        raise ValidationError(f"Unsupported recurrence type: {pattern.type}")


def _weekly_on_days(first: datetime, pattern: RecurrencePattern) -> Iterator[datetime]:
    """
    Matching weekdays from the first date on, week by week.

    Weeks run Sunday to Saturday; after the last listed day of a week the
    next candidate week is ``interval`` weeks later.
    """
    days = sorted(set(pattern.days_of_week))
    week_start = first - timedelta(days=day_of_week(first))
    while True:
        for day in days:
            candidate = week_start + timedelta(days=day)
            if candidate >= first:
                yield candidate
        week_start += timedelta(days=DAYS_IN_WEEK * pattern.interval)
