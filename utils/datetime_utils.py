"""
Datetime utilities for consistent timezone handling across the application.
All datetime operations should use timezone-aware datetimes.
"""

import calendar
from datetime import date, datetime, time, timezone
from typing import Union

import pytz


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    Returns:
        Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def ensure_aware(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes, leave aware ones untouched."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_iso_datetime(iso_string: str) -> datetime:
    """
    Parse ISO format datetime string to timezone-aware datetime.
    Handles both 'Z' suffix and '+00:00' timezone formats.

    Args:
        iso_string: ISO format datetime string

    Returns:
        Timezone-aware datetime object

    Raises:
        ValueError: If datetime string cannot be parsed
    """
    normalized = iso_string.replace("Z", "+00:00")

    try:
        return ensure_aware(datetime.fromisoformat(normalized))
    except ValueError as e:
        raise ValueError(f"Invalid datetime string: {iso_string}") from e


def to_iso_string(dt: datetime) -> str:
    """
    Convert datetime to ISO format string.
    Ensures timezone-aware datetimes are properly formatted.

    Args:
        dt: Datetime object (timezone-aware or naive)

    Returns:
        ISO format string
    """
    return ensure_aware(dt).isoformat()


def parse_time_of_day(value: Union[str, time]) -> time:
    """
    Parse a time-of-day as stored by Postgres ("09:00" or "09:00:00").

    Raises:
        ValueError: If the string is not a valid time
    """
    if isinstance(value, time):
        return value
    try:
        return time.fromisoformat(value)
    except ValueError as e:
        raise ValueError(f"Invalid time string: {value}") from e


def get_timezone(name: str) -> pytz.BaseTzInfo:
    """Resolve a timezone name, falling back to UTC for unknown names."""
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        return pytz.UTC


def to_local(dt: datetime, tz_name: str = "UTC") -> datetime:
    """Convert an instant into the practice timezone."""
    return ensure_aware(dt).astimezone(get_timezone(tz_name))


def wall_clock(dt: datetime, tz_name: str = "UTC") -> datetime:
    """Naive local date and time of an instant in the practice timezone."""
    return to_local(dt, tz_name).replace(tzinfo=None)


def from_wall_clock(naive: datetime, tz_name: str = "UTC") -> datetime:
    """
    Turn a naive local date and time back into a UTC instant.

    Times skipped by a DST change are moved forward by the gap; ambiguous
    times resolve to standard time.
    """
    tz = get_timezone(tz_name)
    return tz.normalize(tz.localize(naive)).astimezone(timezone.utc)


def day_of_week(value: Union[date, datetime]) -> int:
    """
    Weekday index with Sunday = 0, as stored in provider_availability.

    Python's weekday() is Monday = 0, so it is shifted by one.
    """
    return (value.weekday() + 1) % 7


def add_months(dt: datetime, months: int, day: int = 0) -> datetime:
    """
    Move a datetime by a number of months, keeping the time of day.

    The target day defaults to the day of ``dt``; days past the end of the
    target month are clamped to its last day (Jan 31 + 1 month -> Feb 28/29).
    """
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return dt.replace(year=year, month=month, day=min(day or dt.day, last_day))
