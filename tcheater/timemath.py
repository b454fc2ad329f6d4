"""Time arithmetic for checkpoints.

Pure functions only: rounding instants to the tracking granularity, week and
day boundaries, unit counting and duration formatting.

All arithmetic is wall-clock arithmetic in the instant's own tzinfo, so a
15 minute grid lines up with what the user sees on the clock, and day and
week boundaries fall on local midnight.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta

MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY, SATURDAY, SUNDAY = range(7)

DEFAULT_GRANULARITY = timedelta(minutes=15)

_DAY = timedelta(days=1)
_WEEK = timedelta(days=7)
_MICROSECOND = timedelta(microseconds=1)

_WEEKDAY_NAMES = {
    "monday": MONDAY,
    "tuesday": TUESDAY,
    "wednesday": WEDNESDAY,
    "thursday": THURSDAY,
    "friday": FRIDAY,
    "saturday": SATURDAY,
    "sunday": SUNDAY,
}


def check_granularity(granularity: timedelta) -> None:
    """Raise ValueError unless granularity is positive and divides a day."""
    if granularity <= timedelta(0):
        raise ValueError(f"Granularity must be positive, got {granularity}")
    if _DAY % granularity:
        raise ValueError(f"Granularity {granularity} does not divide a day evenly")


def _midnight(instant: datetime) -> datetime:
    return instant.replace(hour=0, minute=0, second=0, microsecond=0)


def round_instant(instant: datetime, granularity: timedelta = DEFAULT_GRANULARITY) -> datetime:
    """Round an instant to the nearest multiple of granularity.

    Multiples are counted from the instant's local midnight. Exact halves
    round up (10:07:30 -> 10:15 on a 15 minute grid). The result keeps the
    instant's tzinfo and is a fixed point: rounding it again returns it
    unchanged.

    Args:
        instant: Naive or aware datetime
        granularity: Grid size; must divide a day evenly

    Returns:
        The rounded datetime
    """
    check_granularity(granularity)
    midnight = _midnight(instant)
    offset_us = (instant - midnight) // _MICROSECOND
    grain_us = granularity // _MICROSECOND
    units = (2 * offset_us + grain_us) // (2 * grain_us)
    return midnight + units * granularity


def day_bounds(instant: datetime) -> tuple[datetime, datetime]:
    """Half-open [midnight, next midnight) interval containing instant."""
    start = _midnight(instant)
    return start, start + _DAY


def week_bounds(instant: datetime, first_weekday: int = MONDAY) -> tuple[datetime, datetime]:
    """Half-open week interval containing instant.

    Args:
        instant: Any datetime inside the week
        first_weekday: 0 (Monday) to 6 (Sunday)

    Returns:
        (start_of_week, end_of_week), both at local midnight
    """
    if not 0 <= first_weekday <= 6:
        raise ValueError(f"first_weekday must be 0-6, got {first_weekday}")
    days_back = (instant.weekday() - first_weekday) % 7
    start = _midnight(instant) - timedelta(days=days_back)
    return start, start + _WEEK


def week_starts_in_month(
    year: int,
    month: int,
    first_weekday: int = MONDAY,
    until: date | None = None,
) -> list[date]:
    """First days of every week that touches the given month.

    The first entry may fall in the previous month when the month does not
    start on first_weekday. Weeks starting after ``until`` are left out, so
    navigation never offers weeks in the future.
    """
    if not 1 <= month <= 12:
        return []

    first_day = date(year, month, 1)
    last_day = date(year, month, calendar.monthrange(year, month)[1])
    current = first_day - timedelta(days=(first_day.weekday() - first_weekday) % 7)

    starts = []
    while current <= last_day:
        if until is not None and current > until:
            break
        starts.append(current)
        current += timedelta(days=7)
    return starts


def count_units(start: datetime, end: datetime, granularity: timedelta = DEFAULT_GRANULARITY) -> int:
    """Number of whole granularity units between two instants.

    Negative when end precedes start. Assumes both are already rounded.
    """
    delta_us = (end - start) // _MICROSECOND
    grain_us = granularity // _MICROSECOND
    units = abs(delta_us) // grain_us
    return units if delta_us >= 0 else -units


def duration_minutes(start: datetime, end: datetime) -> int:
    """Whole minutes from start to end, never negative."""
    return max(0, int((end - start).total_seconds() // 60))


def human_duration(minutes: int) -> str:
    """Format minutes as "45m", "1h" or "2h30m"."""
    if minutes <= 0:
        return "0m"

    hours, rest = divmod(minutes, 60)
    if hours == 0:
        return f"{rest}m"
    if rest == 0:
        return f"{hours}h"
    return f"{hours}h{rest}m"


def rescale(value: float, old_min: float, old_max: float, new_min: float, new_max: float) -> float:
    """Map value linearly from [old_min, old_max] onto [new_min, new_max].

    A zero-width source range maps everything to new_min.
    """
    if old_max == old_min:
        return new_min
    return (value - old_min) / (old_max - old_min) * (new_max - new_min) + new_min


def parse_weekday(value: str | int) -> int:
    """Parse "monday", "Mon" or 0-6 into a weekday number."""
    if isinstance(value, int):
        if 0 <= value <= 6:
            return value
        raise ValueError(f"Weekday must be 0-6, got {value}")

    key = value.strip().lower()
    for name, number in _WEEKDAY_NAMES.items():
        if key and name.startswith(key) and len(key) >= 2:
            return number
    raise ValueError(f"Unknown weekday: {value!r}")
