"""Calendar and duration arithmetic — weekday counts, lateness, worked hours.

Pure functions, no I/O. Dates are calendar dates and times are wall-clock
times of the organization's timezone; nothing here converts between zones.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from hrops.common.constants import DEFAULT_WORKING_DAYS, WEEKDAY_NAMES
from hrops.common.exceptions import InvalidRangeError, ValidationException

# date.weekday() numbers: Monday=0 … Friday=4
MON_FRI: frozenset[int] = frozenset(range(5))

_DAY_INDEX = {name: i for i, name in enumerate(WEEKDAY_NAMES)}


@dataclass(frozen=True)
class Lateness:
    is_late: bool
    late_minutes: int


def parse_working_days(names: Optional[Iterable[str]]) -> frozenset[int]:
    """Map weekday names to ``date.weekday()`` numbers.

    Only Monday–Friday are accepted; ``None`` or an empty list falls back
    to the full Mon–Fri week.
    """
    if not names:
        names = DEFAULT_WORKING_DAYS

    days: set[int] = set()
    invalid: list[str] = []
    for name in names:
        idx = _DAY_INDEX.get(str(name).strip().lower())
        if idx is None or idx not in MON_FRI:
            invalid.append(str(name))
        else:
            days.add(idx)

    if invalid:
        raise ValidationException(
            {"working_days": [f"Not a Monday–Friday weekday: {', '.join(invalid)}."]}
        )
    return frozenset(days)


def weekday_count(
    start: date,
    end: date,
    working_days: Iterable[int] = MON_FRI,
) -> int:
    """Count dates in ``[start, end]`` (inclusive) that fall on a working day.

    ``working_days`` is intersected with Mon–Fri, so a Saturday or Sunday is
    never counted.

    Raises:
        InvalidRangeError: ``end`` is before ``start``.
    """
    if end < start:
        raise InvalidRangeError(start, end)

    allowed = MON_FRI.intersection(working_days)
    if not allowed:
        return 0

    total_days = (end - start).days + 1
    full_weeks, remainder = divmod(total_days, 7)
    count = full_weeks * len(allowed)

    first_weekday = start.weekday()
    for offset in range(remainder):
        if (first_weekday + offset) % 7 in allowed:
            count += 1
    return count


def working_dates(
    start: date,
    end: date,
    working_days: Iterable[int] = MON_FRI,
) -> list[date]:
    """List the dates ``weekday_count`` would count, in order."""
    if end < start:
        raise InvalidRangeError(start, end)
    allowed = MON_FRI.intersection(working_days)
    out: list[date] = []
    current = start
    while current <= end:
        if current.weekday() in allowed:
            out.append(current)
        current += timedelta(days=1)
    return out


def _seconds_of_day(value: time) -> int:
    return value.hour * 3600 + value.minute * 60 + value.second


def compute_lateness(clock_in_time: time, threshold: time) -> Lateness:
    """Compare a clock-in time against the daily late threshold.

    ``late_minutes`` is the whole-minute difference (seconds truncated),
    0 when on time.
    """
    diff_seconds = _seconds_of_day(clock_in_time) - _seconds_of_day(threshold)
    is_late = clock_in_time > threshold
    late_minutes = max(0, diff_seconds // 60) if is_late else 0
    return Lateness(is_late=is_late, late_minutes=late_minutes)


def minutes_between(start: time, end: time) -> int:
    """Whole minutes from ``start`` to ``end`` on the same day."""
    return max(0, (_seconds_of_day(end) - _seconds_of_day(start)) // 60)


def hours_between(start: time, end: time) -> Decimal:
    """Worked hours between two same-day times, rounded to 2 decimal places."""
    seconds = max(0, _seconds_of_day(end) - _seconds_of_day(start))
    return (Decimal(seconds) / Decimal(3600)).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP,
    )


def parse_time(value: str) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS`` configuration values."""
    try:
        return time.fromisoformat(value)
    except ValueError as exc:
        raise ValidationException({"time": [f"Invalid time value '{value}'."]}) from exc


END_OF_DAY = time(23, 59, 59)


def end_of_day(day: date) -> datetime:
    return datetime.combine(day, END_OF_DAY)
