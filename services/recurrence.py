# services/recurrence.py
"""
Does a schedule run on a given calendar day?

Week convention: Monday = 0 ... Sunday = 6, both here and in the stored
running_days JSON. That matches date.weekday(). Anything arriving with a
Sunday-first pattern goes through from_sunday_first() at the boundary.
"""
from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime, timedelta
from typing import Iterator

__all__ = ["day_of_week", "from_sunday_first", "to_sunday_first", "is_active_on", "active_dates"]


def _get(schedule, name: str):
    if isinstance(schedule, Mapping):
        return schedule.get(name)
    return getattr(schedule, name, None)


def _as_day(value) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    return value


def day_of_week(day) -> int:
    """0 for Monday through 6 for Sunday."""
    return _as_day(day).weekday()


def from_sunday_first(days) -> list[bool]:
    """[Sun, Mon, ..., Sat] -> [Mon, ..., Sun]"""
    days = list(days)
    return days[1:] + days[:1]


def to_sunday_first(days) -> list[bool]:
    """[Mon, ..., Sun] -> [Sun, Mon, ..., Sat]"""
    days = list(days)
    return days[-1:] + days[:-1]


def is_active_on(schedule, day) -> bool:
    target = _as_day(day)

    start = _as_day(_get(schedule, "effective_start_date"))
    if start is not None and target < start:
        return False

    end = _as_day(_get(schedule, "effective_end_date"))
    if end is not None and target > end:
        return False

    running = _get(schedule, "running_days") or ()
    dow = day_of_week(target)
    if dow >= len(running) or not running[dow]:
        return False

    # cancellation wins over everything else
    if _get(schedule, "is_cancelled"):
        return False

    return True


def active_dates(schedule, start, end) -> Iterator[date]:
    """Yield every date in [start, end] on which the schedule runs."""
    day = _as_day(start)
    last = _as_day(end)
    while day <= last:
        if is_active_on(schedule, day):
            yield day
        day += timedelta(days=1)
