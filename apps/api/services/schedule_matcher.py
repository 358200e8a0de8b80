"""
Schedule Matcher

Pure calendar predicates: does a date satisfy a routine's recurrence rule?

Days of week follow the 0=Sunday ... 6=Saturday convention used across
the API (same as the availability grid), not Python's Monday-first
date.weekday().
"""
from datetime import date, timedelta
from typing import Any, Dict, Iterator, Mapping

SCHEDULE_DAILY = "daily"
SCHEDULE_WEEKLY = "weekly"
SCHEDULE_CUSTOM_DAYS = "custom_days"

DAYS_OF_WEEK_TYPES = (SCHEDULE_WEEKLY, SCHEDULE_CUSTOM_DAYS)

DAY_NAMES = ['Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday']


def day_of_week(d: date) -> int:
    """Sunday-first day index (0=Sunday, 6=Saturday)."""
    return (d.weekday() + 1) % 7


def matches(schedule: Mapping[str, Any], d: date) -> bool:
    """
    True if ``d`` is a scheduled date for ``schedule``.

    An empty days_of_week set matches nothing. It does not fall back to
    "every day".
    """
    schedule_type = schedule.get("type", SCHEDULE_DAILY)
    if schedule_type == SCHEDULE_DAILY:
        return True
    if schedule_type in DAYS_OF_WEEK_TYPES:
        return day_of_week(d) in set(schedule.get("days_of_week") or ())
    return False


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Every calendar date in the inclusive range [start, end]."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def range_length(start: date, end: date) -> int:
    """Number of dates in the inclusive range, 0 if start > end."""
    return max(0, (end - start).days + 1)


def normalize_schedule(schedule: Mapping[str, Any]) -> Dict[str, Any]:
    """Storage form of a schedule: daily has no day list, day lists are sorted and unique."""
    schedule_type = schedule.get("type", SCHEDULE_DAILY)
    if schedule_type == SCHEDULE_DAILY:
        return {"type": SCHEDULE_DAILY}
    return {
        "type": schedule_type,
        "days_of_week": sorted(set(schedule.get("days_of_week") or ())),
    }
