"""
Occurrence Generator

Answers "what is still due?" for a date range by layering a routine's
schedule, its per-date exceptions and the completion ledger.

Occurrences are derived, never stored. A date only yields an occurrence
while it has open slots; fully completed dates belong to the agenda view,
not to this list. Everything here is read-only and safe to repeat.
"""
from datetime import date
from typing import Any, Dict, List, Mapping, Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from core.cache import RoutineCache, occurrences_key
from core.config import settings
from core.database import persistence_guard
from core.exceptions import InvalidDateRange
from models import Routine, RoutineCompletion, RoutineException
from services.routine_store import PRIORITY_ORDER, get_routine, list_routines
from services.schedule_matcher import iter_dates, matches, range_length

logger = logging.getLogger(__name__)


def validate_range(start: date, end: date, max_days: Optional[int] = None) -> None:
    """Reject reversed ranges and ranges longer than ``max_days``."""
    if start > end:
        raise InvalidDateRange(start, end)
    max_days = max_days or settings.OCCURRENCE_MAX_RANGE_DAYS
    if range_length(start, end) > max_days:
        raise InvalidDateRange(start, end, f"range longer than {max_days} days")


def is_paused(routine: Routine, on_date: date) -> bool:
    """Pause window is inclusive: every date <= paused_until is paused."""
    return routine.paused_until is not None and on_date <= routine.paused_until


def is_within_active_window(routine: Routine, on_date: date) -> bool:
    if on_date < routine.active_from:
        return False
    if routine.active_to is not None and on_date > routine.active_to:
        return False
    return True


def effective_goal(routine: Routine, exception: Optional[RoutineException]) -> int:
    """The date's override when present, otherwise the routine's default goal."""
    if exception is not None and exception.override_times_per_day is not None:
        return exception.override_times_per_day
    return routine.times_per_day


def is_due(routine: Routine, on_date: date, exception: Optional[RoutineException]) -> bool:
    """
    Whether ``on_date`` is a scheduled, live date for the routine,
    ignoring completion progress.
    """
    if routine.deleted_at is not None:
        return False
    if not is_within_active_window(routine, on_date) or is_paused(routine, on_date):
        return False
    if exception is not None and exception.skip:
        return False
    return matches(routine.schedule, on_date)


def compute_occurrences(
    routine: Routine,
    start: date,
    end: date,
    exceptions: Mapping[date, RoutineException],
    completions: Mapping[date, RoutineCompletion],
) -> List[Dict[str, Any]]:
    """Open slots of one routine over [start, end], given preloaded rows."""
    results = []
    for d in iter_dates(start, end):
        exception = exceptions.get(d)
        if not is_due(routine, d, exception):
            continue
        goal = effective_goal(routine, exception)
        completion = completions.get(d)
        count = completion.count if completion is not None else 0
        remaining = max(0, goal - count)
        if remaining > 0:
            results.append({
                "routine_id": str(routine.id),
                "date": d.isoformat(),
                "remaining": remaining,
                "goal": goal,
            })
    return results


def load_range_rows(routine_id: UUID, start: date, end: date, db: Session):
    """Exceptions and completions of a routine within [start, end], keyed by date."""
    with persistence_guard("load_range_rows"):
        exceptions = db.query(RoutineException).filter(
            RoutineException.routine_id == routine_id,
            RoutineException.date >= start,
            RoutineException.date <= end,
        ).populate_existing().all()
        completions = db.query(RoutineCompletion).filter(
            RoutineCompletion.routine_id == routine_id,
            RoutineCompletion.date >= start,
            RoutineCompletion.date <= end,
        ).populate_existing().all()
    return (
        {e.date: e for e in exceptions},
        {c.date: c for c in completions},
    )


def _routine_occurrences(routine: Routine, start: date, end: date, db: Session, cache: Optional[RoutineCache]):
    if routine.deleted_at is not None:
        return []

    def load():
        exceptions, completions = load_range_rows(routine.id, start, end, db)
        return compute_occurrences(routine, start, end, exceptions, completions)

    if cache is None:
        return load()
    return cache.read_through(
        occurrences_key(routine.id, start, end),
        load,
        ttl=settings.CACHE_TTL_OCCURRENCES,
    )


def occurrences_for_routine(
    routine_id: UUID,
    start: date,
    end: date,
    db: Session,
    cache: Optional[RoutineCache] = None,
) -> List[Dict[str, Any]]:
    """
    Open slots of a single routine.

    Returns [{"routine_id", "date", "remaining", "goal"}] ordered by date,
    dates as ISO strings. A soft-deleted routine yields nothing.
    """
    validate_range(start, end)
    routine = get_routine(routine_id, db)
    return _routine_occurrences(routine, start, end, db, cache)


def occurrences(
    start: date,
    end: date,
    db: Session,
    cache: Optional[RoutineCache] = None,
) -> List[Dict[str, Any]]:
    """
    Open slots across every non-deleted routine.

    Ordered by date, then priority (high first), then routine name.
    """
    validate_range(start, end)
    routines = list_routines(db)
    by_id = {str(r.id): r for r in routines}

    results: List[Dict[str, Any]] = []
    for routine in routines:
        results.extend(_routine_occurrences(routine, start, end, db, cache))

    def sort_key(item):
        routine = by_id[item["routine_id"]]
        return (item["date"], PRIORITY_ORDER.get(routine.priority, 1), routine.name, item["routine_id"])

    results.sort(key=sort_key)
    logger.debug(f"Generated {len(results)} occurrences for {start} .. {end}")
    return results


def day_agenda(on_date: date, db: Session) -> List[Dict[str, Any]]:
    """
    Every routine due on ``on_date`` with its progress, including ones
    already completed (which occurrences() leaves out).
    """
    agenda = []
    for routine in list_routines(db):
        exceptions, completions = load_range_rows(routine.id, on_date, on_date, db)
        exception = exceptions.get(on_date)
        if not is_due(routine, on_date, exception):
            continue
        goal = effective_goal(routine, exception)
        completion = completions.get(on_date)
        count = completion.count if completion is not None else 0
        times = exception.override_times if exception is not None and exception.override_times is not None else routine.specific_times
        agenda.append({
            "routine_id": str(routine.id),
            "name": routine.name,
            "color": routine.color,
            "priority": routine.priority,
            "date": on_date.isoformat(),
            "count": count,
            "goal": goal,
            "remaining": max(0, goal - count),
            "completed": count >= goal,
            "times": list(times or []),
        })

    agenda.sort(key=lambda item: (item["completed"], PRIORITY_ORDER.get(item["priority"], 1), item["name"]))
    return agenda
