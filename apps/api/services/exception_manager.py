"""
Exception Manager

Per-date overrides (skip, goal override, advisory times) plus the
routine-level pause window and active upper bound.

Exception writes are merges: a field missing from the patch keeps its
stored value, an explicit None clears it. A row that ends up carrying
nothing is deleted rather than kept as an empty marker.
"""
from datetime import date
from typing import Any, Dict, List, Optional
from uuid import UUID
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.cache import RoutineCache
from core.database import persistence_guard
from core.exceptions import InvalidDateRange
from core.logging import log_fields
from models import Routine, RoutineException
from services.routine_store import get_active_routine

logger = logging.getLogger(__name__)

PATCH_FIELDS = ("skip", "override_times_per_day", "override_times")


def get_exception(routine_id: UUID, on_date: date, db: Session) -> Optional[RoutineException]:
    with persistence_guard("get_exception"):
        return db.query(RoutineException).filter(
            RoutineException.routine_id == routine_id,
            RoutineException.date == on_date,
        ).first()


def list_exceptions(
    routine_id: UUID,
    db: Session,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[RoutineException]:
    """Stored exceptions of a routine, oldest date first, optionally bounded."""
    get_active_routine(routine_id, db)
    with persistence_guard("list_exceptions"):
        query = db.query(RoutineException).filter(RoutineException.routine_id == routine_id)
        if start is not None:
            query = query.filter(RoutineException.date >= start)
        if end is not None:
            query = query.filter(RoutineException.date <= end)
        return query.order_by(RoutineException.date).all()


def _apply_patch(entry: RoutineException, patch: Dict[str, Any]) -> None:
    for field in PATCH_FIELDS:
        if field not in patch:
            continue
        value = patch[field]
        if field == "skip":
            value = bool(value)
        elif field == "override_times" and value is not None:
            value = list(value)
        setattr(entry, field, value)


def _locked_exception(routine_id: UUID, on_date: date, db: Session) -> Optional[RoutineException]:
    return db.query(RoutineException).filter(
        RoutineException.routine_id == routine_id,
        RoutineException.date == on_date,
    ).with_for_update().first()


def merge_exception(routine: Routine, on_date: date, patch: Dict[str, Any], db: Session) -> Optional[RoutineException]:
    """
    Merge ``patch`` into the (routine, date) exception inside the current
    transaction. Does not commit.

    The row is locked while merging; a concurrent first insert for the same
    key loses on the unique constraint and is retried as an update.
    Returns the stored entry, or None when the merge left nothing to store.
    """
    for attempt in range(2):
        entry = _locked_exception(routine.id, on_date, db)

        if entry is not None:
            _apply_patch(entry, patch)
            if entry.is_noop():
                db.delete(entry)
                db.flush()
                return None
            db.flush()
            return entry

        entry = RoutineException(routine_id=routine.id, date=on_date, skip=False)
        _apply_patch(entry, patch)
        if entry.is_noop():
            return None

        try:
            with db.begin_nested():
                db.add(entry)
            return entry
        except IntegrityError:
            if attempt == 1:
                raise
            logger.info(
                "Exception insert raced with another writer, retrying as update",
                extra=log_fields(routine_id=str(routine.id), date=on_date),
            )
    return None


def set_exception(
    routine_id: UUID,
    on_date: date,
    patch: Dict[str, Any],
    db: Session,
    cache: Optional[RoutineCache] = None,
) -> Optional[RoutineException]:
    """Merge fields into one date's exception and commit."""
    routine = get_active_routine(routine_id, db)

    with persistence_guard("set_exception"):
        entry = merge_exception(routine, on_date, patch, db)
        db.commit()

    if cache is not None:
        cache.invalidate_day(routine.id, on_date)

    logger.info(
        f"Exception set for routine {routine.id} on {on_date.isoformat()}",
        extra=log_fields(
            routine_id=str(routine.id),
            date=on_date,
            fields=sorted(k for k in patch if k in PATCH_FIELDS),
            pruned=entry is None,
        ),
    )
    return entry


def pause_until(
    routine_id: UUID,
    paused_until: Optional[date],
    db: Session,
    cache: Optional[RoutineCache] = None,
) -> Routine:
    """
    Pause every date up to and including ``paused_until``.

    None (or any date in the past) un-pauses.
    """
    routine = get_active_routine(routine_id, db)
    routine.paused_until = paused_until

    with persistence_guard("pause_until"):
        db.commit()
        db.refresh(routine)

    if cache is not None:
        cache.invalidate_routine(routine.id)

    logger.info(
        f"Routine {routine.id} paused until {paused_until}",
        extra=log_fields(routine_id=str(routine.id), paused_until=paused_until),
    )
    return routine


def set_active_to(
    routine_id: UUID,
    active_to: Optional[date],
    db: Session,
    cache: Optional[RoutineCache] = None,
) -> Routine:
    """Set or clear the inclusive last active date."""
    routine = get_active_routine(routine_id, db)
    if active_to is not None and active_to < routine.active_from:
        raise InvalidDateRange(routine.active_from, active_to, "active_to must not be before active_from")

    routine.active_to = active_to
    with persistence_guard("set_active_to"):
        db.commit()
        db.refresh(routine)

    if cache is not None:
        cache.invalidate_routine(routine.id)

    logger.info(
        f"Routine {routine.id} active until {active_to}",
        extra=log_fields(routine_id=str(routine.id), active_to=active_to),
    )
    return routine
