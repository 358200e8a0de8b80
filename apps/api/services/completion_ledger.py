"""
Completion Ledger

Per-(routine, date) progress with a hard cap at the effective daily goal.

The increment is a single conditional UPDATE:

    UPDATE routine_completion
       SET count = count + 1, goal = :goal, completed_at = :now
     WHERE routine_id = :id AND date = :date AND count < :goal

and the affected-row count decides whether it applied. Reading the count,
comparing in Python and writing it back would let two concurrent callers
both see count < goal and push the record past its goal.
"""
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID
import logging

from sqlalchemy import and_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.cache import RoutineCache, progress_key
from core.config import settings
from core.database import persistence_guard
from core.exceptions import AlreadyPaused, ConcurrentModification, GoalExceeded, RoutineNotFound, Skipped
from core.logging import log_fields
from models import Routine, RoutineCompletion, RoutineException
from services.exception_manager import get_exception
from services.occurrence_generator import effective_goal, is_paused
from services.routine_store import get_active_routine

logger = logging.getLogger(__name__)


def get_completion(routine_id: UUID, on_date: date, db: Session) -> Optional[RoutineCompletion]:
    """Fresh read of the ledger row, bypassing stale identity-map state."""
    with persistence_guard("get_completion"):
        return db.query(RoutineCompletion).filter(
            RoutineCompletion.routine_id == routine_id,
            RoutineCompletion.date == on_date,
        ).populate_existing().first()


def list_completions(
    routine_id: UUID,
    db: Session,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[RoutineCompletion]:
    """
    Ledger history of a routine, oldest first.

    Soft-deleted routines keep their history readable.
    """
    with persistence_guard("list_completions"):
        if db.query(Routine.id).filter(Routine.id == routine_id).first() is None:
            raise RoutineNotFound(routine_id)
        query = db.query(RoutineCompletion).filter(RoutineCompletion.routine_id == routine_id)
        if start is not None:
            query = query.filter(RoutineCompletion.date >= start)
        if end is not None:
            query = query.filter(RoutineCompletion.date <= end)
        return query.order_by(RoutineCompletion.date).all()


def _conditional_increment(
    routine_id: UUID,
    on_date: date,
    goal: int,
    now: datetime,
    specific_time: Optional[str],
    db: Session,
) -> bool:
    """Apply +1 only while count < goal. True if a row was updated."""
    values = {
        "count": RoutineCompletion.count + 1,
        "goal": goal,
        "completed_at": now,
    }
    if specific_time is not None:
        values["specific_time"] = specific_time

    result = db.execute(
        update(RoutineCompletion)
        .where(
            RoutineCompletion.routine_id == routine_id,
            RoutineCompletion.date == on_date,
            RoutineCompletion.count < goal,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _insert_first_completion(
    routine_id: UUID,
    on_date: date,
    goal: int,
    now: datetime,
    specific_time: Optional[str],
    db: Session,
) -> bool:
    """
    Create the ledger row with count=1.

    False when another writer created it first (unique constraint), in
    which case the caller falls back to the conditional increment.
    """
    try:
        with db.begin_nested():
            db.add(RoutineCompletion(
                routine_id=routine_id,
                date=on_date,
                count=1,
                goal=goal,
                specific_time=specific_time,
                completed_at=now,
            ))
        return True
    except IntegrityError:
        logger.info(
            "First completion raced with another writer",
            extra=log_fields(routine_id=str(routine_id), date=on_date),
        )
        return False


def complete_one(
    routine_id: UUID,
    on_date: date,
    db: Session,
    cache: Optional[RoutineCache] = None,
    specific_time: Optional[str] = None,
    now: Optional[datetime] = None,
) -> RoutineCompletion:
    """
    Record one completion of a routine on a date.

    Raises:
        RoutineNotFound: routine missing or soft-deleted
        AlreadyPaused: date is inside the pause window
        Skipped: the date's exception skips it
        GoalExceeded: the record already reached the effective goal
        ConcurrentModification: the increment lost a race while the goal
            still looked open; re-read progress before retrying
    """
    routine = get_active_routine(routine_id, db)

    if is_paused(routine, on_date):
        logger.info(
            f"Completion rejected, routine {routine.id} paused",
            extra=log_fields(routine_id=str(routine.id), date=on_date, reason="paused"),
        )
        raise AlreadyPaused(routine.id, on_date, routine.paused_until)

    exception = get_exception(routine.id, on_date, db)
    if exception is not None and exception.skip:
        logger.info(
            f"Completion rejected, routine {routine.id} skipped",
            extra=log_fields(routine_id=str(routine.id), date=on_date, reason="skipped"),
        )
        raise Skipped(routine.id, on_date)

    goal = effective_goal(routine, exception)
    now = now or datetime.now(timezone.utc)

    with persistence_guard("complete_one"):
        applied = _conditional_increment(routine.id, on_date, goal, now, specific_time, db)
        if not applied and get_completion(routine.id, on_date, db) is None:
            applied = _insert_first_completion(routine.id, on_date, goal, now, specific_time, db)
            if not applied:
                applied = _conditional_increment(routine.id, on_date, goal, now, specific_time, db)

        if not applied:
            current = get_completion(routine.id, on_date, db)
            current_count = current.count if current is not None else 0
            db.rollback()
            if current_count < goal:
                logger.warning(
                    f"Completion for routine {routine.id} lost a race",
                    extra=log_fields(routine_id=str(routine.id), date=on_date),
                )
                raise ConcurrentModification(routine.id, on_date)
            logger.info(
                f"Completion rejected, routine {routine.id} at goal",
                extra=log_fields(routine_id=str(routine.id), date=on_date, goal=goal, reason="goal_exceeded"),
            )
            raise GoalExceeded(routine.id, on_date, goal)

        db.commit()

    record = get_completion(routine.id, on_date, db)

    if cache is not None:
        cache.invalidate_day(routine.id, on_date)

    logger.info(
        f"Routine {routine.id} completed {record.count}/{record.goal} on {on_date.isoformat()}",
        extra=log_fields(routine_id=str(routine.id), date=on_date, count=record.count, goal=record.goal),
    )
    return record


def _load_snapshot(routine_id: UUID, on_date: date, db: Session):
    """
    Routine, exception and ledger row for one date in a single statement,
    so count and goal come from the same read.
    """
    with persistence_guard("progress"):
        return (
            db.query(Routine, RoutineException, RoutineCompletion)
            .outerjoin(
                RoutineException,
                and_(RoutineException.routine_id == Routine.id, RoutineException.date == on_date),
            )
            .outerjoin(
                RoutineCompletion,
                and_(RoutineCompletion.routine_id == Routine.id, RoutineCompletion.date == on_date),
            )
            .filter(Routine.id == routine_id)
            .populate_existing()
            .first()
        )


def compute_progress(routine: Routine, on_date: date, exception, completion) -> Dict[str, Any]:
    return {
        "routine_id": str(routine.id),
        "date": on_date.isoformat(),
        "count": completion.count if completion is not None else 0,
        "goal": effective_goal(routine, exception),
        "skipped": bool(exception is not None and exception.skip),
        "paused": is_paused(routine, on_date),
    }


def progress(
    routine_id: UUID,
    on_date: date,
    db: Session,
    cache: Optional[RoutineCache] = None,
) -> Dict[str, Any]:
    """
    Read-only progress projection {count, goal, skipped, paused}.

    Never raises for an existing routine (soft-deleted ones included);
    a date with no ledger row reports count 0.
    """

    def load():
        row = _load_snapshot(routine_id, on_date, db)
        if row is None:
            raise RoutineNotFound(routine_id)
        routine, exception, completion = row
        return compute_progress(routine, on_date, exception, completion)

    if cache is None:
        return load()
    return cache.read_through(progress_key(routine_id, on_date), load, ttl=settings.CACHE_TTL_PROGRESS)
