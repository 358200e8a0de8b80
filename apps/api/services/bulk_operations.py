"""
Bulk Operation Engine

Range mutations fanned out into the completion ledger (delete) or the
exception store (skip), each leaving one append-only audit record.

Each date is applied inside its own savepoint: a date that fails is
reported and the rest still go through. The batch as a whole is not
atomic, and nothing here reads the audit trail back to undo anything.
"""
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.cache import RoutineCache
from core.config import settings
from core.database import persistence_guard
from core.exceptions import EmptyRange, InvalidDateRange
from core.logging import log_fields
from models import RoutineBulkOperation, RoutineCompletion
from services.exception_manager import merge_exception
from services.routine_store import get_active_routine, get_routine
from services.schedule_matcher import iter_dates, range_length

logger = logging.getLogger(__name__)

OPERATION_DELETE_OCCURRENCES = "delete_occurrences"
OPERATION_SKIP_PERIOD = "skip_period"


def _unique_in_order(dates: Sequence[date]) -> List[date]:
    seen = set()
    ordered = []
    for d in dates:
        if d not in seen:
            seen.add(d)
            ordered.append(d)
    return ordered


def _record_operation(
    routine_id: UUID,
    operation_type: str,
    start_date: Optional[date],
    end_date: Optional[date],
    affected: Sequence[date],
    failed: Sequence[date],
    db: Session,
) -> RoutineBulkOperation:
    record = RoutineBulkOperation(
        routine_id=routine_id,
        operation_type=operation_type,
        start_date=start_date,
        end_date=end_date,
        affected_dates=[d.isoformat() for d in affected],
        failed_dates=[d.isoformat() for d in failed],
        created_at=datetime.now(timezone.utc),
    )
    db.add(record)
    return record


def bulk_delete_occurrences(
    routine_id: UUID,
    dates: Sequence[date],
    db: Session,
    cache: Optional[RoutineCache] = None,
) -> Dict[str, Any]:
    """
    Remove the ledger row of every given date.

    Exceptions are left alone, so a deleted date shows up as due again
    unless it is also skipped. Deleting a date with no row is a successful
    no-op, which makes a repeated call safe.

    Returns {"operation_id", "succeeded": [date], "failed": [date]}.
    """
    if not dates:
        raise EmptyRange()

    routine = get_active_routine(routine_id, db)
    ordered = _unique_in_order(dates)

    succeeded: List[date] = []
    failed: List[date] = []
    for d in ordered:
        try:
            with db.begin_nested():
                db.query(RoutineCompletion).filter(
                    RoutineCompletion.routine_id == routine.id,
                    RoutineCompletion.date == d,
                ).delete(synchronize_session=False)
            succeeded.append(d)
        except SQLAlchemyError as e:
            logger.error(
                f"Bulk delete failed for routine {routine.id} on {d.isoformat()}: {e}",
                extra=log_fields(routine_id=str(routine.id), date=d),
            )
            failed.append(d)

    with persistence_guard("bulk_delete_occurrences"):
        record = _record_operation(
            routine.id,
            OPERATION_DELETE_OCCURRENCES,
            min(ordered),
            max(ordered),
            ordered,
            failed,
            db,
        )
        db.commit()

    if cache is not None:
        cache.invalidate_days(routine.id, succeeded)

    logger.info(
        f"Bulk delete for routine {routine.id}: {len(succeeded)} succeeded, {len(failed)} failed",
        extra=log_fields(
            routine_id=str(routine.id),
            operation_id=str(record.id),
            succeeded=succeeded,
            failed=failed,
        ),
    )
    return {"operation_id": record.id, "succeeded": succeeded, "failed": failed}


def bulk_skip_period(
    routine_id: UUID,
    start_date: date,
    end_date: date,
    db: Session,
    cache: Optional[RoutineCache] = None,
) -> RoutineBulkOperation:
    """
    Mark every calendar date in [start_date, end_date] as skipped.

    Dates are enumerated regardless of the schedule; skipping an
    unscheduled date just leaves a harmless marker. Existing completion
    counts are kept: the skip stops future generation and completion, it
    does not rewrite history.
    """
    if start_date > end_date:
        raise InvalidDateRange(start_date, end_date)
    if range_length(start_date, end_date) > settings.BULK_MAX_RANGE_DAYS:
        raise InvalidDateRange(
            start_date, end_date, f"range longer than {settings.BULK_MAX_RANGE_DAYS} days"
        )

    routine = get_active_routine(routine_id, db)
    affected = list(iter_dates(start_date, end_date))

    failed: List[date] = []
    for d in affected:
        try:
            with db.begin_nested():
                merge_exception(routine, d, {"skip": True}, db)
        except SQLAlchemyError as e:
            logger.error(
                f"Bulk skip failed for routine {routine.id} on {d.isoformat()}: {e}",
                extra=log_fields(routine_id=str(routine.id), date=d),
            )
            failed.append(d)

    with persistence_guard("bulk_skip_period"):
        record = _record_operation(
            routine.id,
            OPERATION_SKIP_PERIOD,
            start_date,
            end_date,
            affected,
            failed,
            db,
        )
        db.commit()
        db.refresh(record)

    if cache is not None:
        cache.invalidate_days(routine.id, [d for d in affected if d not in failed])

    logger.info(
        f"Bulk skip for routine {routine.id}: {start_date.isoformat()} .. {end_date.isoformat()}",
        extra=log_fields(
            routine_id=str(routine.id),
            operation_id=str(record.id),
            days=len(affected),
            failed=failed,
        ),
    )
    return record


def list_bulk_operations(routine_id: UUID, db: Session) -> List[RoutineBulkOperation]:
    """Audit trail of a routine, newest first."""
    get_routine(routine_id, db)
    with persistence_guard("list_bulk_operations"):
        return db.query(RoutineBulkOperation).filter(
            RoutineBulkOperation.routine_id == routine_id
        ).order_by(RoutineBulkOperation.created_at.desc()).all()
