"""
Routine Definition Store

CRUD for the recurrence rule itself. Deletion is soft (deleted_at) so
ledger history survives; purge_routine is the only hard delete and it
takes every child row with it.
"""
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from core.cache import RoutineCache
from core.database import persistence_guard
from core.exceptions import InvalidDateRange, RoutineNotFound
from core.logging import log_fields
from models import Routine, RoutineBulkOperation, RoutineCompletion, RoutineException
from services.schedule_matcher import normalize_schedule

logger = logging.getLogger(__name__)

# Fields a caller may set through create/update
EDITABLE_FIELDS = (
    "name",
    "description",
    "color",
    "priority",
    "times_per_day",
    "specific_times",
    "schedule",
    "active_from",
    "active_to",
    "paused_until",
)

# Fields that may not be cleared with an explicit null
REQUIRED_FIELDS = ("name", "color", "priority", "times_per_day", "specific_times", "schedule", "active_from")

PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}

STATUS_ACTIVE = "active"
STATUS_PAUSED = "paused"
STATUS_EXPIRED = "expired"
STATUS_SCHEDULED = "scheduled"
STATUS_DELETED = "deleted"


def get_routine(routine_id: UUID, db: Session, include_deleted: bool = True) -> Routine:
    """Fetch a routine or raise RoutineNotFound."""
    with persistence_guard("get_routine"):
        routine = db.query(Routine).filter(Routine.id == routine_id).first()
    if routine is None or (routine.deleted_at is not None and not include_deleted):
        raise RoutineNotFound(routine_id)
    return routine


def get_active_routine(routine_id: UUID, db: Session) -> Routine:
    """Fetch a routine that is not soft-deleted."""
    return get_routine(routine_id, db, include_deleted=False)


def list_routines(db: Session, include_deleted: bool = False) -> List[Routine]:
    """All routines, newest first."""
    with persistence_guard("list_routines"):
        query = db.query(Routine)
        if not include_deleted:
            query = query.filter(Routine.deleted_at.is_(None))
        return query.order_by(Routine.created_at.desc(), Routine.name).all()


def routine_status(routine: Routine, today: Optional[date] = None) -> str:
    """Lifecycle label of a routine relative to ``today``."""
    today = today or date.today()
    if routine.deleted_at is not None:
        return STATUS_DELETED
    if routine.active_to is not None and routine.active_to < today:
        return STATUS_EXPIRED
    if routine.paused_until is not None and today <= routine.paused_until:
        return STATUS_PAUSED
    if routine.active_from > today:
        return STATUS_SCHEDULED
    return STATUS_ACTIVE


def _check_active_window(active_from: date, active_to: Optional[date]) -> None:
    if active_to is not None and active_to < active_from:
        raise InvalidDateRange(active_from, active_to, "active_to must not be before active_from")


def create_routine(
    fields: Dict[str, Any],
    db: Session,
    today: Optional[date] = None,
) -> Routine:
    """
    Create a routine from validated fields.

    active_from defaults to today; schedule defaults to daily.
    """
    values = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS and v is not None}
    values.setdefault("active_from", today or date.today())
    values["schedule"] = normalize_schedule(values.get("schedule") or {"type": "daily"})
    values.setdefault("specific_times", [])
    _check_active_window(values["active_from"], values.get("active_to"))

    routine = Routine(**values)
    with persistence_guard("create_routine"):
        db.add(routine)
        db.commit()
        db.refresh(routine)

    logger.info(
        f"Routine created: {routine.id}",
        extra=log_fields(routine_id=str(routine.id), schedule_type=routine.schedule.get("type")),
    )
    return routine


def update_routine(
    routine_id: UUID,
    changes: Dict[str, Any],
    db: Session,
    cache: Optional[RoutineCache] = None,
) -> Routine:
    """
    Apply a partial update. Keys absent from ``changes`` are untouched.

    Editing the goal or schedule changes what every date looks like, so the
    whole routine is evicted from the cache.
    """
    routine = get_active_routine(routine_id, db)

    for key, value in changes.items():
        if key not in EDITABLE_FIELDS:
            continue
        if value is None and key in REQUIRED_FIELDS:
            continue
        if key == "schedule":
            value = normalize_schedule(value)
        setattr(routine, key, value)

    try:
        _check_active_window(routine.active_from, routine.active_to)
    except InvalidDateRange:
        db.rollback()
        raise
    routine.updated_at = datetime.now(timezone.utc)

    with persistence_guard("update_routine"):
        db.commit()
        db.refresh(routine)

    if cache is not None:
        cache.invalidate_routine(routine.id)

    logger.info(
        f"Routine updated: {routine.id}",
        extra=log_fields(routine_id=str(routine.id), fields=sorted(changes.keys())),
    )
    return routine


def soft_delete_routine(
    routine_id: UUID,
    db: Session,
    cache: Optional[RoutineCache] = None,
    now: Optional[datetime] = None,
) -> None:
    """Mark a routine deleted. Deleting an already deleted routine is a no-op."""
    routine = get_routine(routine_id, db)
    if routine.deleted_at is not None:
        return

    routine.deleted_at = now or datetime.now(timezone.utc)
    with persistence_guard("soft_delete_routine"):
        db.commit()

    if cache is not None:
        cache.invalidate_routine(routine.id)

    logger.info(f"Routine soft-deleted: {routine.id}", extra=log_fields(routine_id=str(routine.id)))


def purge_routine(routine_id: UUID, db: Session, cache: Optional[RoutineCache] = None) -> Dict[str, int]:
    """
    Hard delete a routine and every row that references it.

    Returns per-table counts of removed child rows.
    """
    routine = get_routine(routine_id, db)

    with persistence_guard("purge_routine"):
        removed = {
            "exceptions": db.query(RoutineException).filter(
                RoutineException.routine_id == routine.id
            ).delete(synchronize_session=False),
            "completions": db.query(RoutineCompletion).filter(
                RoutineCompletion.routine_id == routine.id
            ).delete(synchronize_session=False),
            "bulk_operations": db.query(RoutineBulkOperation).filter(
                RoutineBulkOperation.routine_id == routine.id
            ).delete(synchronize_session=False),
        }
        db.expunge(routine)
        db.query(Routine).filter(Routine.id == routine_id).delete(synchronize_session=False)
        db.commit()

    if cache is not None:
        cache.invalidate_routine(routine_id)

    logger.info(
        f"Routine purged: {routine_id}",
        extra=log_fields(routine_id=str(routine_id), **removed),
    )
    return removed
