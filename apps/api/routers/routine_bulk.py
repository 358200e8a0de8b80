"""
Routine Bulk Operations API Router

Range skip and multi-date delete, plus the audit trail they leave.
Bulk operations are irreversible; the audit records are for tracing only.
"""
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.cache import RoutineCache, get_routine_cache
from core.database import get_db
from schemas import BulkDeleteRequest, BulkDeleteResponse, BulkOperationResponse, BulkSkipRequest
from services import bulk_operations

router = APIRouter(prefix="/v1/routines", tags=["routine-bulk"])


# NOTE: fixed sub-paths only; the routines router owns /{routine_id}
@router.post("/{routine_id}/bulk/delete-occurrences", response_model=BulkDeleteResponse)
def bulk_delete_occurrences(
    routine_id: UUID,
    payload: BulkDeleteRequest,
    db: Session = Depends(get_db),
    cache: RoutineCache = Depends(get_routine_cache),
):
    """
    Delete the completion records of the given dates.

    Best effort per date: the response lists which dates succeeded and
    which failed. Dates with no record count as succeeded.
    """
    return bulk_operations.bulk_delete_occurrences(routine_id, payload.dates, db, cache)


@router.post("/{routine_id}/bulk/skip-period", response_model=BulkOperationResponse, status_code=201)
def bulk_skip_period(
    routine_id: UUID,
    payload: BulkSkipRequest,
    db: Session = Depends(get_db),
    cache: RoutineCache = Depends(get_routine_cache),
):
    """Skip every calendar date from start_date to end_date inclusive."""
    return bulk_operations.bulk_skip_period(routine_id, payload.start_date, payload.end_date, db, cache)


@router.get("/{routine_id}/bulk-operations", response_model=List[BulkOperationResponse])
def list_bulk_operations(routine_id: UUID, db: Session = Depends(get_db)):
    return bulk_operations.list_bulk_operations(routine_id, db)
