"""
Routines API Router

Routine definitions (create, edit, soft delete, purge), the pause window,
the active upper bound and per-date exceptions.
"""
from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from core.cache import RoutineCache, get_routine_cache
from core.database import get_db
from models import Routine
from schemas import (
    ActiveToRequest,
    ExceptionPatch,
    ExceptionResponse,
    PauseRequest,
    RoutineCreate,
    RoutineResponse,
    RoutineUpdate,
)
from services import exception_manager, routine_store

router = APIRouter(prefix="/v1/routines", tags=["routines"])


def _to_response(routine: Routine) -> RoutineResponse:
    response = RoutineResponse.model_validate(routine)
    response.status = routine_store.routine_status(routine)
    return response


@router.post("", response_model=RoutineResponse, status_code=201)
def create_routine(payload: RoutineCreate, db: Session = Depends(get_db)):
    """Create a routine. active_from defaults to today, schedule to daily."""
    routine = routine_store.create_routine(payload.model_dump(), db)
    return _to_response(routine)


@router.get("", response_model=List[RoutineResponse])
def list_routines(
    include_deleted: bool = Query(False, description="Include soft-deleted routines"),
    db: Session = Depends(get_db),
):
    return [_to_response(r) for r in routine_store.list_routines(db, include_deleted=include_deleted)]


@router.get("/{routine_id}", response_model=RoutineResponse)
def get_routine(routine_id: UUID, db: Session = Depends(get_db)):
    return _to_response(routine_store.get_routine(routine_id, db))


@router.patch("/{routine_id}", response_model=RoutineResponse)
def update_routine(
    routine_id: UUID,
    payload: RoutineUpdate,
    db: Session = Depends(get_db),
    cache: RoutineCache = Depends(get_routine_cache),
):
    """
    Update a routine.

    Only fields present in the body are applied.
    """
    routine = routine_store.update_routine(routine_id, payload.model_dump(exclude_unset=True), db, cache)
    return _to_response(routine)


@router.delete("/{routine_id}", status_code=204)
def soft_delete_routine(
    routine_id: UUID,
    db: Session = Depends(get_db),
    cache: RoutineCache = Depends(get_routine_cache),
):
    """Soft delete: the routine stops generating occurrences, its history is kept."""
    routine_store.soft_delete_routine(routine_id, db, cache)
    return Response(status_code=204)


@router.delete("/{routine_id}/purge")
def purge_routine(
    routine_id: UUID,
    db: Session = Depends(get_db),
    cache: RoutineCache = Depends(get_routine_cache),
):
    """Hard delete the routine with its exceptions, completions and audit records."""
    removed = routine_store.purge_routine(routine_id, db, cache)
    return {"routine_id": routine_id, "removed": removed}


@router.put("/{routine_id}/pause", response_model=RoutineResponse)
def pause_routine(
    routine_id: UUID,
    payload: PauseRequest,
    db: Session = Depends(get_db),
    cache: RoutineCache = Depends(get_routine_cache),
):
    """Pause through paused_until (inclusive). null un-pauses."""
    routine = exception_manager.pause_until(routine_id, payload.paused_until, db, cache)
    return _to_response(routine)


@router.put("/{routine_id}/active-to", response_model=RoutineResponse)
def set_active_to(
    routine_id: UUID,
    payload: ActiveToRequest,
    db: Session = Depends(get_db),
    cache: RoutineCache = Depends(get_routine_cache),
):
    routine = exception_manager.set_active_to(routine_id, payload.active_to, db, cache)
    return _to_response(routine)


@router.put("/{routine_id}/exceptions/{on_date}", status_code=204)
def set_exception(
    routine_id: UUID,
    on_date: date,
    payload: ExceptionPatch,
    db: Session = Depends(get_db),
    cache: RoutineCache = Depends(get_routine_cache),
):
    """
    Merge fields into one date's exception.

    Omitted fields keep their value; explicit null clears an override.
    """
    exception_manager.set_exception(routine_id, on_date, payload.model_dump(exclude_unset=True), db, cache)
    return Response(status_code=204)


@router.get("/{routine_id}/exceptions", response_model=List[ExceptionResponse])
def list_exceptions(
    routine_id: UUID,
    start_date: Optional[date] = Query(None, description="First date (inclusive)"),
    end_date: Optional[date] = Query(None, description="Last date (inclusive)"),
    db: Session = Depends(get_db),
):
    return exception_manager.list_exceptions(routine_id, db, start=start_date, end=end_date)
