"""
Routine Completions API Router

Completing slots, reading progress and listing a routine's open
occurrences and ledger history.
"""
from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.cache import RoutineCache, get_routine_cache
from core.database import get_db
from schemas import CompletionRequest, CompletionResponse, OccurrenceResponse, ProgressResponse
from services import completion_ledger, occurrence_generator

router = APIRouter(prefix="/v1/routines", tags=["routine-completions"])


@router.post("/{routine_id}/completions", response_model=CompletionResponse, status_code=201)
def complete_one(
    routine_id: UUID,
    payload: CompletionRequest,
    db: Session = Depends(get_db),
    cache: RoutineCache = Depends(get_routine_cache),
):
    """
    Complete one slot of a routine on a date.

    409 with error_code GOAL_EXCEEDED, SKIPPED, ALREADY_PAUSED or
    CONCURRENT_MODIFICATION when the completion is refused. On
    CONCURRENT_MODIFICATION, or after a timeout, read progress before
    retrying: the first attempt may have been applied.
    """
    return completion_ledger.complete_one(
        routine_id,
        payload.date,
        db,
        cache,
        specific_time=payload.specific_time,
    )


@router.get("/{routine_id}/completions", response_model=List[CompletionResponse])
def list_completions(
    routine_id: UUID,
    start_date: Optional[date] = Query(None, description="First date (inclusive)"),
    end_date: Optional[date] = Query(None, description="Last date (inclusive)"),
    db: Session = Depends(get_db),
):
    return completion_ledger.list_completions(routine_id, db, start=start_date, end=end_date)


@router.get("/{routine_id}/progress/{on_date}", response_model=ProgressResponse)
def get_progress(
    routine_id: UUID,
    on_date: date,
    db: Session = Depends(get_db),
    cache: RoutineCache = Depends(get_routine_cache),
):
    """Count, effective goal, skip and pause state of one date. Safe to retry."""
    return completion_ledger.progress(routine_id, on_date, db, cache)


@router.get("/{routine_id}/occurrences", response_model=List[OccurrenceResponse])
def list_routine_occurrences(
    routine_id: UUID,
    start_date: date = Query(..., description="First date (inclusive)"),
    end_date: date = Query(..., description="Last date (inclusive)"),
    db: Session = Depends(get_db),
    cache: RoutineCache = Depends(get_routine_cache),
):
    """Dates of this routine that still have open slots."""
    return occurrence_generator.occurrences_for_routine(routine_id, start_date, end_date, db, cache)
