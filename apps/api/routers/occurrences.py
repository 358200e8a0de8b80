"""
Occurrences API Router

Calendar views across every active routine: open slots for a range and
the full agenda of one day.
"""
from datetime import date
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.cache import RoutineCache, get_routine_cache
from core.database import get_db
from schemas import AgendaItemResponse, OccurrenceResponse
from services import occurrence_generator

router = APIRouter(prefix="/v1/occurrences", tags=["occurrences"])


@router.get("", response_model=List[OccurrenceResponse])
def list_occurrences(
    start_date: date = Query(..., description="First date (inclusive)"),
    end_date: date = Query(..., description="Last date (inclusive)"),
    db: Session = Depends(get_db),
    cache: RoutineCache = Depends(get_routine_cache),
):
    """
    Open slots of all routines between start_date and end_date.

    Fully completed dates are not listed; see /agenda for those.
    """
    return occurrence_generator.occurrences(start_date, end_date, db, cache)


@router.get("/agenda/{on_date}", response_model=List[AgendaItemResponse])
def get_day_agenda(on_date: date, db: Session = Depends(get_db)):
    """Every routine due on a date with its progress, completed ones included."""
    return occurrence_generator.day_agenda(on_date, db)
