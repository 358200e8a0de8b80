"""
Routine domain errors.

Every expected rejection a caller can hit is a typed exception here.
The API layer turns them into JSON with a stable error_code; nothing in
this hierarchy should ever surface as a 500.
"""
from datetime import date
from typing import Optional, Any, Dict


class RoutineError(Exception):
    """Base class for all recoverable routine errors."""

    status_code: int = 400
    error_code: str = "ROUTINE_ERROR"
    retryable: bool = False

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detail": self.detail,
            "error_code": self.error_code,
            "retryable": self.retryable,
        }


class RoutineNotFound(RoutineError):
    """Routine does not exist, or is soft-deleted where an active one is required."""

    status_code = 404
    error_code = "ROUTINE_NOT_FOUND"

    def __init__(self, routine_id: Any):
        super().__init__(f"Routine not found: {routine_id}")
        self.routine_id = routine_id


class GoalExceeded(RoutineError):
    status_code = 409
    error_code = "GOAL_EXCEEDED"

    def __init__(self, routine_id: Any, on_date: date, goal: int):
        super().__init__(
            f"Routine {routine_id} already completed {goal} time(s) on {on_date.isoformat()}"
        )
        self.routine_id = routine_id
        self.on_date = on_date
        self.goal = goal


class Skipped(RoutineError):
    status_code = 409
    error_code = "SKIPPED"

    def __init__(self, routine_id: Any, on_date: date):
        super().__init__(f"Routine {routine_id} is skipped on {on_date.isoformat()}")
        self.routine_id = routine_id
        self.on_date = on_date


class AlreadyPaused(RoutineError):
    status_code = 409
    error_code = "ALREADY_PAUSED"

    def __init__(self, routine_id: Any, on_date: date, paused_until: date):
        super().__init__(
            f"Routine {routine_id} is paused until {paused_until.isoformat()} "
            f"(requested {on_date.isoformat()})"
        )
        self.routine_id = routine_id
        self.on_date = on_date
        self.paused_until = paused_until


class InvalidDateRange(RoutineError):
    status_code = 422
    error_code = "INVALID_DATE_RANGE"

    def __init__(self, start: Optional[date], end: Optional[date], reason: Optional[str] = None):
        detail = reason or "start date must not be after end date"
        super().__init__(f"Invalid date range {start} .. {end}: {detail}")
        self.start = start
        self.end = end


class EmptyRange(RoutineError):
    status_code = 422
    error_code = "EMPTY_RANGE"

    def __init__(self):
        super().__init__("Bulk operation requires at least one date")


class ConcurrentModification(RoutineError):
    """
    The conditional increment matched no row although the goal was not
    reached when we looked. Re-read progress before telling the user anything.
    """

    status_code = 409
    error_code = "CONCURRENT_MODIFICATION"

    def __init__(self, routine_id: Any, on_date: date):
        super().__init__(
            f"Completion for routine {routine_id} on {on_date.isoformat()} raced with another writer"
        )
        self.routine_id = routine_id
        self.on_date = on_date


class PersistenceError(RoutineError):
    """Storage backend unavailable. Safe to retry."""

    status_code = 503
    error_code = "PERSISTENCE_ERROR"
    retryable = True

    def __init__(self, operation: str):
        super().__init__(f"Storage unavailable during {operation}")
        self.operation = operation


class CompletionPending(RoutineError):
    """A provisional completion for this routine and date is still awaiting the server."""

    status_code = 409
    error_code = "COMPLETION_PENDING"

    def __init__(self, routine_id: Any, on_date: Any):
        super().__init__(f"Completion for routine {routine_id} on {on_date} is already in flight")
        self.routine_id = routine_id
        self.on_date = on_date
