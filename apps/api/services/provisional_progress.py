"""
Provisional Progress (optimistic completion state)

Client-side helper for callers that want a completion to show up before
the server answers. State has two layers per (routine, date):

- confirmed: the last authoritative progress from the server
- provisional: a local guess applied immediately (count + 1)

The server response always replaces the confirmed layer wholesale and
discards the guess; the two are never merged field by field. On failure:

- PersistenceError: the backend was unreachable, so the guess is rolled
  back and the confirmed layer stays as it was (retrying is fine).
- any other RoutineError (GoalExceeded, Skipped, ...): the guess was
  simply wrong. It is dropped and the key is marked stale so the caller
  re-fetches progress instead of retrying the mutation.
"""
from datetime import date
from typing import Any, Callable, Dict, Optional, Set, Tuple
import logging

from core.exceptions import CompletionPending, GoalExceeded, PersistenceError, RoutineError

logger = logging.getLogger(__name__)

ProgressKey = Tuple[str, str]


def _key(routine_id: Any, on_date: Any) -> ProgressKey:
    if isinstance(on_date, date):
        on_date = on_date.isoformat()
    return (str(routine_id), str(on_date))


class ProvisionalProgress:
    """Two-layer optimistic progress store."""

    def __init__(self):
        self._confirmed: Dict[ProgressKey, Dict[str, Any]] = {}
        self._provisional: Dict[ProgressKey, Dict[str, Any]] = {}
        self._stale: Set[ProgressKey] = set()

    def load(self, progress: Dict[str, Any]) -> None:
        """Install authoritative progress, replacing whatever was there."""
        key = _key(progress["routine_id"], progress["date"])
        self._confirmed[key] = dict(progress)
        self._provisional.pop(key, None)
        self._stale.discard(key)

    def view(self, routine_id: Any, on_date: Any) -> Optional[Dict[str, Any]]:
        """What the UI should render: the guess if one is in flight, else the confirmed state."""
        key = _key(routine_id, on_date)
        if key in self._provisional:
            return dict(self._provisional[key])
        if key in self._confirmed:
            return dict(self._confirmed[key])
        return None

    def is_pending(self, routine_id: Any, on_date: Any) -> bool:
        return _key(routine_id, on_date) in self._provisional

    def is_stale(self, routine_id: Any, on_date: Any) -> bool:
        return _key(routine_id, on_date) in self._stale

    def begin(self, routine_id: Any, on_date: Any) -> Dict[str, Any]:
        """
        Apply the local +1 guess.

        Raises CompletionPending when a completion for the key is already
        in flight (double tap) and GoalExceeded when the confirmed state is
        already at goal. Neither touches the stored state.
        """
        key = _key(routine_id, on_date)
        if key in self._provisional:
            raise CompletionPending(key[0], key[1])

        base = self._confirmed.get(key)
        if base is None:
            base = {"routine_id": key[0], "date": key[1], "count": 0, "goal": 1, "skipped": False, "paused": False}
        if base["count"] >= base["goal"]:
            raise GoalExceeded(key[0], date.fromisoformat(key[1]), base["goal"])

        guess = dict(base)
        guess["count"] = base["count"] + 1
        self._provisional[key] = guess
        return dict(guess)

    def confirm(self, authoritative: Dict[str, Any]) -> Dict[str, Any]:
        """Server accepted: its answer becomes the confirmed state."""
        self.load(authoritative)
        return dict(authoritative)

    def fail(self, routine_id: Any, on_date: Any, error: Exception) -> str:
        """
        Drop the guess after a failed submit.

        Returns "rollback" for storage failures and "refetch" for domain
        errors, matching what the caller should do next.
        """
        key = _key(routine_id, on_date)
        self._provisional.pop(key, None)
        if isinstance(error, PersistenceError) or not isinstance(error, RoutineError):
            logger.info(f"Rolled back provisional completion for {key}")
            return "rollback"
        self._stale.add(key)
        logger.info(f"Provisional completion for {key} rejected ({error.error_code}), refetch needed")
        return "refetch"

    def complete(
        self,
        routine_id: Any,
        on_date: Any,
        submit: Callable[[], Dict[str, Any]],
        fetch: Callable[[], Dict[str, Any]],
    ) -> Dict[str, Any]:
        """
        Full optimistic round trip.

        ``submit`` performs the completion and returns the authoritative
        progress; ``fetch`` reads progress without mutating. Errors are
        re-raised after the local state has been put right. A double tap
        raises CompletionPending before anything is submitted.
        """
        self.begin(routine_id, on_date)
        try:
            result = submit()
        except Exception as e:
            if self.fail(routine_id, on_date, e) == "refetch":
                self.load(fetch())
            raise
        return self.confirm(result)
