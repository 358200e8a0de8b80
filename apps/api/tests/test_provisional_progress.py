"""
Tests for ProvisionalProgress (optimistic completion state)

The server answer replaces local state wholesale; storage failures roll
back the guess, domain rejections force a re-fetch.
"""
from datetime import date

import pytest

from core.exceptions import CompletionPending, GoalExceeded, PersistenceError, Skipped
from services.provisional_progress import ProvisionalProgress

RID = "routine-1"
DAY = date(2024, 1, 15)


def _progress(count, goal=3, **extra):
    value = {"routine_id": RID, "date": DAY.isoformat(), "count": count, "goal": goal, "skipped": False, "paused": False}
    value.update(extra)
    return value


class TestBegin:

    def test_guess_is_visible_immediately(self):
        state = ProvisionalProgress()
        state.load(_progress(1))

        guess = state.begin(RID, DAY)

        assert guess["count"] == 2
        assert state.view(RID, DAY)["count"] == 2
        assert state.is_pending(RID, DAY)

    def test_double_tap_raises_pending(self):
        state = ProvisionalProgress()
        state.load(_progress(0))
        state.begin(RID, DAY)

        with pytest.raises(CompletionPending) as exc:
            state.begin(RID, DAY)
        assert exc.value.error_code == "COMPLETION_PENDING"
        assert exc.value.status_code == 409
        assert state.view(RID, DAY)["count"] == 1

    def test_at_goal_refused_locally(self):
        state = ProvisionalProgress()
        state.load(_progress(3))

        with pytest.raises(GoalExceeded):
            state.begin(RID, DAY)
        assert not state.is_pending(RID, DAY)

    def test_unknown_key_starts_from_zero(self):
        state = ProvisionalProgress()
        assert state.begin(RID, DAY)["count"] == 1


class TestComplete:

    def test_server_answer_replaces_guess(self):
        state = ProvisionalProgress()
        state.load(_progress(0))

        result = state.complete(RID, DAY, submit=lambda: _progress(2, goal=5), fetch=lambda: _progress(0))

        assert result["count"] == 2
        assert state.view(RID, DAY) == _progress(2, goal=5)
        assert not state.is_pending(RID, DAY)

    def test_double_tap_does_not_submit_again(self):
        state = ProvisionalProgress()
        state.load(_progress(0))
        state.begin(RID, DAY)

        with pytest.raises(CompletionPending):
            state.complete(RID, DAY, submit=lambda: pytest.fail("must not submit"), fetch=lambda: pytest.fail("must not fetch"))

        assert state.is_pending(RID, DAY)
        assert state.view(RID, DAY)["count"] == 1

    def test_persistence_error_rolls_back(self):
        state = ProvisionalProgress()
        state.load(_progress(1))

        def submit():
            raise PersistenceError("complete_one")

        with pytest.raises(PersistenceError):
            state.complete(RID, DAY, submit=submit, fetch=lambda: pytest.fail("must not fetch"))

        assert state.view(RID, DAY)["count"] == 1
        assert not state.is_stale(RID, DAY)

    def test_domain_error_refetches(self):
        state = ProvisionalProgress()
        state.load(_progress(1))

        def submit():
            raise Skipped(RID, DAY)

        with pytest.raises(Skipped):
            state.complete(RID, DAY, submit=submit, fetch=lambda: _progress(1, skipped=True))

        assert state.view(RID, DAY)["skipped"] is True
        assert not state.is_stale(RID, DAY)

    def test_fail_reports_next_step(self):
        state = ProvisionalProgress()
        state.begin(RID, DAY)
        assert state.fail(RID, DAY, Skipped(RID, DAY)) == "refetch"
        assert state.is_stale(RID, DAY)

        state.begin(RID, DAY)
        assert state.fail(RID, DAY, TimeoutError()) == "rollback"
