"""
Tests for the Exception Manager

Merge semantics of per-date exceptions, pruning of empty rows, the
inclusive pause window and the active upper bound.
"""
from datetime import date

import pytest

from core.cache import occurrences_key, progress_key
from core.exceptions import InvalidDateRange, RoutineNotFound
from models import RoutineException
from services import exception_manager, routine_store

DAY = date(2024, 1, 10)


class TestSetException:

    def test_skip_creates_row(self, db_session, make_routine):
        routine = make_routine()

        entry = exception_manager.set_exception(routine.id, DAY, {"skip": True}, db_session)

        assert entry.skip is True
        assert entry.override_times_per_day is None
        assert exception_manager.get_exception(routine.id, DAY, db_session).skip is True

    def test_merge_keeps_fields_not_in_patch(self, db_session, make_routine):
        routine = make_routine()
        exception_manager.set_exception(routine.id, DAY, {"override_times_per_day": 3}, db_session)

        entry = exception_manager.set_exception(routine.id, DAY, {"skip": True}, db_session)

        assert entry.skip is True
        assert entry.override_times_per_day == 3

    def test_explicit_null_clears_override(self, db_session, make_routine):
        routine = make_routine()
        exception_manager.set_exception(
            routine.id, DAY, {"skip": True, "override_times_per_day": 2}, db_session
        )

        entry = exception_manager.set_exception(
            routine.id, DAY, {"override_times_per_day": None}, db_session
        )

        assert entry.skip is True
        assert entry.override_times_per_day is None

    def test_unskip_without_overrides_prunes_row(self, db_session, make_routine):
        routine = make_routine()
        exception_manager.set_exception(routine.id, DAY, {"skip": True}, db_session)

        entry = exception_manager.set_exception(routine.id, DAY, {"skip": False}, db_session)

        assert entry is None
        assert db_session.query(RoutineException).count() == 0

    def test_noop_patch_on_missing_row_stores_nothing(self, db_session, make_routine):
        routine = make_routine()
        assert exception_manager.set_exception(routine.id, DAY, {"skip": False}, db_session) is None
        assert db_session.query(RoutineException).count() == 0

    def test_one_row_per_date(self, db_session, make_routine):
        routine = make_routine()
        for patch in ({"skip": True}, {"override_times": ["08:00"]}, {"override_times_per_day": 2}):
            exception_manager.set_exception(routine.id, DAY, patch, db_session)

        rows = db_session.query(RoutineException).filter(RoutineException.routine_id == routine.id).all()
        assert len(rows) == 1
        assert rows[0].override_times == ["08:00"]

    def test_concurrent_first_insert_retries_as_update(self, db_session, make_routine, monkeypatch):
        routine = make_routine()
        exception_manager.set_exception(routine.id, DAY, {"skip": True}, db_session)

        # The first lookup misses as if another writer inserted the row after it ran
        real_lookup = exception_manager._locked_exception
        calls = []

        def racing_lookup(routine_id, on_date, db):
            calls.append(on_date)
            if len(calls) == 1:
                return None
            return real_lookup(routine_id, on_date, db)

        monkeypatch.setattr(exception_manager, "_locked_exception", racing_lookup)

        entry = exception_manager.set_exception(routine.id, DAY, {"override_times_per_day": 3}, db_session)

        assert len(calls) == 2
        assert entry.skip is True
        assert entry.override_times_per_day == 3
        rows = db_session.query(RoutineException).filter(RoutineException.routine_id == routine.id).all()
        assert len(rows) == 1
        assert rows[0].override_times_per_day == 3

    def test_invalidates_cache_for_the_date(self, db_session, make_routine, cache, fake_redis):
        routine = make_routine()
        fake_redis.setex(progress_key(routine.id, DAY), 60, "{}")
        fake_redis.setex(occurrences_key(routine.id, date(2024, 1, 1), date(2024, 1, 31)), 60, "[]")

        exception_manager.set_exception(routine.id, DAY, {"skip": True}, db_session, cache)

        assert fake_redis.keys("*") == []

    def test_deleted_routine_rejected(self, db_session, make_routine):
        routine = make_routine()
        routine_store.soft_delete_routine(routine.id, db_session)
        with pytest.raises(RoutineNotFound):
            exception_manager.set_exception(routine.id, DAY, {"skip": True}, db_session)


class TestListExceptions:

    def test_sorted_and_bounded(self, db_session, make_routine):
        routine = make_routine()
        for d in (date(2024, 1, 20), date(2024, 1, 5), date(2024, 1, 12)):
            exception_manager.set_exception(routine.id, d, {"skip": True}, db_session)

        everything = exception_manager.list_exceptions(routine.id, db_session)
        bounded = exception_manager.list_exceptions(
            routine.id, db_session, start=date(2024, 1, 6), end=date(2024, 1, 31)
        )

        assert [e.date for e in everything] == [date(2024, 1, 5), date(2024, 1, 12), date(2024, 1, 20)]
        assert [e.date for e in bounded] == [date(2024, 1, 12), date(2024, 1, 20)]


class TestPauseAndActiveTo:

    def test_pause_and_unpause(self, db_session, make_routine):
        routine = make_routine()

        paused = exception_manager.pause_until(routine.id, date(2024, 2, 1), db_session)
        assert paused.paused_until == date(2024, 2, 1)

        resumed = exception_manager.pause_until(routine.id, None, db_session)
        assert resumed.paused_until is None

    def test_set_active_to(self, db_session, make_routine):
        routine = make_routine(active_from=date(2024, 1, 1))
        updated = exception_manager.set_active_to(routine.id, date(2024, 6, 30), db_session)
        assert updated.active_to == date(2024, 6, 30)

        cleared = exception_manager.set_active_to(routine.id, None, db_session)
        assert cleared.active_to is None

    def test_active_to_before_active_from_rejected(self, db_session, make_routine):
        routine = make_routine(active_from=date(2024, 3, 1))
        with pytest.raises(InvalidDateRange):
            exception_manager.set_active_to(routine.id, date(2024, 2, 28), db_session)
