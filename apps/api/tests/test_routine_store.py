"""
Tests for the Routine Definition Store

Create/update defaults, soft delete (idempotent, history kept), purge,
listing and lifecycle status.
"""
from datetime import date, datetime, timezone
from uuid import uuid4

import pytest

from core.cache import progress_key
from core.exceptions import InvalidDateRange, RoutineNotFound
from models import Routine, RoutineCompletion
from services import completion_ledger, exception_manager, routine_store


class TestCreateRoutine:

    def test_defaults(self, db_session):
        routine = routine_store.create_routine({"name": "Read"}, db_session, today=date(2024, 5, 1))

        assert routine.id is not None
        assert routine.color == "#3B82F6"
        assert routine.priority == "medium"
        assert routine.times_per_day == 1
        assert routine.schedule == {"type": "daily"}
        assert routine.specific_times == []
        assert routine.active_from == date(2024, 5, 1)
        assert routine.deleted_at is None

    def test_schedule_is_normalized(self, db_session):
        routine = routine_store.create_routine(
            {"name": "Gym", "schedule": {"type": "weekly", "days_of_week": [5, 1, 1]}},
            db_session,
        )
        assert routine.schedule == {"type": "weekly", "days_of_week": [1, 5]}

    def test_active_to_before_active_from_rejected(self, db_session):
        with pytest.raises(InvalidDateRange):
            routine_store.create_routine(
                {"name": "Bad", "active_from": date(2024, 2, 1), "active_to": date(2024, 1, 1)},
                db_session,
            )


class TestUpdateRoutine:

    def test_partial_update_keeps_other_fields(self, db_session, make_routine):
        routine = make_routine(name="Stretch", times_per_day=2, color="#FF0000")

        updated = routine_store.update_routine(routine.id, {"times_per_day": 3}, db_session)

        assert updated.times_per_day == 3
        assert updated.name == "Stretch"
        assert updated.color == "#FF0000"

    def test_explicit_null_clears_nullable_field(self, db_session, make_routine):
        routine = make_routine(description="morning", active_to=date(2024, 12, 31))

        updated = routine_store.update_routine(
            routine.id, {"description": None, "active_to": None}, db_session
        )

        assert updated.description is None
        assert updated.active_to is None

    def test_null_on_required_field_is_ignored(self, db_session, make_routine):
        routine = make_routine(name="Keep me")
        updated = routine_store.update_routine(routine.id, {"name": None}, db_session)
        assert updated.name == "Keep me"

    def test_invalid_window_rejected_and_nothing_saved(self, db_session, make_routine):
        routine = make_routine(active_from=date(2024, 3, 1))

        with pytest.raises(InvalidDateRange):
            routine_store.update_routine(routine.id, {"active_to": date(2024, 2, 1)}, db_session)

        reloaded = routine_store.get_routine(routine.id, db_session)
        assert reloaded.active_to is None

    def test_update_invalidates_cached_progress(self, db_session, make_routine, cache, fake_redis):
        routine = make_routine(times_per_day=1)
        completion_ledger.progress(routine.id, date(2024, 1, 5), db_session, cache)
        assert fake_redis.exists(progress_key(routine.id, date(2024, 1, 5)))

        routine_store.update_routine(routine.id, {"times_per_day": 4}, db_session, cache)

        assert not fake_redis.exists(progress_key(routine.id, date(2024, 1, 5)))
        assert completion_ledger.progress(routine.id, date(2024, 1, 5), db_session, cache)["goal"] == 4

    def test_update_deleted_routine_not_found(self, db_session, make_routine):
        routine = make_routine()
        routine_store.soft_delete_routine(routine.id, db_session)
        with pytest.raises(RoutineNotFound):
            routine_store.update_routine(routine.id, {"name": "x"}, db_session)


class TestSoftDelete:

    def test_soft_delete_keeps_row_and_history(self, db_session, make_routine):
        routine = make_routine()
        completion_ledger.complete_one(routine.id, date(2024, 1, 2), db_session)

        routine_store.soft_delete_routine(routine.id, db_session)

        stored = db_session.query(Routine).filter(Routine.id == routine.id).first()
        assert stored is not None
        assert stored.deleted_at is not None
        history = completion_ledger.list_completions(routine.id, db_session)
        assert [c.date for c in history] == [date(2024, 1, 2)]

    def test_soft_delete_is_idempotent(self, db_session, make_routine):
        routine = make_routine()
        first = datetime(2024, 1, 10, 8, 0, tzinfo=timezone.utc)
        routine_store.soft_delete_routine(routine.id, db_session, now=first)
        routine_store.soft_delete_routine(routine.id, db_session, now=datetime(2024, 2, 1, tzinfo=timezone.utc))

        stored = routine_store.get_routine(routine.id, db_session)
        assert stored.deleted_at.replace(tzinfo=None) == first.replace(tzinfo=None)

    def test_missing_routine_raises(self, db_session):
        with pytest.raises(RoutineNotFound):
            routine_store.soft_delete_routine(uuid4(), db_session)

    def test_deleted_routine_hidden_from_active_lookups(self, db_session, make_routine):
        routine = make_routine()
        routine_store.soft_delete_routine(routine.id, db_session)

        with pytest.raises(RoutineNotFound):
            routine_store.get_active_routine(routine.id, db_session)
        assert routine_store.get_routine(routine.id, db_session).id == routine.id


class TestPurge:

    def test_purge_removes_routine_and_children(self, db_session, make_routine):
        routine = make_routine(times_per_day=2)
        completion_ledger.complete_one(routine.id, date(2024, 1, 2), db_session)
        exception_manager.set_exception(routine.id, date(2024, 1, 3), {"skip": True}, db_session)

        removed = routine_store.purge_routine(routine.id, db_session)

        assert removed["completions"] == 1
        assert removed["exceptions"] == 1
        assert db_session.query(Routine).count() == 0
        assert db_session.query(RoutineCompletion).count() == 0
        with pytest.raises(RoutineNotFound):
            routine_store.get_routine(routine.id, db_session)


class TestListAndStatus:

    def test_list_excludes_deleted_by_default(self, db_session, make_routine):
        kept = make_routine(name="Kept")
        gone = make_routine(name="Gone")
        routine_store.soft_delete_routine(gone.id, db_session)

        assert [r.id for r in routine_store.list_routines(db_session)] == [kept.id]
        assert len(routine_store.list_routines(db_session, include_deleted=True)) == 2

    def test_status_labels(self, db_session, make_routine):
        today = date(2024, 6, 15)
        active = make_routine(active_from=date(2024, 1, 1))
        scheduled = make_routine(active_from=date(2024, 7, 1))
        expired = make_routine(active_from=date(2024, 1, 1), active_to=date(2024, 6, 1))
        paused = make_routine(active_from=date(2024, 1, 1), paused_until=date(2024, 6, 15))

        assert routine_store.routine_status(active, today) == routine_store.STATUS_ACTIVE
        assert routine_store.routine_status(scheduled, today) == routine_store.STATUS_SCHEDULED
        assert routine_store.routine_status(expired, today) == routine_store.STATUS_EXPIRED
        assert routine_store.routine_status(paused, today) == routine_store.STATUS_PAUSED

        routine_store.soft_delete_routine(active.id, db_session)
        assert routine_store.routine_status(active, today) == routine_store.STATUS_DELETED
