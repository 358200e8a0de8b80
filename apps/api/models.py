from sqlalchemy import Column, Integer, Boolean, CheckConstraint, Date, DateTime, ForeignKey, Text, String, Index, UniqueConstraint, JSON, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from core.database import Base
import uuid


class Routine(Base):
    """
    A recurring obligation with a daily goal and a recurrence schedule.

    Schedule is a tagged JSON document:
    - {"type": "daily"}
    - {"type": "weekly" | "custom_days", "days_of_week": [0..6]}  (0=Sunday)

    Routines are soft-deleted (deleted_at) so the completion history stays
    readable; only an explicit purge removes the row and its children.
    """
    __tablename__ = "routine"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    color = Column(String(16), nullable=False, default="#3B82F6")
    priority = Column(Text, nullable=False, default="medium")  # 'low', 'medium', 'high'

    # Default daily goal; an exception can override it for one date
    times_per_day = Column(Integer, nullable=False, default=1)
    # Advisory "HH:MM" reminders, never used for counting
    specific_times = Column(JSON, nullable=False, default=list)

    schedule = Column(JSON, nullable=False, default=lambda: {"type": "daily"})

    active_from = Column(Date, nullable=False)
    active_to = Column(Date, nullable=True)  # inclusive
    paused_until = Column(Date, nullable=True)  # inclusive: dates <= this are paused

    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    exceptions = relationship("RoutineException", back_populates="routine", cascade="all, delete-orphan")
    completions = relationship("RoutineCompletion", back_populates="routine", cascade="all, delete-orphan")
    bulk_operations = relationship("RoutineBulkOperation", back_populates="routine", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("times_per_day >= 1", name="ck_routine_times_per_day_positive"),
        CheckConstraint("priority IN ('low', 'medium', 'high')", name="ck_routine_priority"),
        Index("ix_routine_deleted_at", "deleted_at"),
    )


class RoutineException(Base):
    """
    Per-date override layered on top of a routine's schedule.

    A row with skip=False and no overrides means nothing and is pruned.
    """
    __tablename__ = "routine_exception"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    routine_id = Column(Uuid(as_uuid=True), ForeignKey("routine.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)

    skip = Column(Boolean, nullable=False, default=False)
    override_times_per_day = Column(Integer, nullable=True)
    override_times = Column(JSON, nullable=True)  # advisory, does not affect counting

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    routine = relationship("Routine", back_populates="exceptions")

    __table_args__ = (
        UniqueConstraint("routine_id", "date", name="uq_routine_exception_routine_date"),
        CheckConstraint(
            "override_times_per_day IS NULL OR override_times_per_day >= 1",
            name="ck_routine_exception_override_positive",
        ),
    )

    def is_noop(self) -> bool:
        return not self.skip and self.override_times_per_day is None and self.override_times is None


class RoutineCompletion(Base):
    """
    Progress for one routine on one date.

    count only ever moves through the conditional increment in
    services.completion_ledger; goal is the effective goal at the last write.
    """
    __tablename__ = "routine_completion"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    routine_id = Column(Uuid(as_uuid=True), ForeignKey("routine.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)

    count = Column(Integer, nullable=False, default=0)
    goal = Column(Integer, nullable=False, default=1)
    specific_time = Column(String(5), nullable=True)  # "HH:MM" of the latest completion, if given
    completed_at = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    routine = relationship("Routine", back_populates="completions")

    __table_args__ = (
        UniqueConstraint("routine_id", "date", name="uq_routine_completion_routine_date"),
        CheckConstraint("count >= 0", name="ck_routine_completion_count_non_negative"),
        CheckConstraint("count <= goal", name="ck_routine_completion_count_within_goal"),
    )


class RoutineBulkOperation(Base):
    """
    Append-only audit record of a bulk skip or delete.

    Written once, never updated, never replayed.
    """
    __tablename__ = "routine_bulk_operation"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    routine_id = Column(Uuid(as_uuid=True), ForeignKey("routine.id", ondelete="CASCADE"), nullable=False)
    operation_type = Column(Text, nullable=False)  # 'delete_occurrences', 'skip_period'
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    affected_dates = Column(JSON, nullable=False, default=list)  # ISO date strings, in request order
    failed_dates = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    routine = relationship("Routine", back_populates="bulk_operations")

    __table_args__ = (
        CheckConstraint(
            "operation_type IN ('delete_occurrences', 'skip_period')",
            name="ck_routine_bulk_operation_type",
        ),
        Index("ix_routine_bulk_operation_routine_created", "routine_id", "created_at"),
    )
