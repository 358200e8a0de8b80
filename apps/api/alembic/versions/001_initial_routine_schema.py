"""initial_routine_schema

Revision ID: 001_initial_routine_schema
Revises:
Create Date: 2026-10-19

Creates the routine tables:
- routine: definition, schedule document, active window, pause, soft delete
- routine_exception: one optional override row per (routine, date)
- routine_completion: capped per-date counter, one row per (routine, date)
- routine_bulk_operation: append-only audit of bulk skip/delete

Uses portable column types so the same revision runs on Postgres and SQLite.
"""

from alembic import op
import sqlalchemy as sa


revision = "001_initial_routine_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "routine",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("color", sa.String(length=16), nullable=False),
        sa.Column("priority", sa.Text(), nullable=False),
        sa.Column("times_per_day", sa.Integer(), nullable=False),
        sa.Column("specific_times", sa.JSON(), nullable=False),
        sa.Column("schedule", sa.JSON(), nullable=False),
        sa.Column("active_from", sa.Date(), nullable=False),
        sa.Column("active_to", sa.Date(), nullable=True),
        sa.Column("paused_until", sa.Date(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("times_per_day >= 1", name="ck_routine_times_per_day_positive"),
        sa.CheckConstraint("priority IN ('low', 'medium', 'high')", name="ck_routine_priority"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_routine_deleted_at", "routine", ["deleted_at"], unique=False)

    op.create_table(
        "routine_exception",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("routine_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("skip", sa.Boolean(), nullable=False),
        sa.Column("override_times_per_day", sa.Integer(), nullable=True),
        sa.Column("override_times", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "override_times_per_day IS NULL OR override_times_per_day >= 1",
            name="ck_routine_exception_override_positive",
        ),
        sa.ForeignKeyConstraint(["routine_id"], ["routine.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("routine_id", "date", name="uq_routine_exception_routine_date"),
    )

    op.create_table(
        "routine_completion",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("routine_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False),
        sa.Column("goal", sa.Integer(), nullable=False),
        sa.Column("specific_time", sa.String(length=5), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("count >= 0", name="ck_routine_completion_count_non_negative"),
        sa.CheckConstraint("count <= goal", name="ck_routine_completion_count_within_goal"),
        sa.ForeignKeyConstraint(["routine_id"], ["routine.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("routine_id", "date", name="uq_routine_completion_routine_date"),
    )

    op.create_table(
        "routine_bulk_operation",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("routine_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("operation_type", sa.Text(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("affected_dates", sa.JSON(), nullable=False),
        sa.Column("failed_dates", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "operation_type IN ('delete_occurrences', 'skip_period')",
            name="ck_routine_bulk_operation_type",
        ),
        sa.ForeignKeyConstraint(["routine_id"], ["routine.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_routine_bulk_operation_routine_created",
        "routine_bulk_operation",
        ["routine_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_routine_bulk_operation_routine_created", table_name="routine_bulk_operation")
    op.drop_table("routine_bulk_operation")
    op.drop_table("routine_completion")
    op.drop_table("routine_exception")
    op.drop_index("ix_routine_deleted_at", table_name="routine")
    op.drop_table("routine")
