"""Initial schema for timegrid."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "20261001_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=80), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("username", name="uq_users_username"),
    )

    op.create_table(
        "activities",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=60), nullable=False),
        sa.Column("color", sa.String(length=7), nullable=True),
        sa.Column("weekly_target_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.String(length=19), nullable=False),
        sa.UniqueConstraint("user_id", "name", name="uq_activities_user_name"),
        sa.CheckConstraint("weekly_target_minutes >= 0", name="ck_activities_target_non_negative"),
    )
    op.create_index("ix_activities_user_id", "activities", ["user_id"])

    op.create_table(
        "schedule_segments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("weekday", sa.Integer(), nullable=False),
        sa.Column("start_minute", sa.Integer(), nullable=False),
        sa.Column("end_minute", sa.Integer(), nullable=False),
        sa.Column("activity_id", sa.Integer(), sa.ForeignKey("activities.id", ondelete="SET NULL"), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("effective_from", sa.String(length=10), nullable=False),
        sa.Column("effective_to", sa.String(length=10), nullable=True),
        sa.CheckConstraint(
            "start_minute >= 0 AND start_minute < end_minute AND end_minute <= 1440",
            name="ck_schedule_segments_minutes_range",
        ),
        sa.CheckConstraint("weekday BETWEEN 1 AND 7", name="ck_schedule_segments_weekday_range"),
    )
    op.create_index("ix_schedule_segments_user_id", "schedule_segments", ["user_id"])
    op.create_index("ix_schedule_segments_activity_id", "schedule_segments", ["activity_id"])
    op.create_index("ix_segments_user_weekday", "schedule_segments", ["user_id", "weekday"])
    op.create_index(
        "uq_segments_open_start",
        "schedule_segments",
        ["user_id", "weekday", "start_minute"],
        unique=True,
        sqlite_where=sa.text("effective_to IS NULL"),
        postgresql_where=sa.text("effective_to IS NULL"),
    )

    op.create_table(
        "time_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("activity_id", sa.Integer(), sa.ForeignKey("activities.id", ondelete="SET NULL"), nullable=True),
        sa.Column("segment_id", sa.Integer(), sa.ForeignKey("schedule_segments.id", ondelete="SET NULL"), nullable=True),
        sa.Column("date", sa.String(length=10), nullable=False),
        sa.Column("started_at", sa.String(length=19), nullable=False),
        sa.Column("ended_at", sa.String(length=19), nullable=True),
        sa.Column("minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("partial", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("source", sa.String(length=16), nullable=False, server_default="ADHOC"),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.CheckConstraint("source IN ('PLANNED', 'ADHOC', 'MAKEUP')", name="ck_time_logs_source"),
        sa.CheckConstraint("ended_at IS NULL OR ended_at > started_at", name="ck_time_logs_interval"),
    )
    op.create_index("ix_time_logs_user_id", "time_logs", ["user_id"])
    op.create_index("ix_time_logs_activity_id", "time_logs", ["activity_id"])
    op.create_index("ix_time_logs_segment_id", "time_logs", ["segment_id"])
    op.create_index("ix_time_logs_user_started", "time_logs", ["user_id", "started_at"])
    op.create_index("ix_time_logs_user_date", "time_logs", ["user_id", "date"])
    op.create_index(
        "uq_time_logs_one_open_per_user",
        "time_logs",
        ["user_id"],
        unique=True,
        sqlite_where=sa.text("ended_at IS NULL"),
        postgresql_where=sa.text("ended_at IS NULL"),
    )

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("context", sa.JSON(), nullable=True),
        sa.Column("level", sa.String(length=20), nullable=False, server_default="info"),
    )
    op.create_index("ix_audit_events_timestamp", "audit_events", ["timestamp"])
    op.create_index("ix_audit_events_user_id", "audit_events", ["user_id"])
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"])
    op.create_index("ix_audit_events_level", "audit_events", ["level"])


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_index("uq_time_logs_one_open_per_user", table_name="time_logs")
    op.drop_table("time_logs")
    op.drop_index("uq_segments_open_start", table_name="schedule_segments")
    op.drop_table("schedule_segments")
    op.drop_table("activities")
    op.drop_table("users")
