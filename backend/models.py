from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.orm import DynamicMapped, Mapped, mapped_column, relationship

from extensions import db


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


LOG_SOURCES = ("PLANNED", "ADHOC", "MAKEUP")


class User(db.Model):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str] = mapped_column(db.String(80), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow
    )

    activities: Mapped[List["Activity"]] = relationship(
        back_populates="user",
        passive_deletes=True,
    )
    segments: Mapped[List["ScheduleSegment"]] = relationship(
        back_populates="user",
        passive_deletes=True,
    )
    time_logs: Mapped[List["TimeLog"]] = relationship(
        back_populates="user",
        passive_deletes=True,
    )
    audit_events: DynamicMapped["AuditEvent"] = relationship(
        "AuditEvent",
        back_populates="user",
        lazy="dynamic",
    )

    def __repr__(self) -> str:  # pragma: no cover - convenience
        return f"<User {self.username}>"


class Activity(db.Model):
    __tablename__ = "activities"
    __table_args__ = (
        db.UniqueConstraint("user_id", "name", name="uq_activities_user_name"),
        db.CheckConstraint(
            "weekly_target_minutes >= 0", name="target_non_negative"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(db.String(60), nullable=False)
    color: Mapped[Optional[str]] = mapped_column(db.String(7), nullable=True)
    weekly_target_minutes: Mapped[int] = mapped_column(
        db.Integer, nullable=False, default=0, server_default="0"
    )
    active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)
    created_at: Mapped[str] = mapped_column(db.String(19), nullable=False)

    user: Mapped["User"] = relationship(back_populates="activities")

    def __repr__(self) -> str:  # pragma: no cover - convenience
        status = "active" if self.active else "inactive"
        return f"<Activity {self.name} ({status})>"


class ScheduleSegment(db.Model):
    """One version of a weekly template slot.

    ``effective_to IS NULL`` marks the open (current/forward) version; a set
    ``effective_to`` is a closed historical version and is never modified.
    """

    __tablename__ = "schedule_segments"
    __table_args__ = (
        db.CheckConstraint(
            "start_minute >= 0 AND start_minute < end_minute AND end_minute <= 1440",
            name="minutes_range",
        ),
        db.CheckConstraint("weekday BETWEEN 1 AND 7", name="weekday_range"),
        db.Index(
            "uq_segments_open_start",
            "user_id",
            "weekday",
            "start_minute",
            unique=True,
            sqlite_where=text("effective_to IS NULL"),
            postgresql_where=text("effective_to IS NULL"),
        ),
        db.Index("ix_segments_user_weekday", "user_id", "weekday"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    weekday: Mapped[int] = mapped_column(db.Integer, nullable=False)
    start_minute: Mapped[int] = mapped_column(db.Integer, nullable=False)
    end_minute: Mapped[int] = mapped_column(db.Integer, nullable=False)
    activity_id: Mapped[Optional[int]] = mapped_column(
        db.Integer,
        db.ForeignKey("activities.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    notes: Mapped[Optional[str]] = mapped_column(db.Text, nullable=True)
    effective_from: Mapped[str] = mapped_column(db.String(10), nullable=False)
    effective_to: Mapped[Optional[str]] = mapped_column(db.String(10), nullable=True)

    user: Mapped["User"] = relationship(back_populates="segments")

    def __repr__(self) -> str:  # pragma: no cover - convenience
        state = "open" if self.effective_to is None else f"closed {self.effective_to}"
        return f"<ScheduleSegment d{self.weekday} {self.start_minute}-{self.end_minute} ({state})>"


class TimeLog(db.Model):
    __tablename__ = "time_logs"
    __table_args__ = (
        db.CheckConstraint(
            "source IN ('PLANNED', 'ADHOC', 'MAKEUP')", name="source"
        ),
        db.CheckConstraint(
            "ended_at IS NULL OR ended_at > started_at", name="interval"
        ),
        db.Index(
            "uq_time_logs_one_open_per_user",
            "user_id",
            unique=True,
            sqlite_where=text("ended_at IS NULL"),
            postgresql_where=text("ended_at IS NULL"),
        ),
        db.Index("ix_time_logs_user_started", "user_id", "started_at"),
        db.Index("ix_time_logs_user_date", "user_id", "date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    activity_id: Mapped[Optional[int]] = mapped_column(
        db.Integer,
        db.ForeignKey("activities.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    segment_id: Mapped[Optional[int]] = mapped_column(
        db.Integer,
        db.ForeignKey("schedule_segments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    date: Mapped[str] = mapped_column(db.String(10), nullable=False)
    started_at: Mapped[str] = mapped_column(db.String(19), nullable=False)
    ended_at: Mapped[Optional[str]] = mapped_column(db.String(19), nullable=True)
    minutes: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    partial: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    source: Mapped[str] = mapped_column(db.String(16), nullable=False, default="ADHOC")
    comment: Mapped[Optional[str]] = mapped_column(db.Text, nullable=True)

    user: Mapped["User"] = relationship(back_populates="time_logs")

    def __repr__(self) -> str:  # pragma: no cover - convenience
        return f"<TimeLog {self.started_at}..{self.ended_at or 'open'} {self.source}>"


class AuditEvent(db.Model):
    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        index=True,
    )
    user_id: Mapped[Optional[int]] = mapped_column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    event_type: Mapped[str] = mapped_column(db.String(64), nullable=False, index=True)
    message: Mapped[str] = mapped_column(db.Text, nullable=False)
    context: Mapped[Optional[Dict[str, object]]] = mapped_column(db.JSON, nullable=True)
    level: Mapped[str] = mapped_column(db.String(20), nullable=False, default="info", index=True)

    user: Mapped[Optional["User"]] = relationship(back_populates="audit_events")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "message": self.message,
            "context": self.context or {},
            "level": self.level,
        }

    def __repr__(self) -> str:  # pragma: no cover - convenience
        return f"<AuditEvent {self.event_type} ({self.level})>"


__all__ = [
    "LOG_SOURCES",
    "User",
    "Activity",
    "ScheduleSegment",
    "TimeLog",
    "AuditEvent",
]
