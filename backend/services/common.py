"""Helpers shared by the service modules: JSON shaping and error translation."""

from typing import Callable, Optional

import structlog
from security import ApiError
from sqlalchemy.exc import SQLAlchemyError
from timeutils import minutes_to_hhmm, parse_timestamp

logger = structlog.get_logger("timegrid.backend")

CACHE_PREFIXES = ("dashboard", "usage")


def database_error(exc: SQLAlchemyError) -> ApiError:
    """Log the driver error and hand back a generic 500 for the caller."""
    logger.error("service.database_error", error=str(exc))
    return ApiError("Database error", code="database_error", status=500)


def invalidate_week_views(invalidate_cache_cb: Optional[Callable[[str], None]]) -> None:
    if not invalidate_cache_cb:
        return
    for prefix in CACHE_PREFIXES:
        invalidate_cache_cb(prefix)


def _activity_ref(row: dict) -> Optional[dict]:
    if row.get("activity_id") is None:
        return None
    return {
        "id": row["activity_id"],
        "name": row.get("activity_name"),
        "color": row.get("activity_color"),
    }


def serialize_activity(row: dict) -> dict:
    return {
        "id": row["id"],
        "name": row["name"],
        "color": row.get("color"),
        "weeklyTargetMinutes": int(row.get("weekly_target_minutes") or 0),
        "active": bool(row.get("active")),
        "createdAt": row.get("created_at"),
    }


def serialize_segment(row: dict) -> dict:
    return {
        "id": row["id"],
        "weekday": row["weekday"],
        "startMinute": row["start_minute"],
        "endMinute": row["end_minute"],
        "start": minutes_to_hhmm(int(row["start_minute"])),
        "end": minutes_to_hhmm(int(row["end_minute"])),
        "activityId": row.get("activity_id"),
        "activity": _activity_ref(row),
        "notes": row.get("notes"),
        "effectiveFrom": row["effective_from"],
        "effectiveTo": row.get("effective_to"),
    }


def _timestamp_text(value) -> Optional[str]:
    parsed = parse_timestamp(value)
    return parsed.isoformat() if parsed else None


def serialize_log(row: dict) -> dict:
    return {
        "id": row["id"],
        "activityId": row.get("activity_id"),
        "activity": _activity_ref(row),
        "segmentId": row.get("segment_id"),
        "date": row["date"],
        "startedAt": _timestamp_text(row.get("started_at")),
        "endedAt": _timestamp_text(row.get("ended_at")),
        "minutes": int(row.get("minutes") or 0),
        "partial": bool(row.get("partial")),
        "source": row.get("source"),
        "comment": row.get("comment"),
    }
