"""Repository managing activity-related database operations."""

from typing import Any, Dict, List, Optional

from db_utils import connection as sa_connection
from db_utils import transactional_connection
from extensions import db
from sqlalchemy.exc import IntegrityError

from .errors import ConflictError, NotFoundError, RepositoryError  # noqa: F401
from .errors import violates_unique

ACTIVITY_COLUMNS = """
    id,
    user_id,
    name,
    color,
    weekly_target_minutes,
    active,
    created_at
"""

UPDATABLE_FIELDS = ("name", "color", "weekly_target_minutes", "active")


def _row_to_dict(row) -> dict:
    item = dict(row)
    item["active"] = bool(item.get("active"))
    return item


def _fetch_activity(conn, user_id: int, activity_id: int) -> Optional[dict]:
    row = conn.execute(
        f"SELECT {ACTIVITY_COLUMNS} FROM activities WHERE id = ? AND user_id = ?",
        (activity_id, user_id),
    ).fetchone()
    return _row_to_dict(row) if row else None


def _is_duplicate_name(exc) -> bool:
    return violates_unique(exc, "uq_activities_user_name", "activities", ("user_id", "name"))


def list_activities(user_id: int, active_only: bool = False) -> List[dict]:
    """List the caller's activities ordered by name."""
    conn = sa_connection(db.engine)
    try:
        where_sql = "WHERE user_id = ?"
        if active_only:
            where_sql += " AND active = TRUE"
        rows = conn.execute(
            f"""
            SELECT {ACTIVITY_COLUMNS}
            FROM activities
            {where_sql}
            ORDER BY name ASC, id ASC
            """,
            (user_id,),
        ).fetchall()
    finally:
        conn.close()
    return [_row_to_dict(row) for row in rows]


def get_activity(user_id: int, activity_id: int) -> dict:
    conn = sa_connection(db.engine)
    try:
        row = _fetch_activity(conn, user_id, activity_id)
    finally:
        conn.close()
    if not row:
        raise NotFoundError("not_found")
    return row


def activity_exists(user_id: int, activity_id: int) -> bool:
    conn = sa_connection(db.engine)
    try:
        row = conn.execute(
            "SELECT id FROM activities WHERE id = ? AND user_id = ?",
            (activity_id, user_id),
        ).fetchone()
    finally:
        conn.close()
    return row is not None


def insert_activity(user_id: int, payload: Dict[str, Any], created_at: str) -> dict:
    """Insert a new activity; a duplicate name for the same user is a conflict."""
    try:
        with transactional_connection(db.engine) as conn:
            new_id = conn.insert_returning_id(
                """
                INSERT INTO activities (
                    user_id,
                    name,
                    color,
                    weekly_target_minutes,
                    active,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?, ?)
                RETURNING id
                """,
                (
                    user_id,
                    payload["name"],
                    payload.get("color"),
                    payload.get("weekly_target_minutes", 0),
                    bool(payload.get("active", True)),
                    created_at,
                ),
            )
            row = _fetch_activity(conn, user_id, new_id)
    except IntegrityError as exc:
        if not _is_duplicate_name(exc):
            raise
        raise ConflictError("exists")
    return row


def update_activity(user_id: int, activity_id: int, updates: Dict[str, Any]) -> dict:
    assignments: List[str] = []
    params: List[Any] = []
    for key, value in updates.items():
        if key in UPDATABLE_FIELDS:
            assignments.append(f"{key} = ?")
            params.append(value)

    try:
        with transactional_connection(db.engine) as conn:
            row = _fetch_activity(conn, user_id, activity_id)
            if not row:
                raise NotFoundError("not_found")
            if not assignments:
                return row
            params.extend([activity_id, user_id])
            conn.execute(
                f"UPDATE activities SET {', '.join(assignments)} WHERE id = ? AND user_id = ?",
                params,
            )
            row = _fetch_activity(conn, user_id, activity_id)
    except IntegrityError as exc:
        if not _is_duplicate_name(exc):
            raise
        raise ConflictError("exists")
    return row


def delete_activity(user_id: int, activity_id: int) -> Dict[str, int]:
    """Delete an activity after detaching it from the owner's segments and logs."""
    with transactional_connection(db.engine) as conn:
        row = _fetch_activity(conn, user_id, activity_id)
        if not row:
            raise NotFoundError("not_found")

        segments = conn.execute(
            "UPDATE schedule_segments SET activity_id = NULL WHERE activity_id = ? AND user_id = ?",
            (activity_id, user_id),
        ).rowcount
        logs = conn.execute(
            "UPDATE time_logs SET activity_id = NULL WHERE activity_id = ? AND user_id = ?",
            (activity_id, user_id),
        ).rowcount
        conn.execute(
            "DELETE FROM activities WHERE id = ? AND user_id = ?",
            (activity_id, user_id),
        )
    return {"segments_detached": segments, "logs_detached": logs}
