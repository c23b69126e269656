"""Repository for weekly schedule segments and their versions.

A row with ``effective_to IS NULL`` is the open version of a slot. Closing a
row and inserting its successor always happens inside one transaction.
"""

from typing import Any, Dict, List, Optional, Tuple

from db_utils import connection as sa_connection
from db_utils import transactional_connection
from extensions import db
from sqlalchemy.exc import IntegrityError

from .errors import ConflictError, NotFoundError, RepositoryError, StateError  # noqa: F401
from .errors import violates_unique

SEGMENT_SELECT = """
    SELECT
        s.id,
        s.user_id,
        s.weekday,
        s.start_minute,
        s.end_minute,
        s.activity_id,
        s.notes,
        s.effective_from,
        s.effective_to,
        a.name AS activity_name,
        a.color AS activity_color
    FROM schedule_segments s
    LEFT JOIN activities a ON a.id = s.activity_id
"""

SHAPE_FIELDS = ("weekday", "start_minute", "end_minute", "activity_id", "notes")


def _fetch_segment(conn, user_id: int, segment_id: int) -> Optional[dict]:
    row = conn.execute(
        f"{SEGMENT_SELECT} WHERE s.id = ? AND s.user_id = ?",
        (segment_id, user_id),
    ).fetchone()
    return dict(row) if row else None


def _select(where_sql: str, params: List[Any]) -> List[dict]:
    conn = sa_connection(db.engine)
    try:
        rows = conn.execute(
            f"{SEGMENT_SELECT} WHERE {where_sql} ORDER BY s.weekday ASC, s.start_minute ASC, s.effective_from ASC",
            params,
        ).fetchall()
    finally:
        conn.close()
    return [dict(row) for row in rows]


def _find_open_overlaps(
    conn,
    user_id: int,
    weekday: int,
    start_minute: int,
    end_minute: int,
    exclude_id: Optional[int] = None,
) -> List[dict]:
    params: List[Any] = [user_id, weekday, end_minute, start_minute]
    exclude_sql = ""
    if exclude_id is not None:
        exclude_sql = "AND id <> ?"
        params.append(exclude_id)
    rows = conn.execute(
        f"""
        SELECT id, weekday, start_minute, end_minute
        FROM schedule_segments
        WHERE user_id = ?
          AND weekday = ?
          AND effective_to IS NULL
          AND start_minute < ?
          AND end_minute > ?
          {exclude_sql}
        """,
        params,
    ).fetchall()
    return [dict(row) for row in rows]


def _ensure_no_overlap(conn, user_id: int, shape: Dict[str, Any], exclude_id=None) -> None:
    overlaps = _find_open_overlaps(
        conn,
        user_id,
        shape["weekday"],
        shape["start_minute"],
        shape["end_minute"],
        exclude_id=exclude_id,
    )
    if overlaps:
        raise ConflictError("overlap")


def _is_open_start_clash(exc) -> bool:
    return violates_unique(
        exc, "uq_segments_open_start", "schedule_segments", ("user_id", "weekday", "start_minute")
    )


def _insert(conn, user_id: int, shape: Dict[str, Any], effective_from: str) -> int:
    return conn.insert_returning_id(
        """
        INSERT INTO schedule_segments (
            user_id,
            weekday,
            start_minute,
            end_minute,
            activity_id,
            notes,
            effective_from,
            effective_to
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, NULL)
        RETURNING id
        """,
        (
            user_id,
            shape["weekday"],
            shape["start_minute"],
            shape["end_minute"],
            shape.get("activity_id"),
            shape.get("notes"),
            effective_from,
        ),
    )


def _merge_shape(row: dict, updates: Dict[str, Any]) -> Dict[str, Any]:
    shape = {key: row[key] for key in SHAPE_FIELDS}
    for key in SHAPE_FIELDS:
        if key in updates:
            shape[key] = updates[key]
    return shape


def list_current(user_id: int, weekday: Optional[int] = None) -> List[dict]:
    """All open segments, ordered by weekday then start."""
    where_sql = "s.user_id = ? AND s.effective_to IS NULL"
    params: List[Any] = [user_id]
    if weekday is not None:
        where_sql += " AND s.weekday = ?"
        params.append(weekday)
    return _select(where_sql, params)


def list_historical(user_id: int, monday: str, weekday: Optional[int] = None) -> List[dict]:
    """Segment versions in force on ``monday`` (point-in-time snapshot)."""
    where_sql = (
        "s.user_id = ? AND s.effective_from <= ? "
        "AND (s.effective_to IS NULL OR s.effective_to >= ?)"
    )
    params: List[Any] = [user_id, monday, monday]
    if weekday is not None:
        where_sql += " AND s.weekday = ?"
        params.append(weekday)
    return _select(where_sql, params)


def list_in_force_and_future(
    user_id: int, today: str, weekday: Optional[int] = None
) -> List[dict]:
    """Versions in force today plus every version starting after today."""
    where_sql = (
        "s.user_id = ? AND ("
        "(s.effective_from <= ? AND (s.effective_to IS NULL OR s.effective_to >= ?)) "
        "OR s.effective_from > ?)"
    )
    params: List[Any] = [user_id, today, today, today]
    if weekday is not None:
        where_sql += " AND s.weekday = ?"
        params.append(weekday)
    return _select(where_sql, params)


def get_segment(user_id: int, segment_id: int) -> dict:
    conn = sa_connection(db.engine)
    try:
        row = _fetch_segment(conn, user_id, segment_id)
    finally:
        conn.close()
    if not row:
        raise NotFoundError("not_found")
    return row


def insert_segment(user_id: int, shape: Dict[str, Any], effective_from: str) -> dict:
    """Create an open segment unless it overlaps another open one on that weekday."""
    try:
        with transactional_connection(db.engine) as conn:
            _ensure_no_overlap(conn, user_id, shape)
            new_id = _insert(conn, user_id, shape, effective_from)
            row = _fetch_segment(conn, user_id, new_id)
    except IntegrityError as exc:
        if not _is_open_start_clash(exc):
            raise
        raise ConflictError("overlap")
    return row


def update_segment_in_place(user_id: int, segment_id: int, updates: Dict[str, Any]) -> dict:
    try:
        with transactional_connection(db.engine) as conn:
            row = _fetch_segment(conn, user_id, segment_id)
            if not row:
                raise NotFoundError("not_found")
            if row["effective_to"] is not None:
                raise StateError("closed")
            shape = _merge_shape(row, updates)
            _ensure_no_overlap(conn, user_id, shape, exclude_id=segment_id)
            conn.execute(
                """
                UPDATE schedule_segments
                SET weekday = ?, start_minute = ?, end_minute = ?, activity_id = ?, notes = ?
                WHERE id = ? AND user_id = ?
                """,
                (
                    shape["weekday"],
                    shape["start_minute"],
                    shape["end_minute"],
                    shape["activity_id"],
                    shape["notes"],
                    segment_id,
                    user_id,
                ),
            )
            row = _fetch_segment(conn, user_id, segment_id)
    except IntegrityError as exc:
        if not _is_open_start_clash(exc):
            raise
        raise ConflictError("overlap")
    return row


def version_segment(
    user_id: int,
    segment_id: int,
    updates: Dict[str, Any],
    effective_from: str,
    close_on: str,
) -> Tuple[Optional[dict], dict]:
    """Close the open row on ``close_on`` and insert its successor from ``effective_from``.

    A row that only starts on ``effective_from`` (a pending version) is edited
    in place instead; the closed row is then ``None``.
    """
    try:
        with transactional_connection(db.engine) as conn:
            row = _fetch_segment(conn, user_id, segment_id)
            if not row:
                raise NotFoundError("not_found")
            if row["effective_to"] is not None:
                raise StateError("closed")
            if effective_from < row["effective_from"]:
                raise StateError("before_effective_from")
            shape = _merge_shape(row, updates)
            _ensure_no_overlap(conn, user_id, shape, exclude_id=segment_id)

            if effective_from == row["effective_from"]:
                conn.execute(
                    """
                    UPDATE schedule_segments
                    SET weekday = ?, start_minute = ?, end_minute = ?, activity_id = ?, notes = ?
                    WHERE id = ? AND user_id = ?
                    """,
                    (
                        shape["weekday"],
                        shape["start_minute"],
                        shape["end_minute"],
                        shape["activity_id"],
                        shape["notes"],
                        segment_id,
                        user_id,
                    ),
                )
                return None, _fetch_segment(conn, user_id, segment_id)

            conn.execute(
                "UPDATE schedule_segments SET effective_to = ? WHERE id = ? AND user_id = ?",
                (close_on, segment_id, user_id),
            )
            new_id = _insert(conn, user_id, shape, effective_from)
            closed = _fetch_segment(conn, user_id, segment_id)
            created = _fetch_segment(conn, user_id, new_id)
    except IntegrityError as exc:
        if not _is_open_start_clash(exc):
            raise
        raise ConflictError("overlap")
    return closed, created


def delete_segment(user_id: int, segment_id: int) -> dict:
    """Delete an open segment; logs pointing at it keep their time but lose the link."""
    with transactional_connection(db.engine) as conn:
        row = _fetch_segment(conn, user_id, segment_id)
        if not row:
            raise NotFoundError("not_found")
        if row["effective_to"] is not None:
            raise StateError("closed")
        conn.execute(
            "UPDATE time_logs SET segment_id = NULL WHERE segment_id = ? AND user_id = ?",
            (segment_id, user_id),
        )
        conn.execute(
            "DELETE FROM schedule_segments WHERE id = ? AND user_id = ?",
            (segment_id, user_id),
        )
    return row
