"""Repository for time logs.

Timestamps are local wall-clock ``YYYY-MM-DDTHH:MM:SS`` strings, so range and
overlap predicates compare them lexically.
"""

from typing import Any, Dict, List, Optional, Tuple

from db_utils import connection as sa_connection
from db_utils import transactional_connection
from extensions import db
from sqlalchemy.exc import IntegrityError

from .errors import ConflictError, NotFoundError, RepositoryError  # noqa: F401
from .errors import violates_unique

LOG_SELECT = """
    SELECT
        l.id,
        l.user_id,
        l.activity_id,
        l.segment_id,
        l.date,
        l.started_at,
        l.ended_at,
        l.minutes,
        l.partial,
        l.source,
        l.comment,
        a.name AS activity_name,
        a.color AS activity_color
    FROM time_logs l
    LEFT JOIN activities a ON a.id = l.activity_id
"""

UPDATABLE_FIELDS = (
    "activity_id",
    "segment_id",
    "date",
    "started_at",
    "ended_at",
    "minutes",
    "partial",
    "source",
    "comment",
)


def _row_to_dict(row) -> dict:
    item = dict(row)
    item["partial"] = bool(item.get("partial"))
    return item


def _fetch_log(conn, user_id: int, log_id: int) -> Optional[dict]:
    row = conn.execute(
        f"{LOG_SELECT} WHERE l.id = ? AND l.user_id = ?",
        (log_id, user_id),
    ).fetchone()
    return _row_to_dict(row) if row else None


def _is_second_open_log(exc) -> bool:
    return violates_unique(exc, "uq_time_logs_one_open_per_user", "time_logs", ("user_id",))


def get_log(user_id: int, log_id: int) -> dict:
    conn = sa_connection(db.engine)
    try:
        row = _fetch_log(conn, user_id, log_id)
    finally:
        conn.close()
    if not row:
        raise NotFoundError("not_found")
    return row


def get_open_log(user_id: int) -> Optional[dict]:
    conn = sa_connection(db.engine)
    try:
        row = conn.execute(
            f"{LOG_SELECT} WHERE l.user_id = ? AND l.ended_at IS NULL",
            (user_id,),
        ).fetchone()
    finally:
        conn.close()
    return _row_to_dict(row) if row else None


def find_overlapping(
    user_id: int,
    started_at: str,
    ended_at: str,
    now: str,
    exclude_id: Optional[int] = None,
) -> List[dict]:
    """Logs whose ``[started_at, ended_at or now)`` intersects the given interval."""
    params: List[Any] = [user_id, ended_at, now, started_at]
    exclude_sql = ""
    if exclude_id is not None:
        exclude_sql = "AND l.id <> ?"
        params.append(exclude_id)
    conn = sa_connection(db.engine)
    try:
        rows = conn.execute(
            f"""
            {LOG_SELECT}
            WHERE l.user_id = ?
              AND l.started_at < ?
              AND COALESCE(l.ended_at, ?) > ?
              {exclude_sql}
            ORDER BY l.started_at ASC
            """,
            params,
        ).fetchall()
    finally:
        conn.close()
    return [_row_to_dict(row) for row in rows]


def insert_log(user_id: int, values: Dict[str, Any]) -> dict:
    """Insert a log; a second open log for the user violates the partial unique index."""
    try:
        with transactional_connection(db.engine) as conn:
            new_id = conn.insert_returning_id(
                """
                INSERT INTO time_logs (
                    user_id,
                    activity_id,
                    segment_id,
                    date,
                    started_at,
                    ended_at,
                    minutes,
                    partial,
                    source,
                    comment
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                RETURNING id
                """,
                (
                    user_id,
                    values.get("activity_id"),
                    values.get("segment_id"),
                    values["date"],
                    values["started_at"],
                    values.get("ended_at"),
                    values.get("minutes", 0),
                    bool(values.get("partial", False)),
                    values.get("source", "ADHOC"),
                    values.get("comment"),
                ),
            )
            row = _fetch_log(conn, user_id, new_id)
    except IntegrityError as exc:
        if not _is_second_open_log(exc):
            raise
        raise ConflictError("open_log_exists")
    return row


def update_log(user_id: int, log_id: int, updates: Dict[str, Any]) -> dict:
    assignments: List[str] = []
    params: List[Any] = []
    for key, value in updates.items():
        if key in UPDATABLE_FIELDS:
            assignments.append(f"{key} = ?")
            params.append(value)

    try:
        with transactional_connection(db.engine) as conn:
            row = _fetch_log(conn, user_id, log_id)
            if not row:
                raise NotFoundError("not_found")
            if not assignments:
                return row
            params.extend([log_id, user_id])
            conn.execute(
                f"UPDATE time_logs SET {', '.join(assignments)} WHERE id = ? AND user_id = ?",
                params,
            )
            row = _fetch_log(conn, user_id, log_id)
    except IntegrityError as exc:
        if not _is_second_open_log(exc):
            raise
        raise ConflictError("open_log_exists")
    return row


def close_open_log(user_id: int, ended_at: str, minutes: int) -> dict:
    """Stamp the end on the user's open log."""
    with transactional_connection(db.engine) as conn:
        row = conn.execute(
            "SELECT id FROM time_logs WHERE user_id = ? AND ended_at IS NULL",
            (user_id,),
        ).fetchone()
        if not row:
            raise NotFoundError("no_open_log")
        log_id = int(row["id"])
        conn.execute(
            "UPDATE time_logs SET ended_at = ?, minutes = ? WHERE id = ? AND user_id = ?",
            (ended_at, minutes, log_id, user_id),
        )
        return _fetch_log(conn, user_id, log_id)


def delete_log(user_id: int, log_id: int) -> dict:
    with transactional_connection(db.engine) as conn:
        row = _fetch_log(conn, user_id, log_id)
        if not row:
            raise NotFoundError("not_found")
        conn.execute(
            "DELETE FROM time_logs WHERE id = ? AND user_id = ?",
            (log_id, user_id),
        )
    return row


def list_logs(
    user_id: int,
    filters: Dict[str, Any],
    *,
    limit: int,
    offset: int,
    order: str = "desc",
) -> Tuple[List[dict], int]:
    """Filtered, paginated logs plus the total count before pagination.

    ``filters`` understands ``date_from``/``date_to`` (half-open calendar
    range), ``activity_id``, ``segment_id``, ``source`` and ``no_segment``.
    """
    where_clauses: List[str] = ["l.user_id = ?"]
    params: List[Any] = [user_id]
    if filters.get("date_from"):
        where_clauses.append("l.date >= ?")
        params.append(filters["date_from"])
    if filters.get("date_to"):
        where_clauses.append("l.date < ?")
        params.append(filters["date_to"])
    if filters.get("activity_id") is not None:
        where_clauses.append("l.activity_id = ?")
        params.append(filters["activity_id"])
    if filters.get("segment_id") is not None:
        where_clauses.append("l.segment_id = ?")
        params.append(filters["segment_id"])
    if filters.get("no_segment"):
        where_clauses.append("l.segment_id IS NULL")
    if filters.get("source"):
        where_clauses.append("l.source = ?")
        params.append(filters["source"])

    where_sql = " AND ".join(where_clauses)
    direction = "ASC" if order == "asc" else "DESC"

    conn = sa_connection(db.engine)
    try:
        total = conn.execute(
            f"SELECT COUNT(*) FROM time_logs l WHERE {where_sql}",
            params,
        ).scalar()
        rows = conn.execute(
            f"""
            {LOG_SELECT}
            WHERE {where_sql}
            ORDER BY l.started_at {direction}, l.id {direction}
            LIMIT ? OFFSET ?
            """,
            [*params, limit, offset],
        ).fetchall()
    finally:
        conn.close()
    return [_row_to_dict(row) for row in rows], int(total or 0)


def logs_for_week(
    user_id: int,
    date_from: str,
    date_to: str,
    range_start: str,
    range_end: str,
    now: str,
) -> List[dict]:
    """Logs dated in ``[date_from, date_to)`` or whose interval touches the week."""
    conn = sa_connection(db.engine)
    try:
        rows = conn.execute(
            f"""
            {LOG_SELECT}
            WHERE l.user_id = ?
              AND (
                (l.date >= ? AND l.date < ?)
                OR (l.started_at < ? AND COALESCE(l.ended_at, ?) > ?)
              )
            ORDER BY l.started_at ASC, l.id ASC
            """,
            (user_id, date_from, date_to, range_end, now, range_start),
        ).fetchall()
    finally:
        conn.close()
    return [_row_to_dict(row) for row in rows]
