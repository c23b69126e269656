"""Aggregate queries behind the weekly dashboard."""

from typing import Dict, List

from db_utils import connection as sa_connection
from extensions import db


def active_activities(user_id: int) -> List[dict]:
    conn = sa_connection(db.engine)
    try:
        rows = conn.execute(
            """
            SELECT id, name, color, weekly_target_minutes
            FROM activities
            WHERE user_id = ? AND active = TRUE
            ORDER BY name ASC, id ASC
            """,
            (user_id,),
        ).fetchall()
    finally:
        conn.close()
    return [dict(row) for row in rows]


def planned_minutes_by_activity(user_id: int) -> Dict[int, int]:
    """Weekly planned minutes per activity from the open template."""
    conn = sa_connection(db.engine)
    try:
        rows = conn.execute(
            """
            SELECT activity_id, SUM(end_minute - start_minute) AS planned
            FROM schedule_segments
            WHERE user_id = ?
              AND effective_to IS NULL
              AND activity_id IS NOT NULL
            GROUP BY activity_id
            """,
            (user_id,),
        ).fetchall()
    finally:
        conn.close()
    return {int(row["activity_id"]): int(row["planned"] or 0) for row in rows}


def logged_minutes_breakdown(user_id: int, date_from: str, date_to: str) -> List[dict]:
    """Logged minutes for the week grouped by activity, source and partial flag."""
    conn = sa_connection(db.engine)
    try:
        rows = conn.execute(
            """
            SELECT activity_id, source, partial, SUM(minutes) AS minutes
            FROM time_logs
            WHERE user_id = ? AND date >= ? AND date < ?
            GROUP BY activity_id, source, partial
            """,
            (user_id, date_from, date_to),
        ).fetchall()
    finally:
        conn.close()
    return [
        {
            "activity_id": row["activity_id"],
            "source": row["source"],
            "partial": bool(row["partial"]),
            "minutes": int(row["minutes"] or 0),
        }
        for row in rows
    ]
