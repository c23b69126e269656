"""Repository helpers for the opaque user rows owned by the identity provider."""

from datetime import datetime, timezone
from typing import Optional

from db_utils import connection as sa_connection
from db_utils import transactional_connection
from extensions import db


def get_user_id(username: str) -> Optional[int]:
    conn = sa_connection(db.engine)
    try:
        row = conn.execute(
            "SELECT id FROM users WHERE username = ?", (username,)
        ).fetchone()
    finally:
        conn.close()
    return int(row["id"]) if row else None


def user_exists(user_id: int) -> bool:
    conn = sa_connection(db.engine)
    try:
        row = conn.execute("SELECT id FROM users WHERE id = ?", (user_id,)).fetchone()
    finally:
        conn.close()
    return row is not None


def ensure_user(username: str) -> int:
    """Return the id for ``username``, inserting the row if needed."""
    existing = get_user_id(username)
    if existing is not None:
        return existing
    with transactional_connection(db.engine) as conn:
        return conn.insert_returning_id(
            "INSERT INTO users (username, created_at) VALUES (?, ?) RETURNING id",
            (username, datetime.now(timezone.utc)),
        )
