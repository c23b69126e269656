"""Repository helpers for health checks."""

import time

from sqlalchemy import text

from extensions import db


def check_database_connection() -> bool:
    """Execute a lightweight database ping."""
    with db.engine.connect() as connection:
        connection.execute(text("SELECT 1"))
    return True


def ping_latency_ms() -> float:
    """Round-trip time of ``SELECT 1`` in milliseconds; raises when the DB is down."""
    started = time.perf_counter()
    check_database_connection()
    return round((time.perf_counter() - started) * 1000, 2)
