"""Domain event trail: every event goes to structlog and to ``audit_events``."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import AuditEvent

audit_logger = structlog.get_logger("timegrid.audit")

LEVELS = ("debug", "info", "warning", "error", "critical")
_MISSING_TABLE_MARKERS = ("does not exist", "no such table", "undefined table")


def _plain(context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Reduce a context mapping to JSON-safe scalars, nesting preserved."""
    plain: Dict[str, Any] = {}
    for key, value in (context or {}).items():
        if isinstance(value, dict):
            plain[key] = _plain(value)
        elif value is None or isinstance(value, (str, int, float, bool)):
            plain[key] = value
        else:
            plain[key] = str(value)
    return plain


def is_audit_table_missing_error(exc: SQLAlchemyError) -> bool:
    message = str(getattr(exc, "orig", None) or exc).lower()
    return "audit_events" in message and any(
        marker in message for marker in _MISSING_TABLE_MARKERS
    )


def log_event(
    event_type: str,
    message: str,
    *,
    user_id: Optional[int] = None,
    level: str = "info",
    context: Optional[Dict[str, Any]] = None,
) -> None:
    """Persist the event and mirror it to structlog.

    A failed insert is rolled back and logged; the caller's operation has
    already succeeded and is not undone.
    """
    level = (level or "").strip().lower()
    if level not in LEVELS:
        level = "info"
    context = _plain(context)

    getattr(audit_logger, level)(
        "domain_event",
        event_type=event_type,
        user_id=user_id,
        message=message,
        context=context,
    )

    session = db.session
    session.add(
        AuditEvent(
            timestamp=datetime.now(timezone.utc),
            user_id=user_id,
            event_type=event_type,
            message=message,
            context=context,
            level=level,
        )
    )
    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        if is_audit_table_missing_error(exc):
            audit_logger.warning(
                "audit_event.table_missing",
                event_type=event_type,
                user_id=user_id,
                details="Audit table missing. Apply latest migrations.",
            )
            return
        audit_logger.error(
            "audit_event.persist_failed",
            event_type=event_type,
            user_id=user_id,
            error=str(exc),
        )


def recent_events(user_id: int, limit: int = 50) -> List[Dict[str, Any]]:
    """Newest audit events for one user (used by the CLI and tests)."""
    rows = db.session.execute(
        select(AuditEvent)
        .where(AuditEvent.user_id == user_id)
        .order_by(AuditEvent.timestamp.desc(), AuditEvent.id.desc())
        .limit(limit)
    ).scalars()
    return [row.to_dict() for row in rows]
