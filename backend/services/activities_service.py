"""
Activities service.

Houses activity creation, updates and deletion. Deleting an activity detaches
it from the owner's segments and logs first so no reference dangles. Keep HTTP
and Flask concerns out of this layer.
"""

from typing import Any, Dict, List, Optional, Tuple

from audit import log_event
from repositories import activities_repo
from security import (
    ConflictError,
    NotFoundError,
    validate_activity_create_payload,
    validate_activity_update_payload,
)
from sqlalchemy.exc import SQLAlchemyError
from timeutils import format_timestamp, now_local

from .common import database_error, invalidate_week_views, serialize_activity
from .idempotency import lookup as idempotency_lookup
from .idempotency import store_response as idempotency_store_response

IDEMPOTENCY_SCOPE = "activities.create"


def list_activities(*, user_id: int, active_only: bool = False) -> List[Dict[str, Any]]:
    try:
        rows = activities_repo.list_activities(user_id, active_only)
    except SQLAlchemyError as exc:
        raise database_error(exc)
    return [serialize_activity(row) for row in rows]


def get_activity(activity_id: int, *, user_id: int) -> Dict[str, Any]:
    try:
        row = activities_repo.get_activity(user_id, activity_id)
    except activities_repo.NotFoundError:
        raise NotFoundError("Activity not found")
    except SQLAlchemyError as exc:
        raise database_error(exc)
    return {"activity": serialize_activity(row)}


def add_activity(
    *,
    user_id: int,
    payload: Dict[str, Any],
    idempotency_key: Optional[str] = None,
    invalidate_cache_cb=None,
) -> Tuple[Dict[str, Any], int]:
    validated = validate_activity_create_payload(payload or {})

    cached = idempotency_lookup(user_id, idempotency_key, IDEMPOTENCY_SCOPE)
    if cached:
        return cached

    try:
        row = activities_repo.insert_activity(
            user_id, validated, created_at=format_timestamp(now_local())
        )
    except activities_repo.ConflictError:
        log_event(
            "activity.create_failed",
            "Activity already exists",
            user_id=user_id,
            level="warning",
            context={"name": validated["name"]},
        )
        raise ConflictError(
            "Activity with this name already exists",
            details={"fields": ["name"]},
        )
    except SQLAlchemyError as exc:
        raise database_error(exc)

    invalidate_week_views(invalidate_cache_cb)
    response_payload = {"activity": serialize_activity(row)}
    idempotency_store_response(
        user_id, idempotency_key, response_payload, 201, IDEMPOTENCY_SCOPE
    )
    log_event(
        "activity.create",
        "Activity created",
        user_id=user_id,
        context={"activity_id": row["id"], "name": row["name"]},
    )
    return response_payload, 201


def update_activity(
    activity_id: int,
    *,
    user_id: int,
    payload: Dict[str, Any],
    invalidate_cache_cb=None,
) -> Tuple[Dict[str, Any], int]:
    updates = validate_activity_update_payload(payload or {})

    try:
        row = activities_repo.update_activity(user_id, activity_id, updates)
    except activities_repo.NotFoundError:
        raise NotFoundError("Activity not found")
    except activities_repo.ConflictError:
        raise ConflictError(
            "Activity with this name already exists",
            details={"fields": ["name"]},
        )
    except SQLAlchemyError as exc:
        raise database_error(exc)

    invalidate_week_views(invalidate_cache_cb)
    log_event(
        "activity.update",
        "Activity updated",
        user_id=user_id,
        context={"activity_id": activity_id, "fields": ",".join(sorted(updates))},
    )
    return {"activity": serialize_activity(row)}, 200


def delete_activity(
    activity_id: int,
    *,
    user_id: int,
    invalidate_cache_cb=None,
) -> Tuple[Dict[str, Any], int]:
    try:
        detached = activities_repo.delete_activity(user_id, activity_id)
    except activities_repo.NotFoundError:
        raise NotFoundError("Activity not found")
    except SQLAlchemyError as exc:
        raise database_error(exc)

    invalidate_week_views(invalidate_cache_cb)
    log_event(
        "activity.delete",
        "Activity deleted",
        user_id=user_id,
        context={"activity_id": activity_id, **detached},
    )
    return {
        "deleted": True,
        "id": activity_id,
        "segmentsDetached": detached["segments_detached"],
        "logsDetached": detached["logs_detached"],
    }, 200
