"""
Schedule segments service.

Owns the versioning policy of the weekly template:

* ``now`` edits the open row in place and keeps no history.
* ``next-week`` closes the open row on the coming Sunday and inserts its
  successor effective from the next Monday.
* ``custom-week`` does the same from a caller supplied Monday that is no
  earlier than next Monday.

Overlap is always checked with the prospective shape against the other open
rows. The close+insert itself runs in a single repository transaction.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from audit import log_event
from repositories import activities_repo, segments_repo
from security import (
    ConflictError,
    NotFoundError,
    StateError,
    ValidationError,
    validate_segment_create_payload,
    validate_segment_query,
    validate_segment_update_payload,
)
from sqlalchemy.exc import SQLAlchemyError
from timeutils import (
    FormatError,
    format_date,
    is_monday,
    minutes_to_hhmm,
    monday_of,
    next_monday,
    to_date,
    today_local,
)

from .common import database_error, invalidate_week_views, serialize_segment
from .idempotency import lookup as idempotency_lookup
from .idempotency import store_response as idempotency_store_response

IDEMPOTENCY_SCOPE = "segments.create"
OVERLAP_MESSAGE = "Segment overlaps an existing segment on that weekday"


def _ensure_activity_owned(user_id: int, activity_id: Optional[int]) -> None:
    if activity_id is None:
        return
    if not activities_repo.activity_exists(user_id, activity_id):
        raise NotFoundError("Activity not found", details={"fields": ["activityId"]})


def _is_in_force(row: dict, today: str) -> bool:
    if row["effective_from"] > today:
        return False
    return row["effective_to"] is None or row["effective_to"] >= today


def _activity_label(row: dict) -> str:
    if row.get("activity_id") is None:
        return "none"
    return row.get("activity_name") or "set"


def describe_changes(current: dict, future: dict) -> List[str]:
    """Human readable differences between a version and its successor."""
    changes: List[str] = []
    if current["start_minute"] != future["start_minute"]:
        changes.append(
            f"start {minutes_to_hhmm(current['start_minute'])}→{minutes_to_hhmm(future['start_minute'])}"
        )
    if current["end_minute"] != future["end_minute"]:
        changes.append(
            f"end {minutes_to_hhmm(current['end_minute'])}→{minutes_to_hhmm(future['end_minute'])}"
        )
    if current.get("activity_id") != future.get("activity_id"):
        changes.append(f"activity {_activity_label(current)}→{_activity_label(future)}")
    if (current.get("notes") or "") != (future.get("notes") or ""):
        changes.append("notes changed")
    return changes


def annotate_pending_versions(rows: List[dict], today: str) -> List[Dict[str, Any]]:
    """Serialize rows, marking in-force ones with their earliest overlapping future version."""
    in_force = {row["id"] for row in rows if _is_in_force(row, today)}
    future = sorted(
        (row for row in rows if row["effective_from"] > today),
        key=lambda row: (row["effective_from"], row["start_minute"]),
    )
    result: List[Dict[str, Any]] = []
    for row in rows:
        item = serialize_segment(row)
        if row["id"] in in_force:
            item["status"] = "active"
            pending = None
            for candidate in future:
                if candidate["weekday"] != row["weekday"]:
                    continue
                if (
                    candidate["start_minute"] < row["end_minute"]
                    and candidate["end_minute"] > row["start_minute"]
                ):
                    pending = {
                        "effectiveFrom": candidate["effective_from"],
                        "segmentId": candidate["id"],
                        "changes": describe_changes(row, candidate),
                    }
                    break
            item["pendingVersion"] = pending
        else:
            item["status"] = "future"
        result.append(item)
    return result


def list_segments(*, user_id: int, args) -> Dict[str, Any]:
    query = validate_segment_query(args)
    mode = query["mode"]
    weekday = query["weekday"]
    try:
        if mode == "historical":
            week_start = format_date(monday_of(query["week_start"]))
            rows = segments_repo.list_historical(user_id, week_start, weekday)
            return {
                "mode": mode,
                "weekStart": week_start,
                "segments": [serialize_segment(row) for row in rows],
            }
        if mode == "all":
            today = format_date(today_local())
            rows = segments_repo.list_in_force_and_future(user_id, today, weekday)
            return {"mode": mode, "segments": annotate_pending_versions(rows, today)}
        rows = segments_repo.list_current(user_id, weekday)
    except SQLAlchemyError as exc:
        raise database_error(exc)
    return {"mode": mode, "segments": [serialize_segment(row) for row in rows]}


def create_segment(
    *,
    user_id: int,
    payload: Dict[str, Any],
    idempotency_key: Optional[str] = None,
    invalidate_cache_cb=None,
) -> Tuple[Dict[str, Any], int]:
    shape = validate_segment_create_payload(payload or {})

    cached = idempotency_lookup(user_id, idempotency_key, IDEMPOTENCY_SCOPE)
    if cached:
        return cached

    effective_from = format_date(monday_of(today_local()))
    try:
        _ensure_activity_owned(user_id, shape["activity_id"])
        row = segments_repo.insert_segment(user_id, shape, effective_from)
    except segments_repo.ConflictError:
        log_event(
            "segment.create_failed",
            OVERLAP_MESSAGE,
            user_id=user_id,
            level="warning",
            context={
                "weekday": shape["weekday"],
                "start_minute": shape["start_minute"],
                "end_minute": shape["end_minute"],
            },
        )
        raise ConflictError(OVERLAP_MESSAGE)
    except SQLAlchemyError as exc:
        raise database_error(exc)

    invalidate_week_views(invalidate_cache_cb)
    response_payload = {"segment": serialize_segment(row)}
    idempotency_store_response(
        user_id, idempotency_key, response_payload, 201, IDEMPOTENCY_SCOPE
    )
    log_event(
        "segment.create",
        "Segment created",
        user_id=user_id,
        context={"segment_id": row["id"], "weekday": row["weekday"]},
    )
    return response_payload, 201


def resolve_effective_from(mode: str, effective_from_date: Optional[str], today) -> str:
    """Monday the new version starts on for ``next-week``/``custom-week``."""
    earliest = next_monday(today)
    if mode == "next-week":
        return format_date(earliest)
    try:
        requested = to_date(effective_from_date)
    except FormatError:
        raise ValidationError(
            "effectiveFromDate must be in YYYY-MM-DD format",
            details={"fields": ["effectiveFromDate"]},
        )
    if not is_monday(requested):
        raise ValidationError(
            "effectiveFromDate must be a Monday",
            details={"fields": ["effectiveFromDate"]},
        )
    if requested < earliest:
        raise ValidationError(
            f"effectiveFromDate must be {format_date(earliest)} or later",
            details={"fields": ["effectiveFromDate"]},
        )
    return format_date(requested)


def _translate_state(exc: segments_repo.StateError) -> StateError:
    if str(exc) == "before_effective_from":
        return StateError("New version cannot start before the current version")
    return StateError("Closed segment versions cannot be changed")


def update_segment(
    segment_id: int,
    *,
    user_id: int,
    payload: Dict[str, Any],
    invalidate_cache_cb=None,
) -> Tuple[Dict[str, Any], int]:
    data = validate_segment_update_payload(payload or {})
    updates = data.to_update_dict()
    mode = data.versioning_mode

    try:
        existing = segments_repo.get_segment(user_id, segment_id)
        if existing["effective_to"] is not None:
            raise segments_repo.StateError("closed")
        _ensure_activity_owned(user_id, updates.get("activity_id"))

        start = updates.get("start_minute", existing["start_minute"])
        end = updates.get("end_minute", existing["end_minute"])
        if start >= end:
            raise ValidationError(
                "startMinute must be before endMinute",
                details={"fields": ["startMinute", "endMinute"]},
            )

        if mode == "now":
            row = segments_repo.update_segment_in_place(user_id, segment_id, updates)
            response: Dict[str, Any] = {"segment": serialize_segment(row), "mode": "now"}
            event_type = "segment.update"
        else:
            today = today_local()
            effective_from = resolve_effective_from(mode, data.effective_from_date, today)
            close_on = format_date(to_date(effective_from) - timedelta(days=1))
            closed, created = segments_repo.version_segment(
                user_id, segment_id, updates, effective_from, close_on
            )
            response = {
                "segment": serialize_segment(created),
                "mode": "versioned",
                "newEffectiveFrom": effective_from,
                "closedSegment": serialize_segment(closed) if closed else None,
            }
            event_type = "segment.version"
    except segments_repo.NotFoundError:
        raise NotFoundError("Segment not found")
    except segments_repo.StateError as exc:
        log_event(
            "segment.update_failed",
            "Segment version is not editable",
            user_id=user_id,
            level="warning",
            context={"segment_id": segment_id, "mode": mode},
        )
        raise _translate_state(exc)
    except segments_repo.ConflictError:
        log_event(
            "segment.update_failed",
            OVERLAP_MESSAGE,
            user_id=user_id,
            level="warning",
            context={"segment_id": segment_id, "mode": mode},
        )
        raise ConflictError(OVERLAP_MESSAGE)
    except SQLAlchemyError as exc:
        raise database_error(exc)

    invalidate_week_views(invalidate_cache_cb)
    log_event(
        event_type,
        "Segment updated" if mode == "now" else "Segment versioned",
        user_id=user_id,
        context={
            "segment_id": segment_id,
            "mode": mode,
            "new_segment_id": response["segment"]["id"],
        },
    )
    return response, 200


def delete_segment(
    segment_id: int,
    *,
    user_id: int,
    invalidate_cache_cb=None,
) -> Tuple[Dict[str, Any], int]:
    try:
        row = segments_repo.delete_segment(user_id, segment_id)
    except segments_repo.NotFoundError:
        raise NotFoundError("Segment not found")
    except segments_repo.StateError:
        raise StateError("Closed segment versions cannot be deleted")
    except SQLAlchemyError as exc:
        raise database_error(exc)

    invalidate_week_views(invalidate_cache_cb)
    log_event(
        "segment.delete",
        "Segment deleted",
        user_id=user_id,
        context={"segment_id": segment_id, "weekday": row["weekday"]},
    )
    return {"deleted": True, "id": segment_id}, 200
