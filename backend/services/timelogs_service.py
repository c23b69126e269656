"""
Time log service.

Every create/update re-checks the log invariants in a fixed order:

1. referenced activity/segment belong to the caller
2. the end is after the start
3. the minutes are positive
4. a PLANNED log does not exceed its segment's length
5. the interval does not overlap another log of the caller (an open log
   counts until now)

The stopwatch pair ``start``/``terminate`` manages the single open log. A start
inside a logged interval is refused and a terminate stops at the start of the
first log entered after the open one began.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from audit import log_event
from repositories import activities_repo, segments_repo, timelogs_repo
from security import (
    ConflictError,
    NotFoundError,
    ValidationError,
    validate_timelog_create_payload,
    validate_timelog_query,
    validate_timelog_start_payload,
    validate_timelog_update_payload,
)
from sqlalchemy.exc import SQLAlchemyError
from timeutils import (
    elapsed_minutes,
    format_date,
    format_timestamp,
    monday_of,
    now_local,
    parse_timestamp,
    to_date,
    week_range,
)

from .common import database_error, invalidate_week_views, serialize_log
from .idempotency import lookup as idempotency_lookup
from .idempotency import store_response as idempotency_store_response

IDEMPOTENCY_SCOPE = "logs.create"
OVERLAP_MESSAGE = "Log overlaps another logged interval"


def _check_references(user_id: int, activity_id: Optional[int], segment_id: Optional[int]):
    if activity_id is not None and not activities_repo.activity_exists(user_id, activity_id):
        raise NotFoundError("Activity not found", details={"fields": ["activityId"]})
    if segment_id is None:
        return None
    try:
        return segments_repo.get_segment(user_id, segment_id)
    except segments_repo.NotFoundError:
        raise NotFoundError("Segment not found", details={"fields": ["segmentId"]})


def validate_log_interval(
    user_id: int,
    *,
    activity_id: Optional[int],
    segment_id: Optional[int],
    started_at: datetime,
    ended_at: Optional[datetime],
    minutes: Optional[int],
    source: str,
    now: datetime,
    exclude_id: Optional[int] = None,
) -> int:
    """Run the invariant checks in order and return the minutes to store."""
    segment = _check_references(user_id, activity_id, segment_id)

    if ended_at is None:
        if started_at > now:
            raise ValidationError(
                "An open log cannot start in the future",
                details={"fields": ["startedAt"]},
            )
        effective_end = now
        minutes_value = 0
    else:
        if ended_at <= started_at:
            raise ValidationError(
                "endedAt must be after startedAt",
                details={"fields": ["startedAt", "endedAt"]},
            )
        minutes_value = (
            minutes if minutes is not None else elapsed_minutes(started_at, ended_at)
        )
        if minutes_value <= 0:
            raise ValidationError(
                "Logged minutes must be positive", details={"fields": ["minutes"]}
            )
        if segment is not None and source == "PLANNED":
            capacity = int(segment["end_minute"]) - int(segment["start_minute"])
            if minutes_value > capacity:
                raise ValidationError(
                    f"Planned log of {minutes_value} minutes exceeds the {capacity} minute segment",
                    details={"fields": ["minutes"], "segmentMinutes": capacity},
                )
        effective_end = ended_at

    overlaps = timelogs_repo.find_overlapping(
        user_id,
        format_timestamp(started_at),
        format_timestamp(effective_end),
        format_timestamp(now),
        exclude_id=exclude_id,
    )
    if overlaps:
        raise ConflictError(
            OVERLAP_MESSAGE,
            details={"overlappingLogIds": [row["id"] for row in overlaps]},
        )
    return minutes_value


def list_logs(*, user_id: int, args, limit: int, offset: int) -> Dict[str, Any]:
    query = validate_timelog_query(args)
    filters: Dict[str, Any] = {
        "activity_id": query["activity_id"],
        "segment_id": query["segment_id"],
        "source": query["source"],
        "no_segment": query["no_segment"],
    }
    date_from = date_to = None
    if query["week_start"]:
        start, end = week_range(monday_of(query["week_start"]))
        date_from, date_to = start, end
    if query["date"]:
        day = to_date(query["date"])
        day_end = day + timedelta(days=1)
        date_from = max(date_from, day) if date_from else day
        date_to = min(date_to, day_end) if date_to else day_end
    if date_from is not None:
        filters["date_from"] = format_date(date_from)
        filters["date_to"] = format_date(date_to)

    try:
        rows, total = timelogs_repo.list_logs(
            user_id, filters, limit=limit, offset=offset, order=query["order"]
        )
    except SQLAlchemyError as exc:
        raise database_error(exc)
    return {
        "logs": [serialize_log(row) for row in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
        "order": query["order"],
    }


def create_log(
    *,
    user_id: int,
    payload: Dict[str, Any],
    idempotency_key: Optional[str] = None,
    invalidate_cache_cb=None,
) -> Tuple[Dict[str, Any], int]:
    data = validate_timelog_create_payload(payload or {})

    cached = idempotency_lookup(user_id, idempotency_key, IDEMPOTENCY_SCOPE)
    if cached:
        return cached

    started_at, ended_at = data.resolve_interval()
    source = data.source or ("PLANNED" if data.segment_id is not None else "ADHOC")
    now = now_local()
    try:
        minutes = validate_log_interval(
            user_id,
            activity_id=data.activity_id,
            segment_id=data.segment_id,
            started_at=started_at,
            ended_at=ended_at,
            minutes=data.minutes,
            source=source,
            now=now,
        )
        row = timelogs_repo.insert_log(
            user_id,
            {
                "activity_id": data.activity_id,
                "segment_id": data.segment_id,
                "date": data.date or format_date(started_at),
                "started_at": format_timestamp(started_at),
                "ended_at": format_timestamp(ended_at),
                "minutes": minutes,
                "partial": data.partial,
                "source": source,
                "comment": data.comment,
            },
        )
    except ConflictError:
        log_event(
            "timelog.create_failed",
            OVERLAP_MESSAGE,
            user_id=user_id,
            level="warning",
            context={"started_at": format_timestamp(started_at)},
        )
        raise
    except timelogs_repo.ConflictError:
        raise ConflictError("An activity is already active")
    except SQLAlchemyError as exc:
        raise database_error(exc)

    invalidate_week_views(invalidate_cache_cb)
    response_payload = {"log": serialize_log(row)}
    idempotency_store_response(
        user_id, idempotency_key, response_payload, 201, IDEMPOTENCY_SCOPE
    )
    log_event(
        "timelog.create",
        "Time log created",
        user_id=user_id,
        context={"log_id": row["id"], "minutes": row["minutes"], "source": source},
    )
    return response_payload, 201


def update_log(
    log_id: int,
    *,
    user_id: int,
    payload: Dict[str, Any],
    invalidate_cache_cb=None,
) -> Tuple[Dict[str, Any], int]:
    updates = validate_timelog_update_payload(payload or {})
    now = now_local()

    try:
        existing = timelogs_repo.get_log(user_id, log_id)
        merged = {**existing, **updates}
        started_at = parse_timestamp(merged["started_at"])
        ended_at = parse_timestamp(merged["ended_at"])

        explicit_minutes = updates.get("minutes")
        if explicit_minutes is None and not (
            {"started_at", "ended_at"} & set(updates)
        ):
            explicit_minutes = existing["minutes"] if ended_at is not None else None

        minutes = validate_log_interval(
            user_id,
            activity_id=merged.get("activity_id"),
            segment_id=merged.get("segment_id"),
            started_at=started_at,
            ended_at=ended_at,
            minutes=explicit_minutes,
            source=merged["source"],
            now=now,
            exclude_id=log_id,
        )

        values: Dict[str, Any] = dict(updates)
        if "started_at" in values:
            values["started_at"] = format_timestamp(started_at)
            if "date" not in values:
                values["date"] = format_date(started_at)
        if "ended_at" in values:
            values["ended_at"] = format_timestamp(ended_at)
        values["minutes"] = minutes
        row = timelogs_repo.update_log(user_id, log_id, values)
    except timelogs_repo.NotFoundError:
        raise NotFoundError("Time log not found")
    except timelogs_repo.ConflictError:
        raise ConflictError("An activity is already active")
    except SQLAlchemyError as exc:
        raise database_error(exc)

    invalidate_week_views(invalidate_cache_cb)
    log_event(
        "timelog.update",
        "Time log updated",
        user_id=user_id,
        context={"log_id": log_id, "fields": ",".join(sorted(updates))},
    )
    return {"log": serialize_log(row)}, 200


def delete_log(
    log_id: int,
    *,
    user_id: int,
    invalidate_cache_cb=None,
) -> Tuple[Dict[str, Any], int]:
    try:
        timelogs_repo.delete_log(user_id, log_id)
    except timelogs_repo.NotFoundError:
        raise NotFoundError("Time log not found")
    except SQLAlchemyError as exc:
        raise database_error(exc)

    invalidate_week_views(invalidate_cache_cb)
    log_event(
        "timelog.delete",
        "Time log deleted",
        user_id=user_id,
        context={"log_id": log_id},
    )
    return {"deleted": True, "id": log_id}, 200


def start_log(
    *,
    user_id: int,
    payload: Optional[Dict[str, Any]] = None,
    invalidate_cache_cb=None,
) -> Tuple[Dict[str, Any], int]:
    data = validate_timelog_start_payload(payload)
    now = now_local()

    try:
        if timelogs_repo.get_open_log(user_id) is not None:
            raise timelogs_repo.ConflictError("open_log_exists")
        _check_references(user_id, data["activity_id"], None)
        covering = timelogs_repo.find_overlapping(
            user_id,
            format_timestamp(now),
            format_timestamp(now + timedelta(seconds=1)),
            format_timestamp(now),
        )
        if covering:
            raise ConflictError(
                OVERLAP_MESSAGE,
                details={"overlappingLogIds": [row["id"] for row in covering]},
            )
        row = timelogs_repo.insert_log(
            user_id,
            {
                "activity_id": data["activity_id"],
                "segment_id": None,
                "date": format_date(now),
                "started_at": format_timestamp(now),
                "ended_at": None,
                "minutes": 0,
                "partial": False,
                "source": "ADHOC",
                "comment": data["comment"],
            },
        )
    except timelogs_repo.ConflictError:
        log_event(
            "timelog.start_failed",
            "An activity is already active",
            user_id=user_id,
            level="warning",
        )
        raise ConflictError("An activity is already active", code="already_active")
    except SQLAlchemyError as exc:
        raise database_error(exc)

    invalidate_week_views(invalidate_cache_cb)
    log_event(
        "timelog.start",
        "Activity started",
        user_id=user_id,
        context={"log_id": row["id"], "activity_id": row["activity_id"]},
    )
    return {"log": serialize_log(row)}, 201


def terminate_log(*, user_id: int, invalidate_cache_cb=None) -> Tuple[Dict[str, Any], int]:
    now = now_local()
    try:
        open_log = timelogs_repo.get_open_log(user_id)
        if open_log is None:
            raise NotFoundError("No active activity", code="no_active_activity")
        started_at = parse_timestamp(open_log["started_at"])
        if now <= started_at:
            raise ValidationError("Invalid time", details={"fields": ["startedAt"]})
        ended_at = now
        # logs entered ahead of time cut the open log off at their start
        later = timelogs_repo.find_overlapping(
            user_id,
            open_log["started_at"],
            format_timestamp(now),
            format_timestamp(now),
            exclude_id=open_log["id"],
        )
        if later:
            ended_at = min(parse_timestamp(row["started_at"]) for row in later)
            if ended_at <= started_at:
                raise ConflictError(
                    OVERLAP_MESSAGE,
                    details={"overlappingLogIds": [row["id"] for row in later]},
                )
        minutes = max(1, elapsed_minutes(started_at, ended_at))
        row = timelogs_repo.close_open_log(user_id, format_timestamp(ended_at), minutes)
    except timelogs_repo.NotFoundError:
        raise NotFoundError("No active activity", code="no_active_activity")
    except SQLAlchemyError as exc:
        raise database_error(exc)

    invalidate_week_views(invalidate_cache_cb)
    log_event(
        "timelog.terminate",
        "Activity terminated",
        user_id=user_id,
        context={"log_id": row["id"], "minutes": minutes, "ended_at": row["ended_at"]},
    )
    return {"log": serialize_log(row)}, 200


def current_log(*, user_id: int) -> Dict[str, Any]:
    try:
        open_log = timelogs_repo.get_open_log(user_id)
    except SQLAlchemyError as exc:
        raise database_error(exc)
    if open_log is None:
        return {"active": None}

    started_at = parse_timestamp(open_log["started_at"])
    elapsed = max(0, elapsed_minutes(started_at, now_local()))
    item = serialize_log(open_log)
    return {
        "active": {
            "id": item["id"],
            "activityId": item["activityId"],
            "activity": item["activity"],
            "startedAt": item["startedAt"],
            "elapsedMinutes": elapsed,
            "comment": item["comment"],
        }
    }
