"""Segment usage: the reconciliation report for one week, cached per user."""

from typing import Any, Dict

from infra.cache_manager import USAGE_CACHE_TTL, CacheScope, cache_get, cache_set
from repositories import segments_repo, timelogs_repo
from security import validate_week_query
from sqlalchemy.exc import SQLAlchemyError
from timeutils import day_start, format_date, format_timestamp, monday_of, now_local, week_range

from . import reconciliation
from .common import database_error


def resolve_week_start(week_start) -> str:
    """Monday of the requested week, defaulting to the current one."""
    return format_date(monday_of(week_start or now_local()))


def segment_usage(*, user_id: int, args) -> Dict[str, Any]:
    query = validate_week_query(args)
    week_start = resolve_week_start(query["week_start"])
    template = query["template"]
    include_unassigned = query["include_unassigned"]

    scope = CacheScope(user_id)
    key_parts = (week_start, template, include_unassigned)
    cached = cache_get("usage", key_parts, scope=scope)
    if cached is not None:
        return cached

    start, end = week_range(week_start)
    now = now_local()
    try:
        if template == "current":
            segments = segments_repo.list_current(user_id)
        else:
            segments = segments_repo.list_historical(user_id, week_start)
        logs = timelogs_repo.logs_for_week(
            user_id,
            format_date(start),
            format_date(end),
            format_timestamp(day_start(start)),
            format_timestamp(day_start(end)),
            format_timestamp(now),
        )
    except SQLAlchemyError as exc:
        raise database_error(exc)

    report = reconciliation.build_usage_report(
        segments, logs, start, now, include_unassigned=include_unassigned
    )
    report["template"] = template
    report["from"] = format_date(start)
    report["to"] = format_date(end)
    report["usage"] = {
        str(item["segmentId"]): item["loggedMinutes"] for item in report["segments"]
    }
    cache_set("usage", key_parts, report, USAGE_CACHE_TTL, scope=scope)
    return report
