"""
Weekly dashboard aggregation.

Planned minutes come from the open template regardless of versioning; done
minutes are the week's logs grouped by activity and split by source and the
partial flag.
"""

from collections import defaultdict
from typing import Any, Dict, Optional

from infra.cache_manager import DASHBOARD_CACHE_TTL, CacheScope, cache_get, cache_set
from repositories import dashboard_repo
from security import validate_week_query
from sqlalchemy.exc import SQLAlchemyError
from timeutils import format_date, week_range

from .common import database_error
from .usage_service import resolve_week_start

SOURCES = ("PLANNED", "ADHOC", "MAKEUP")


def _capped_percent(done: int, base: int) -> Optional[float]:
    if base <= 0:
        return None
    return round(min(100.0, done / base * 100), 1)


def summarize_activity(
    activity: dict, planned: int, by_source: Dict[str, int], partial: int, full: int
) -> Dict[str, Any]:
    target = int(activity.get("weekly_target_minutes") or 0)
    done = sum(by_source.values())
    return {
        "activityId": activity["id"],
        "name": activity["name"],
        "color": activity.get("color"),
        "targetMinutes": target,
        "plannedMinutesWeek": planned,
        "doneMinutes": done,
        "remainingMinutes": max(target - done, 0),
        "overMinutes": max(done - target, 0),
        "percent": _capped_percent(done, target),
        "plannedCoveragePercent": _capped_percent(done, planned),
        "plannedRemainingMinutes": max(planned - done, 0),
        "loggedBySource": {source: by_source.get(source, 0) for source in SOURCES},
        "loggedPartialMinutes": partial,
        "loggedFullMinutes": full,
    }


def weekly_dashboard(*, user_id: int, args) -> Dict[str, Any]:
    query = validate_week_query(args)
    week_start = resolve_week_start(query["week_start"])

    scope = CacheScope(user_id)
    cached = cache_get("dashboard", (week_start,), scope=scope)
    if cached is not None:
        return cached

    start, end = week_range(week_start)
    try:
        activities = dashboard_repo.active_activities(user_id)
        planned = dashboard_repo.planned_minutes_by_activity(user_id)
        logged = dashboard_repo.logged_minutes_breakdown(
            user_id, format_date(start), format_date(end)
        )
    except SQLAlchemyError as exc:
        raise database_error(exc)

    by_source: Dict[Any, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
    partial: Dict[Any, int] = defaultdict(int)
    full: Dict[Any, int] = defaultdict(int)
    for row in logged:
        key = row["activity_id"]
        by_source[key][row["source"]] += row["minutes"]
        if row["partial"]:
            partial[key] += row["minutes"]
        else:
            full[key] += row["minutes"]

    items = [
        summarize_activity(
            activity,
            planned.get(activity["id"], 0),
            by_source.get(activity["id"], {}),
            partial.get(activity["id"], 0),
            full.get(activity["id"], 0),
        )
        for activity in activities
    ]
    payload = {
        "weekStart": format_date(start),
        "weekEndExclusive": format_date(end),
        "activities": items,
        "totals": {
            "targetMinutes": sum(item["targetMinutes"] for item in items),
            "plannedMinutes": sum(item["plannedMinutesWeek"] for item in items),
            "doneMinutes": sum(item["doneMinutes"] for item in items),
        },
        "unassignedMinutes": sum(by_source.get(None, {}).values()),
    }
    cache_set("dashboard", (week_start,), payload, DASHBOARD_CACHE_TTL, scope=scope)
    return payload
