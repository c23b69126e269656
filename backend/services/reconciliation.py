"""
Reconciliation of logged time against the weekly template.

Everything in this module is a pure function of its inputs: the segment
template for a week, the logs touching that week and the wall-clock "now"
used to bound open logs. Nothing here touches the database or Flask.

Segments are dicts with ``id``, ``weekday``, ``start_minute``, ``end_minute``
and ``activity_id`` (``activity_name``/``activity_color`` optional). Logs are
dicts with ``id``, ``activity_id``, ``segment_id``, ``date``, ``started_at``,
``ended_at`` and ``minutes``; timestamps may be datetimes or stored strings.
"""

from __future__ import annotations

import math
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

from timeutils import MINUTES_PER_DAY, day_start, format_date, parse_timestamp, to_date

_CEIL_EPSILON = 1e-9


class GridRow(NamedTuple):
    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start


class DaySlice(NamedTuple):
    day: date
    weekday: int
    start: int
    end: int


def _rows_from_boundaries(boundaries: Iterable[int]) -> List[GridRow]:
    points = sorted({0, MINUTES_PER_DAY, *boundaries})
    return [GridRow(a, b) for a, b in zip(points, points[1:]) if b > a]


def build_grid(segments: List[dict]) -> List[GridRow]:
    """Consecutive ``[start, end)`` rows from every segment boundary plus 0 and 1440."""
    boundaries: List[int] = []
    for segment in segments:
        boundaries.append(int(segment["start_minute"]))
        boundaries.append(int(segment["end_minute"]))
    return _rows_from_boundaries(boundaries)


def _minute_offset(moment: datetime, base: datetime) -> float:
    return (moment - base).total_seconds() / 60


def log_interval(log: dict, now: datetime) -> Optional[Tuple[datetime, datetime]]:
    """``(start, end)`` of a log with an open end bounded by ``now``."""
    started = parse_timestamp(log.get("started_at"))
    if started is None:
        return None
    ended = parse_timestamp(log.get("ended_at")) or now
    if ended <= started:
        return None
    return started, ended


def slice_interval(
    started: datetime,
    ended: datetime,
    week_start: date,
) -> List[DaySlice]:
    """Cut ``[started, ended)`` into per-day minute ranges inside the week.

    Slice starts are floored and slice ends ceiled, so a slice ending at
    10:00:30 covers minute 600. Empty slices are dropped.
    """
    week_begin = day_start(week_start)
    week_end = week_begin + timedelta(days=7)
    clipped_start = max(started, week_begin)
    clipped_end = min(ended, week_end)
    if clipped_end <= clipped_start:
        return []

    slices: List[DaySlice] = []
    current = clipped_start.date()
    last = clipped_end.date()
    while current <= last:
        base = day_start(current)
        piece_start = max(clipped_start, base)
        piece_end = min(clipped_end, base + timedelta(days=1))
        if piece_end > piece_start:
            start_min = int(math.floor(_minute_offset(piece_start, base)))
            end_min = min(
                MINUTES_PER_DAY,
                int(math.ceil(_minute_offset(piece_end, base) - _CEIL_EPSILON)),
            )
            if end_min > start_min:
                slices.append(
                    DaySlice(current, current.isoweekday(), start_min, end_min)
                )
        current += timedelta(days=1)
    return slices


def grid_from_free_logs(
    logs: List[dict], week_start: date, now: datetime
) -> List[GridRow]:
    """Grid synthesized from free-log slice edges, for users without segments."""
    boundaries: List[int] = []
    for log in logs:
        if log.get("segment_id") is not None:
            continue
        interval = log_interval(log, now)
        if interval is None:
            continue
        for piece in slice_interval(interval[0], interval[1], week_start):
            boundaries.extend((piece.start, piece.end))
    return _rows_from_boundaries(boundaries)


def segments_by_weekday(segments: List[dict]) -> Dict[int, List[dict]]:
    grouped: Dict[int, List[dict]] = defaultdict(list)
    for segment in segments:
        grouped[int(segment["weekday"])].append(segment)
    return grouped


def row_is_covered(row: GridRow, day_segments: List[dict]) -> bool:
    return any(
        int(seg["start_minute"]) <= row.start and int(seg["end_minute"]) >= row.end
        for seg in day_segments
    )


def free_rows(grid: List[GridRow], day_segments: List[dict]) -> List[GridRow]:
    return [row for row in grid if not row_is_covered(row, day_segments)]


def _activity_names(segments: List[dict], logs: List[dict]) -> Dict[Optional[int], dict]:
    names: Dict[Optional[int], dict] = {}
    for item in list(segments) + list(logs):
        activity_id = item.get("activity_id")
        if activity_id is None or activity_id in names:
            continue
        names[activity_id] = {
            "name": item.get("activity_name"),
            "color": item.get("activity_color"),
        }
    return names


def _sorted_breakdown(
    minutes_by_activity: Dict[Optional[int], int],
    names: Dict[Optional[int], dict],
    total: Optional[int] = None,
) -> List[dict]:
    entries = []
    for activity_id, minutes in minutes_by_activity.items():
        info = names.get(activity_id, {})
        entry = {
            "activityId": activity_id,
            "name": info.get("name"),
            "color": info.get("color"),
            "minutes": minutes,
        }
        if total:
            entry["percent"] = round(minutes / total * 100, 1)
        entries.append(entry)
    entries.sort(
        key=lambda item: (
            -item["minutes"],
            item["activityId"] is None,
            item["activityId"] or 0,
        )
    )
    return entries


def _in_week(log: dict, week_start: date) -> bool:
    log_date = log.get("date")
    if not log_date:
        return False
    day = to_date(log_date)
    return week_start <= day < week_start + timedelta(days=7)


def segment_usage(
    segments: List[dict], logs: List[dict], week_start: date
) -> Dict[int, dict]:
    """Logged minutes per segment, broken down by activity (dominant first)."""
    names = _activity_names(segments, logs)
    known = {int(seg["id"]) for seg in segments}
    per_segment: Dict[int, Dict[Optional[int], int]] = defaultdict(lambda: defaultdict(int))
    for log in logs:
        segment_id = log.get("segment_id")
        if segment_id is None or int(segment_id) not in known:
            continue
        if not _in_week(log, week_start):
            continue
        minutes = int(log.get("minutes") or 0)
        if minutes <= 0:
            continue
        per_segment[int(segment_id)][log.get("activity_id")] += minutes

    result: Dict[int, dict] = {}
    for segment in segments:
        segment_id = int(segment["id"])
        planned = int(segment["end_minute"]) - int(segment["start_minute"])
        by_activity = per_segment.get(segment_id, {})
        logged = sum(by_activity.values())
        breakdown = _sorted_breakdown(dict(by_activity), names)
        result[segment_id] = {
            "segmentId": segment_id,
            "weekday": int(segment["weekday"]),
            "startMinute": int(segment["start_minute"]),
            "endMinute": int(segment["end_minute"]),
            "activityId": segment.get("activity_id"),
            "plannedMinutes": planned,
            "loggedMinutes": logged,
            "percent": round(logged / planned * 100, 1) if planned else None,
            "breakdown": breakdown,
            "dominant": breakdown[0] if breakdown else None,
        }
    return result


def accumulate_free_minutes(
    grid: List[GridRow],
    segments: List[dict],
    logs: List[dict],
    week_start: date,
    now: datetime,
) -> Dict[Tuple[int, int, int], Dict[Optional[int], int]]:
    """Minutes of free logs per ``(weekday, row.start, row.end)`` and activity."""
    by_weekday = segments_by_weekday(segments)
    free_by_weekday = {
        weekday: free_rows(grid, by_weekday.get(weekday, [])) for weekday in range(1, 8)
    }
    cells: Dict[Tuple[int, int, int], Dict[Optional[int], int]] = defaultdict(
        lambda: defaultdict(int)
    )
    for log in logs:
        if log.get("segment_id") is not None:
            continue
        interval = log_interval(log, now)
        if interval is None:
            continue
        activity_id = log.get("activity_id")
        for piece in slice_interval(interval[0], interval[1], week_start):
            for row in free_by_weekday[piece.weekday]:
                overlap = min(piece.end, row.end) - max(piece.start, row.start)
                if overlap > 0:
                    cells[(piece.weekday, row.start, row.end)][activity_id] += overlap
    return cells


def finalize_free_cells(
    cells: Dict[Tuple[int, int, int], Dict[Optional[int], int]],
    names: Dict[Optional[int], dict],
) -> List[dict]:
    result: List[dict] = []
    for (weekday, start, end), by_activity in sorted(cells.items()):
        total = sum(by_activity.values())
        if total <= 0:
            continue
        activities = _sorted_breakdown(dict(by_activity), names, total)
        result.append(
            {
                "weekday": weekday,
                "start": start,
                "end": end,
                "size": end - start,
                "totalMinutes": total,
                "activities": activities,
                "dominant": activities[0] if activities else None,
            }
        )
    return result


def free_utilization(
    grid: List[GridRow],
    segments: List[dict],
    free_cells: List[dict],
    usage: Optional[Dict[int, dict]] = None,
    include_unassigned: bool = False,
) -> dict:
    """Share of free capacity that was actually logged, capped per cell."""
    by_weekday = segments_by_weekday(segments)
    available = sum(
        row.size
        for weekday in range(1, 8)
        for row in free_rows(grid, by_weekday.get(weekday, []))
    )
    used = sum(min(cell["totalMinutes"], cell["size"]) for cell in free_cells)

    if include_unassigned:
        for segment in segments:
            if segment.get("activity_id") is not None:
                continue
            if segment.get("effective_to") is not None:
                continue
            size = int(segment["end_minute"]) - int(segment["start_minute"])
            available += size
            logged = 0
            if usage and int(segment["id"]) in usage:
                logged = usage[int(segment["id"])]["loggedMinutes"]
            used += min(logged, size)

    percent = round(used / available * 100, 1) if available else None
    return {
        "freeAvailableMinutes": available,
        "freeUsedMinutes": used,
        "percent": percent,
        "includeUnassigned": include_unassigned,
    }


def build_usage_report(
    segments: List[dict],
    logs: List[dict],
    week_start: date,
    now: datetime,
    include_unassigned: bool = False,
) -> dict:
    """Per-segment usage, free-cell breakdown and weekly free utilization."""
    week_start = to_date(week_start)
    if segments:
        grid = build_grid(segments)
    else:
        grid = grid_from_free_logs(logs, week_start, now)

    names = _activity_names(segments, logs)
    usage = segment_usage(segments, logs, week_start)
    cells = finalize_free_cells(
        accumulate_free_minutes(grid, segments, logs, week_start, now), names
    )
    utilization = free_utilization(
        grid, segments, cells, usage=usage, include_unassigned=include_unassigned
    )
    return {
        "weekStart": format_date(week_start),
        "weekEndExclusive": format_date(week_start + timedelta(days=7)),
        "grid": [{"start": row.start, "end": row.end} for row in grid],
        "segments": [usage[int(seg["id"])] for seg in segments],
        "freeCells": cells,
        "utilization": utilization,
    }
