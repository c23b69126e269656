"""
Time arithmetic helpers.

Every timestamp handled by the backend is a *local wall-clock* value: the
calendar date and time of day the user sees in their browser. Timestamps are
kept naive (no tzinfo) and stored as ``YYYY-MM-DDTHH:MM:SS`` strings. Offset
aware input (``...Z`` or ``+02:00``) is converted to the local zone before the
offset is dropped, never stored as if the UTC reading were the local reading.

Weekdays are numbered 1=Monday .. 7=Sunday throughout.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta
from typing import Callable, Tuple, Union

WEEKDAY_NAMES_SHORT = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
WEEKDAY_NAMES_LONG = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)

MINUTES_PER_DAY = 1440
DATE_FORMAT = "%Y-%m-%d"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"

_HHMM_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")

DateLike = Union[date, datetime, str]

_now_provider: Callable[[], datetime] = datetime.now


class FormatError(ValueError):
    """Raised when a date, time or HH:MM string cannot be parsed."""


def set_now_provider(func: Callable[[], datetime]) -> None:
    """Override the wall-clock source (used in tests)."""
    global _now_provider
    _now_provider = func


def reset_now_provider() -> None:
    set_now_provider(datetime.now)


def now_local() -> datetime:
    """Current local wall-clock time, truncated to whole seconds."""
    current = _now_provider()
    if current.tzinfo is not None:
        current = current.astimezone().replace(tzinfo=None)
    return current.replace(microsecond=0)


def today_local() -> date:
    return now_local().date()


def iso_weekday(value: DateLike) -> int:
    """Weekday number 1=Mon..7=Sun (Sunday, weekday 0 in JS terms, is 7)."""
    return to_date(value).isoweekday()


def weekday_name_short(weekday: int) -> str:
    if 1 <= weekday <= 7:
        return WEEKDAY_NAMES_SHORT[weekday - 1]
    return "?"


def weekday_name_long(weekday: int) -> str:
    if 1 <= weekday <= 7:
        return WEEKDAY_NAMES_LONG[weekday - 1]
    return "Unknown"


def to_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return datetime.strptime(text[:10], DATE_FORMAT).date()
        except ValueError:
            raise FormatError(f"Invalid date: {value!r}")
    raise FormatError(f"Invalid date: {value!r}")


def format_date(value: DateLike) -> str:
    return to_date(value).strftime(DATE_FORMAT)


def monday_of(value: DateLike) -> date:
    """Local-midnight Monday of the week containing ``value``."""
    day = to_date(value)
    return day - timedelta(days=day.isoweekday() - 1)


def week_range(monday: DateLike) -> Tuple[date, date]:
    """Half-open ``[from, to)`` range of the week starting at ``monday``."""
    start = to_date(monday)
    return start, start + timedelta(days=7)


def next_monday(today: DateLike) -> date:
    """The first Monday strictly after ``today``."""
    return monday_of(today) + timedelta(days=7)


def is_monday(value: DateLike) -> bool:
    return to_date(value).isoweekday() == 1


def minutes_to_hhmm(minutes: int) -> str:
    if isinstance(minutes, bool) or not isinstance(minutes, int):
        raise FormatError(f"Minute of day must be an integer: {minutes!r}")
    if minutes < 0 or minutes > MINUTES_PER_DAY:
        raise FormatError(f"Minute of day out of range: {minutes}")
    hours, mins = divmod(minutes, 60)
    return f"{hours:02d}:{mins:02d}"


def hhmm_to_minutes(text: str) -> int:
    """Parse ``H:MM``/``HH:MM``; ``24:00`` is accepted as end of day."""
    if not isinstance(text, str):
        raise FormatError("Bad HH:MM")
    match = _HHMM_PATTERN.match(text.strip())
    if not match:
        raise FormatError("Bad HH:MM")
    hours, mins = int(match.group(1)), int(match.group(2))
    if hours == 24 and mins == 0:
        return MINUTES_PER_DAY
    if hours > 23 or mins > 59:
        raise FormatError("HH:MM out of range")
    return hours * 60 + mins


def combine_date_and_time(day: DateLike, hhmm: str) -> datetime:
    """Build a timestamp from a calendar date and ``HH:MM`` in local wall-clock.

    The pair is never interpreted as UTC: 2025-09-09 + 10:00 is 10:00 on the
    user's clock whatever the server offset is. ``24:00`` yields the next
    local midnight.
    """
    base = datetime.combine(to_date(day), datetime.min.time())
    return base + timedelta(minutes=hhmm_to_minutes(hhmm))


def to_local_wall_clock(value: Union[str, datetime]) -> datetime:
    """Parse an ISO timestamp into a naive local wall-clock datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise FormatError(f"Invalid timestamp: {value!r}")
    else:
        raise FormatError(f"Invalid timestamp: {value!r}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed.replace(microsecond=0)


def format_timestamp(value: datetime) -> str:
    return value.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: Union[str, datetime, None]) -> datetime | None:
    """Read a stored timestamp back; ``None`` stays ``None``."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.strptime(str(value)[:19], TIMESTAMP_FORMAT)
    except ValueError:
        return to_local_wall_clock(str(value))


def day_start(value: DateLike) -> datetime:
    return datetime.combine(to_date(value), datetime.min.time())


def round_minutes(delta: timedelta) -> int:
    """Round a duration to whole minutes, halves rounding up."""
    return int(math.floor(delta.total_seconds() / 60 + 0.5))


def elapsed_minutes(started_at: datetime, ended_at: datetime) -> int:
    return round_minutes(ended_at - started_at)
