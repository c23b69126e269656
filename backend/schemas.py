import re
from datetime import datetime, timedelta
from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from timeutils import (
    MINUTES_PER_DAY,
    FormatError,
    combine_date_and_time,
    hhmm_to_minutes,
    to_date,
    to_local_wall_clock,
)

COLOR_PATTERN = re.compile(r"^#?([0-9a-fA-F]{6})$")
LOG_SOURCE_VALUES = ("PLANNED", "ADHOC", "MAKEUP")
VERSIONING_MODES = ("now", "next-week", "custom-week")

LogSource = Literal["PLANNED", "ADHOC", "MAKEUP"]
VersioningMode = Literal["now", "next-week", "custom-week"]


def _normalize_color(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    match = COLOR_PATTERN.match(text)
    if not match:
        raise ValueError("color must be a 6-digit hex string")
    return "#" + match.group(1).lower()


def _validate_name(value: str) -> str:
    name = (value or "").strip()
    if len(name) < 2:
        raise ValueError("name must be at least 2 characters")
    if len(name) > 60:
        raise ValueError("name must be at most 60 characters")
    return name


def _validate_target(value) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError("weeklyTargetMinutes must be an integer")
    if number < 0 or number > 100000:
        raise ValueError("weeklyTargetMinutes must be between 0 and 100000")
    return number


def _validate_date_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    try:
        return to_date(value).isoformat()
    except FormatError:
        raise ValueError("Date must be in YYYY-MM-DD format")


def _validate_minute_text(value) -> Optional[int]:
    """Accept a minute-of-day integer or an ``HH:MM`` string."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            return hhmm_to_minutes(value)
        except FormatError as exc:
            raise ValueError(str(exc))
    if isinstance(value, bool):
        raise ValueError("minute of day must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError("minute of day must be an integer")
    if number < 0 or number > MINUTES_PER_DAY:
        raise ValueError("minute of day must be between 0 and 1440")
    return number


class ActivityCreatePayload(BaseModel):
    name: str
    color: Optional[str] = None
    weekly_target_minutes: int = Field(default=0, alias="weeklyTargetMinutes")
    active: bool = True

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        return _validate_name(value)

    @field_validator("color", mode="before")
    @classmethod
    def validate_color(cls, value):
        return _normalize_color(value)

    @field_validator("weekly_target_minutes", mode="before")
    @classmethod
    def validate_target(cls, value):
        if value is None:
            return 0
        return _validate_target(value)


class ActivityUpdatePayload(BaseModel):
    name: Optional[str] = None
    color: Optional[str] = None
    weekly_target_minutes: Optional[int] = Field(default=None, alias="weeklyTargetMinutes")
    active: Optional[bool] = None

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return _validate_name(value)

    @field_validator("color", mode="before")
    @classmethod
    def validate_color(cls, value):
        return _normalize_color(value)

    @field_validator("weekly_target_minutes", mode="before")
    @classmethod
    def validate_target(cls, value):
        if value is None:
            return None
        return _validate_target(value)

    @model_validator(mode="after")
    def ensure_any_field(self):
        if not self.model_fields_set:
            raise ValueError("No updatable fields provided")
        return self

    def to_update_dict(self) -> dict:
        # color may be cleared explicitly with null; the other fields may not
        data = self.model_dump(exclude_unset=True)
        return {
            key: value
            for key, value in data.items()
            if value is not None or key == "color"
        }


class SegmentCreatePayload(BaseModel):
    weekday: int = Field(ge=1, le=7)
    start_minute: Optional[int] = Field(default=None, alias="startMinute")
    end_minute: Optional[int] = Field(default=None, alias="endMinute")
    start: Optional[str] = None
    end: Optional[str] = None
    activity_id: Optional[int] = Field(default=None, alias="activityId")
    notes: Optional[str] = None

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @field_validator("start_minute", "end_minute", mode="before")
    @classmethod
    def validate_minutes(cls, value):
        return _validate_minute_text(value)

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        if len(value) > 500:
            raise ValueError("notes must be at most 500 characters")
        return value or None

    @model_validator(mode="after")
    def resolve_range(self):
        if self.start_minute is None and self.start is not None:
            self.start_minute = _validate_minute_text(self.start)
        if self.end_minute is None and self.end is not None:
            self.end_minute = _validate_minute_text(self.end)
        if self.start_minute is None or self.end_minute is None:
            raise ValueError("startMinute and endMinute are required")
        if self.start_minute >= self.end_minute:
            raise ValueError("startMinute must be before endMinute")
        return self

    def to_segment_dict(self) -> dict:
        return {
            "weekday": self.weekday,
            "start_minute": self.start_minute,
            "end_minute": self.end_minute,
            "activity_id": self.activity_id,
            "notes": self.notes,
        }


class SegmentUpdatePayload(BaseModel):
    weekday: Optional[int] = Field(default=None, ge=1, le=7)
    start_minute: Optional[int] = Field(default=None, alias="startMinute")
    end_minute: Optional[int] = Field(default=None, alias="endMinute")
    start: Optional[str] = None
    end: Optional[str] = None
    activity_id: Optional[int] = Field(default=None, alias="activityId")
    notes: Optional[str] = None
    versioning_mode: VersioningMode = Field(default="now", alias="versioningMode")
    effective_from_date: Optional[str] = Field(default=None, alias="effectiveFromDate")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @field_validator("start_minute", "end_minute", mode="before")
    @classmethod
    def validate_minutes(cls, value):
        return _validate_minute_text(value)

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        if len(value) > 500:
            raise ValueError("notes must be at most 500 characters")
        return value

    @field_validator("effective_from_date")
    @classmethod
    def validate_effective_from(cls, value: Optional[str]) -> Optional[str]:
        return _validate_date_text(value)

    @model_validator(mode="after")
    def resolve_fields(self):
        if self.start_minute is None and self.start is not None:
            self.start_minute = _validate_minute_text(self.start)
            self.model_fields_set.add("start_minute")
        if self.end_minute is None and self.end is not None:
            self.end_minute = _validate_minute_text(self.end)
            self.model_fields_set.add("end_minute")
        if self.versioning_mode == "custom-week" and not self.effective_from_date:
            raise ValueError("effectiveFromDate is required for custom-week versioning")
        return self

    def to_update_dict(self) -> dict:
        """Segment fields explicitly present in the request (null clears activity/notes)."""
        updates = {}
        for key in ("weekday", "start_minute", "end_minute", "activity_id", "notes"):
            if key not in self.model_fields_set:
                continue
            value = getattr(self, key)
            if value is None and key not in ("activity_id", "notes"):
                continue
            updates[key] = value
        if updates.get("notes") == "":
            updates["notes"] = None
        return updates


def _parse_timestamp_field(value, field: str) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return to_local_wall_clock(value)
    except FormatError:
        raise ValueError(f"{field} must be an ISO timestamp")


class TimeLogCreatePayload(BaseModel):
    activity_id: Optional[int] = Field(default=None, alias="activityId")
    segment_id: Optional[int] = Field(default=None, alias="segmentId")
    date: Optional[str] = None
    started_at: Optional[datetime] = Field(default=None, alias="startedAt")
    ended_at: Optional[datetime] = Field(default=None, alias="endedAt")
    start_time: Optional[str] = Field(default=None, alias="startTime")
    end_time: Optional[str] = Field(default=None, alias="endTime")
    minutes: Optional[int] = None
    partial: bool = False
    source: Optional[LogSource] = None
    comment: Optional[str] = None

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @field_validator("date")
    @classmethod
    def validate_date(cls, value: Optional[str]) -> Optional[str]:
        return _validate_date_text(value)

    @field_validator("started_at", mode="before")
    @classmethod
    def parse_started_at(cls, value):
        return _parse_timestamp_field(value, "startedAt")

    @field_validator("ended_at", mode="before")
    @classmethod
    def parse_ended_at(cls, value):
        return _parse_timestamp_field(value, "endedAt")

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_clock(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        try:
            hhmm_to_minutes(value)
        except FormatError as exc:
            raise ValueError(str(exc))
        return value.strip()

    @field_validator("source", mode="before")
    @classmethod
    def normalize_source(cls, value):
        if value is None:
            return None
        return str(value).strip().upper()

    @field_validator("comment")
    @classmethod
    def validate_comment(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        if len(value) > 300:
            raise ValueError("comment must be at most 300 characters")
        return value or None

    @model_validator(mode="after")
    def ensure_interval(self):
        has_timestamps = self.started_at is not None and self.ended_at is not None
        has_clock = (
            self.date is not None
            and self.start_time is not None
            and self.end_time is not None
        )
        if not has_timestamps and not has_clock:
            raise ValueError(
                "Provide startedAt and endedAt, or date with startTime and endTime"
            )
        return self

    def resolve_interval(self) -> Tuple[datetime, datetime]:
        """Local wall-clock ``(start, end)``; a clock end at or before the start rolls over midnight."""
        if self.started_at is not None and self.ended_at is not None:
            return self.started_at, self.ended_at
        start = combine_date_and_time(self.date, self.start_time)
        end = combine_date_and_time(self.date, self.end_time)
        if end <= start:
            end += timedelta(days=1)
        return start, end


class TimeLogUpdatePayload(BaseModel):
    activity_id: Optional[int] = Field(default=None, alias="activityId")
    segment_id: Optional[int] = Field(default=None, alias="segmentId")
    date: Optional[str] = None
    started_at: Optional[datetime] = Field(default=None, alias="startedAt")
    ended_at: Optional[datetime] = Field(default=None, alias="endedAt")
    minutes: Optional[int] = None
    partial: Optional[bool] = None
    source: Optional[LogSource] = None
    comment: Optional[str] = None

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @field_validator("date")
    @classmethod
    def validate_date(cls, value: Optional[str]) -> Optional[str]:
        return _validate_date_text(value)

    @field_validator("started_at", mode="before")
    @classmethod
    def parse_started_at(cls, value):
        return _parse_timestamp_field(value, "startedAt")

    @field_validator("ended_at", mode="before")
    @classmethod
    def parse_ended_at(cls, value):
        return _parse_timestamp_field(value, "endedAt")

    @field_validator("source", mode="before")
    @classmethod
    def normalize_source(cls, value):
        if value is None:
            return None
        return str(value).strip().upper()

    @field_validator("comment")
    @classmethod
    def validate_comment(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        if len(value) > 300:
            raise ValueError("comment must be at most 300 characters")
        return value

    @model_validator(mode="after")
    def validate_fields(self):
        if not self.model_fields_set:
            raise ValueError("No updatable fields provided")
        for key in ("started_at", "ended_at", "partial", "source", "date"):
            if key in self.model_fields_set and getattr(self, key) is None:
                raise ValueError(f"{key} cannot be cleared")
        return self

    def to_update_dict(self) -> dict:
        data = self.model_dump(exclude_unset=True)
        if data.get("comment") == "":
            data["comment"] = None
        return data


class TimeLogStartPayload(BaseModel):
    activity_id: Optional[int] = Field(default=None, alias="activityId")
    comment: Optional[str] = None

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @field_validator("comment")
    @classmethod
    def validate_comment(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        if len(value) > 300:
            raise ValueError("comment must be at most 300 characters")
        return value or None


class TimeLogListQuery(BaseModel):
    week_start: Optional[str] = Field(default=None, alias="weekStart")
    date: Optional[str] = None
    activity_id: Optional[int] = Field(default=None, alias="activityId")
    segment_id: Optional[int] = Field(default=None, alias="segmentId")
    source: Optional[LogSource] = None
    no_segment: bool = Field(default=False, alias="noSegment")
    order: Literal["asc", "desc"] = "desc"

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @field_validator("week_start", "date")
    @classmethod
    def validate_dates(cls, value: Optional[str]) -> Optional[str]:
        return _validate_date_text(value)

    @field_validator("source", mode="before")
    @classmethod
    def normalize_source(cls, value):
        if value in (None, ""):
            return None
        return str(value).strip().upper()

    @field_validator("order", mode="before")
    @classmethod
    def normalize_order(cls, value):
        if value in (None, ""):
            return "desc"
        return str(value).strip().lower()


class SegmentListQuery(BaseModel):
    mode: Literal["current", "historical", "all"] = "current"
    weekday: Optional[int] = Field(default=None, ge=1, le=7)
    week_start: Optional[str] = Field(default=None, alias="weekStart")

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @field_validator("week_start")
    @classmethod
    def validate_week_start(cls, value: Optional[str]) -> Optional[str]:
        return _validate_date_text(value)

    @model_validator(mode="after")
    def require_week_for_history(self):
        if self.mode == "historical" and not self.week_start:
            raise ValueError("weekStart is required for historical mode")
        return self


class WeekQuery(BaseModel):
    week_start: Optional[str] = Field(default=None, alias="weekStart")
    template: Literal["historical", "current"] = "historical"
    include_unassigned: bool = Field(default=False, alias="includeUnassigned")

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @field_validator("week_start")
    @classmethod
    def validate_week_start(cls, value: Optional[str]) -> Optional[str]:
        return _validate_date_text(value)
