"""Clinic weekly schedule and per-date resolution.

Precedence when resolving a date (must not be reordered):
    weekly-off > day-specific hours > default hours > closed

A day-specific entry exists so a clinic can open on a day its default would
not cover, or change hours for one weekday without touching the default.
"""
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from clinicbook import config
from clinicbook.logging_config import get_logger
from clinicbook.timecodec import normalize_time
from clinicbook.weekdays import DAY_KEYS, WeekdayKey, weekday_of

logger = get_logger(__name__)

TIME_FIELDS = ("start", "end", "break_start", "break_end")


def _coerce_weekday(value: Any) -> Optional[WeekdayKey]:
    """Accept "mon", "Monday", "MONDAY" etc."""
    if isinstance(value, WeekdayKey):
        return value
    text = str(value).strip().lower()[:3]
    try:
        return WeekdayKey(text)
    except ValueError:
        return None


class DaySchedule(BaseModel):
    """Working hours and optional break for one day."""
    model_config = ConfigDict(extra="ignore")

    start: Optional[str] = Field(None, description="Opening time, HH:MM")
    end: Optional[str] = Field(None, description="Closing time, HH:MM")
    break_start: Optional[str] = Field(None, description="Break start, HH:MM")
    break_end: Optional[str] = Field(None, description="Break end, HH:MM")

    @field_validator("start", "end", "break_start", "break_end", mode="before")
    @classmethod
    def normalize_times(cls, v):
        """Blank means absent; parseable values are stored as HH:MM."""
        if v is None:
            return None
        text = str(v).strip()
        if not text:
            return None
        # Malformed values are kept as-is and yield no slots downstream
        return normalize_time(text) or text

    @property
    def has_hours(self) -> bool:
        return self.start is not None and self.end is not None

    @property
    def has_break(self) -> bool:
        return self.break_start is not None and self.break_end is not None


class ClinicSchedule(BaseModel):
    """Recurring weekly schedule of a clinic."""
    model_config = ConfigDict(extra="ignore")

    default: Optional[DaySchedule] = Field(None, description="Hours for any day without its own entry")
    weekly_off: List[WeekdayKey] = Field(default_factory=list, description="Days the clinic is always closed")
    sun: Optional[DaySchedule] = None
    mon: Optional[DaySchedule] = None
    tue: Optional[DaySchedule] = None
    wed: Optional[DaySchedule] = None
    thu: Optional[DaySchedule] = None
    fri: Optional[DaySchedule] = None
    sat: Optional[DaySchedule] = None

    @field_validator("weekly_off", mode="before")
    @classmethod
    def normalize_weekly_off(cls, v):
        """Drop unknown day names and duplicates, keep Sunday-first order."""
        if not v:
            return []
        keys = {key for key in (_coerce_weekday(item) for item in v) if key is not None}
        return [key for key in DAY_KEYS if key in keys]

    def for_weekday(self, key: WeekdayKey) -> Optional[DaySchedule]:
        """Day-specific entry for a weekday, if any."""
        return getattr(self, key.value)


class ScheduleValidation(BaseModel):
    """Result of validating a schedule at the configuration boundary."""
    schedule: ClinicSchedule
    slot_minutes: int
    warnings: List[str] = Field(default_factory=list)


def clamp_slot_minutes(raw: Optional[int]) -> int:
    """Slot duration clamped to [MIN_SLOT_MINUTES, MAX_SLOT_MINUTES]; default when absent."""
    if raw is None:
        return config.DEFAULT_SLOT_MINUTES
    return min(config.MAX_SLOT_MINUTES, max(config.MIN_SLOT_MINUTES, int(raw)))


def _clean_day(name: str, raw: Mapping[str, Any], warnings: List[str]) -> Dict[str, Optional[str]]:
    cleaned: Dict[str, Optional[str]] = {}
    for field in TIME_FIELDS:
        value = raw.get(field)
        if value is None or not str(value).strip():
            cleaned[field] = None
            continue
        normalized = normalize_time(str(value))
        if normalized is None:
            warnings.append(f"{name}.{field}: unparseable time {value!r} ignored")
            logger.warning("malformed_time", day=name, field=field, value=str(value))
        cleaned[field] = normalized
    return cleaned


def validate_schedule(
    raw: Optional[Mapping[str, Any]],
    slot_minutes: Optional[int] = None,
) -> ScheduleValidation:
    """
    Validate a schedule once, at save time.

    Malformed times are dropped (and reported) instead of raising, so a bad
    entry closes that window rather than rejecting the whole schedule.

    Args:
        raw: Schedule as submitted (plain dict)
        slot_minutes: Requested slot duration

    Returns:
        ScheduleValidation with the cleaned schedule, clamped duration and warnings
    """
    warnings: List[str] = []
    raw = raw or {}
    data: Dict[str, Any] = {}

    for name in ["default"] + [key.value for key in DAY_KEYS]:
        day = raw.get(name)
        if day is None:
            continue
        if isinstance(day, BaseModel):
            day = day.model_dump()
        if not isinstance(day, Mapping):
            warnings.append(f"{name}: expected an object with start/end, got {day!r}")
            logger.warning("malformed_day", day=name, value=str(day))
            continue
        data[name] = _clean_day(name, day, warnings)

    weekly_off = []
    for item in raw.get("weekly_off") or []:
        key = _coerce_weekday(item)
        if key is None:
            warnings.append(f"weekly_off: unknown day {item!r} ignored")
            logger.warning("unknown_weekday", value=str(item))
        else:
            weekly_off.append(key)
    data["weekly_off"] = weekly_off

    clamped = clamp_slot_minutes(slot_minutes)
    if slot_minutes is not None and clamped != slot_minutes:
        warnings.append(f"slot_minutes {slot_minutes} clamped to {clamped}")

    return ScheduleValidation(
        schedule=ClinicSchedule(**data),
        slot_minutes=clamped,
        warnings=warnings,
    )


def resolve_day(schedule: Optional[ClinicSchedule], date_iso: str) -> Optional[DaySchedule]:
    """
    Effective working window for a calendar date.

    Args:
        schedule: Clinic weekly schedule (None means no schedule configured)
        date_iso: "YYYY-MM-DD"

    Returns:
        The DaySchedule in force, or None when the clinic is closed that day
    """
    if schedule is None:
        return None

    weekday = weekday_of(date_iso)
    if weekday in schedule.weekly_off:
        return None

    day_specific = schedule.for_weekday(weekday)
    if day_specific is not None and day_specific.has_hours:
        return day_specific

    if schedule.default is not None and schedule.default.has_hours:
        return schedule.default

    return None
