"""Time-of-day codec.

Slots are compared as integer minutes since midnight and stored as
zero-padded "HH:MM" strings.
"""
from typing import Optional

from clinicbook import config


def parse_time_of_day(value: Optional[str]) -> Optional[int]:
    """
    Convert "HH:MM" (or a bare hour such as "9") to minutes since midnight.

    Args:
        value: Time string as entered or stored

    Returns:
        Minutes since midnight, or None when the value is missing or malformed.
        Midnight is 0, so callers must test ``is None`` rather than truthiness.
    """
    if value is None:
        return None

    text = str(value).strip()
    if not text:
        return None

    normalized = text if ":" in text else f"{text}:00"
    parts = normalized.split(":")
    if len(parts) != 2:
        return None

    hour_text, minute_text = parts
    # ASCII only: isdigit() also accepts superscripts that int() rejects
    if not all(part.isascii() and part.isdigit() for part in parts):
        return None

    hour, minute = int(hour_text), int(minute_text)
    # "24:00" is accepted as an end-of-day closing time
    if minute > 59 or hour > 24 or (hour == 24 and minute):
        return None

    return hour * 60 + minute


def format_minutes(minutes: int) -> str:
    """Format minutes since midnight as zero-padded 24h "HH:MM"."""
    hours, mins = divmod(minutes, 60)
    return f"{hours:02d}:{mins:02d}"


def normalize_time(value: Optional[str]) -> Optional[str]:
    """Canonical "HH:MM" form of a time string, or None if it does not parse."""
    minutes = parse_time_of_day(value)
    if minutes is None:
        return None
    return format_minutes(minutes)


def format_time_12h(time_24h: str) -> str:
    """Convert 24h time to 12h format."""
    hour, minute = divmod(parse_time_of_day(time_24h) or 0, 60)
    period = "AM" if hour < 12 else "PM"
    hour_12 = hour % 12 or 12
    return f"{hour_12}:{minute:02d} {period}"


def period_of_day(time_24h: str) -> str:
    """Bucket a slot start into morning, afternoon or evening."""
    hour = (parse_time_of_day(time_24h) or 0) // 60
    if hour < config.MORNING_CUTOFF_HOUR:
        return "morning"
    if hour < config.EVENING_CUTOFF_HOUR:
        return "afternoon"
    return "evening"
