"""Weekday resolution.

Dates are plain calendar dates ("YYYY-MM-DD") in the clinic's local calendar.
They are never converted to instants, so the weekday of a date does not
depend on the timezone of the machine computing it.
"""
from datetime import date, datetime
from enum import Enum
from typing import Union


class WeekdayKey(str, Enum):
    """Weekday keys used in clinic schedules, Sunday first."""
    SUN = "sun"
    MON = "mon"
    TUE = "tue"
    WED = "wed"
    THU = "thu"
    FRI = "fri"
    SAT = "sat"


# Index 0 is Sunday
DAY_KEYS = [
    WeekdayKey.SUN,
    WeekdayKey.MON,
    WeekdayKey.TUE,
    WeekdayKey.WED,
    WeekdayKey.THU,
    WeekdayKey.FRI,
    WeekdayKey.SAT,
]


def parse_date(value: Union[str, date]) -> date:
    """
    Parse a "YYYY-MM-DD" calendar date.

    Raises:
        ValueError: If the string is not a valid ISO calendar date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(value.strip(), "%Y-%m-%d").date()


def weekday_of(value: Union[str, date]) -> WeekdayKey:
    """
    Weekday key of a calendar date.

    Args:
        value: "YYYY-MM-DD" string or date

    Returns:
        WeekdayKey (sun..sat)
    """
    # date.weekday() is Monday=0; shift so Sunday=0
    return DAY_KEYS[(parse_date(value).weekday() + 1) % 7]
