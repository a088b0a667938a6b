"""Slot grid generation.

A slot is emitted only if it fits entirely inside the working window and does
not touch the break. Slots that partially overlap the break are dropped,
never truncated.
"""
from typing import List, Optional

from clinicbook.schedule import DaySchedule
from clinicbook.timecodec import format_minutes, parse_time_of_day


def generate_slots(window: Optional[DaySchedule], slot_minutes: int) -> List[str]:
    """
    Candidate slot start times for a working window.

    Args:
        window: Resolved DaySchedule (None means closed)
        slot_minutes: Slot duration in minutes

    Returns:
        Ordered "HH:MM" start times; empty if the window is closed or malformed

    Example:
        09:00-12:00, 30 min, break 10:00-10:30
        -> ["09:00", "09:30", "10:30", "11:00", "11:30"]
    """
    if window is None or slot_minutes <= 0:
        return []

    start = parse_time_of_day(window.start)
    end = parse_time_of_day(window.end)
    if start is None or end is None or end <= start:
        return []

    break_start = parse_time_of_day(window.break_start)
    break_end = parse_time_of_day(window.break_end)
    has_break = break_start is not None and break_end is not None

    slots = []
    t = start
    while t + slot_minutes <= end:
        slot_end = t + slot_minutes
        if not (has_break and t < break_end and slot_end > break_start):
            slots.append(format_minutes(t))
        t += slot_minutes

    return slots
