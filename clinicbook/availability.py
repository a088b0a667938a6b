"""Slot classification and presentation.

Pure functions over already-fetched state; nothing here performs I/O.

Precedence per slot:
    blocked > booked (confirmed) > pending (live hold) > available
"""
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from clinicbook import config
from clinicbook.models import BlockedSlotRecord, BookingRecord, BookingStatus
from clinicbook.timecodec import format_time_12h, parse_time_of_day, period_of_day
from clinicbook.weekdays import parse_date


class SlotStatus(str, Enum):
    """Classification of a candidate slot."""
    AVAILABLE = "available"
    BOOKED = "booked"
    PENDING = "pending"
    BLOCKED = "blocked"


class SlotView(BaseModel):
    """A candidate slot with its classification."""
    time: str = Field(..., description="Slot start, HH:MM")
    status: SlotStatus
    period: str = Field(..., description="morning, afternoon or evening")
    label: str = Field(..., description="12-hour display label")
    booking_id: Optional[str] = None
    blocked_reason: Optional[str] = None


def _same_slot(a: str, b: str) -> bool:
    """Compare slots as minutes so "9:00" and "09:00" match."""
    left = parse_time_of_day(a)
    return left is not None and left == parse_time_of_day(b)


def classify_slots(
    candidate_slots: Iterable[str],
    date_iso: str,
    clinic_id: str,
    bookings: Iterable[BookingRecord],
    blocks: Iterable[BlockedSlotRecord],
    now: Optional[datetime] = None,
    hold_minutes: int = config.PENDING_HOLD_MINUTES,
) -> List[SlotView]:
    """
    Classify each candidate slot of one date.

    Expired holds should already have been swept to cancelled by the caller.
    When ``now`` is given, a pending booking past its hold is also ignored here.

    Args:
        candidate_slots: Ordered "HH:MM" starts from generate_slots
        date_iso: Date being classified
        clinic_id: Clinic the slots belong to
        bookings: Bookings fetched for the doctor/clinic/date
        blocks: Blocked slots fetched for the doctor/clinic/date
        now: Current time for hold expiry (optional)
        hold_minutes: Pending hold duration

    Returns:
        One SlotView per candidate, in candidate order
    """
    day = parse_date(date_iso).isoformat()
    day_blocks = [
        b for b in blocks
        if b.blocked_date == day and b.clinic_id == clinic_id
    ]
    day_bookings = [
        b for b in bookings
        if b.date == day and b.clinic_id == clinic_id
        and b.status in (BookingStatus.CONFIRMED, BookingStatus.PENDING)
        and not (now is not None and b.hold_expired(now, hold_minutes))
    ]

    views = []
    for slot in candidate_slots:
        status = SlotStatus.AVAILABLE
        booking_id = None
        reason = None

        block = next((b for b in day_blocks if _same_slot(b.time_slot, slot)), None)
        matches = [b for b in day_bookings if _same_slot(b.time_slot, slot)]
        confirmed = next((b for b in matches if b.status == BookingStatus.CONFIRMED), None)
        pending = next((b for b in matches if b.status == BookingStatus.PENDING), None)

        if block is not None:
            status = SlotStatus.BLOCKED
            reason = block.reason
        elif confirmed is not None:
            status = SlotStatus.BOOKED
            booking_id = confirmed.id
        elif pending is not None:
            status = SlotStatus.PENDING
            booking_id = pending.id

        views.append(SlotView(
            time=slot,
            status=status,
            period=period_of_day(slot),
            label=format_time_12h(slot),
            booking_id=booking_id,
            blocked_reason=reason,
        ))

    return views


def drop_past_slots(views: List[SlotView], date_iso: str, now: datetime) -> List[SlotView]:
    """
    Remove slots that have already started.

    Any date before today yields nothing; for today, a slot starting at or
    before the current minute is dropped.
    """
    return [v for v in views if not is_past(date_iso, v.time, now)]


def is_past(date_iso: str, slot: str, now: datetime) -> bool:
    """True if date+slot has already started relative to now."""
    day = parse_date(date_iso)
    today = now.date()
    if day != today:
        return day < today
    return parse_time_of_day(slot) <= now.hour * 60 + now.minute


def count_by_status(views: Iterable[SlotView]) -> Dict[str, int]:
    """Counts per classification, every status present (zero if unused)."""
    counts = {status.value: 0 for status in SlotStatus}
    for view in views:
        counts[view.status.value] += 1
    counts["total"] = sum(counts.values())
    return counts


def group_by_period(views: Iterable[SlotView]) -> Dict[str, List[SlotView]]:
    """Group slots into morning, afternoon and evening, keeping order."""
    grouped: Dict[str, List[SlotView]] = {"morning": [], "afternoon": [], "evening": []}
    for view in views:
        grouped[view.period].append(view)
    return grouped
