"""Booking domain records.

Lifecycle of a booking:
    pending -> confirmed (doctor approval) | cancelled (rejection, patient
    cancellation, or hold expiry); confirmed -> cancelled | completed.

Only pending and confirmed bookings occupy a slot.
"""
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from clinicbook import config
from clinicbook.errors import InvalidTransition
from clinicbook.timecodec import normalize_time
from clinicbook.weekdays import parse_date


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


class BookingStatus(str, Enum):
    """Booking states."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class BookingType(str, Enum):
    """How the booking was made."""
    ONLINE = "online"
    WALK_IN = "walk-in"


# Pattern: Current state -> [allowed next states]
VALID_TRANSITIONS: Dict[BookingStatus, List[BookingStatus]] = {
    BookingStatus.PENDING: [BookingStatus.CONFIRMED, BookingStatus.CANCELLED],
    BookingStatus.CONFIRMED: [BookingStatus.CANCELLED, BookingStatus.COMPLETED],
    BookingStatus.CANCELLED: [],
    BookingStatus.COMPLETED: [],
}

ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


def check_transition(current: BookingStatus, target: BookingStatus) -> None:
    """
    Raise InvalidTransition unless current -> target is allowed.
    """
    if target not in VALID_TRANSITIONS[BookingStatus(current)]:
        raise InvalidTransition(BookingStatus(current).value, BookingStatus(target).value)


def _validate_date(v):
    return parse_date(v).isoformat()


def _validate_slot(v):
    normalized = normalize_time(v)
    if normalized is None:
        raise ValueError(f"Invalid time slot {v!r}. Use HH:MM")
    return normalized


class BookingRecord(BaseModel):
    """An appointment occupying (or having occupied) one slot."""
    id: Optional[str] = Field(None, description="Store-assigned id")
    date: str = Field(..., description="Appointment date, YYYY-MM-DD")
    time_slot: str = Field(..., description="Slot start, HH:MM")
    clinic_id: str
    doctor_id: str
    status: BookingStatus = BookingStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)
    patient_id: Optional[str] = None
    booking_type: BookingType = BookingType.ONLINE
    walk_in_name: Optional[str] = None
    walk_in_phone: Optional[str] = None

    @field_validator("date", mode="before")
    @classmethod
    def check_date(cls, v):
        return _validate_date(v)

    @field_validator("time_slot", mode="before")
    @classmethod
    def check_slot(cls, v):
        return _validate_slot(v)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def hold_expired(self, now: datetime, hold_minutes: int = config.PENDING_HOLD_MINUTES) -> bool:
        """True for a pending booking whose soft hold has run out."""
        if self.status != BookingStatus.PENDING:
            return False
        created = self.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return now - created >= timedelta(minutes=hold_minutes)


class BlockedSlotRecord(BaseModel):
    """A doctor-initiated exclusion of one date+time."""
    id: Optional[str] = None
    clinic_id: str
    doctor_id: str
    blocked_date: str = Field(..., description="YYYY-MM-DD")
    time_slot: str = Field(..., description="HH:MM")
    reason: Optional[str] = Field(None, max_length=500)

    @field_validator("blocked_date", mode="before")
    @classmethod
    def check_date(cls, v):
        return _validate_date(v)

    @field_validator("time_slot", mode="before")
    @classmethod
    def check_slot(cls, v):
        return _validate_slot(v)


class ClinicHoliday(BaseModel):
    """A calendar date on which the clinic is closed."""
    clinic_id: str
    holiday_date: str = Field(..., description="YYYY-MM-DD")
    label: Optional[str] = Field(None, max_length=200)

    @field_validator("holiday_date", mode="before")
    @classmethod
    def check_date(cls, v):
        return _validate_date(v)
