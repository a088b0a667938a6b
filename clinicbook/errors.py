"""Error taxonomy for the booking engine.

Parsing and schedule resolution degrade to "no slots" instead of raising.
Booking rejections are returned as values (BookingDecision); these exceptions
cover store failures and programming errors that must reach the caller.
"""
from enum import Enum


class RejectionReason(str, Enum):
    """Why a booking attempt was not accepted."""
    ALREADY_BOOKED = "already_booked"
    SLOT_UNAVAILABLE = "slot_unavailable"
    BOOKING_NOT_FOUND = "booking_not_found"
    INVALID_TRANSITION = "invalid_transition"
    INVALID_REQUEST = "invalid_request"


class BookingError(Exception):
    """Base class for booking engine errors."""
    pass


class MalformedTime(BookingError):
    """Raised when a time string cannot be parsed where one is required."""
    pass


class SlotUnavailable(BookingError):
    """Raised when a slot is blocked, booked, held or outside the schedule."""
    pass


class AlreadyBooked(BookingError):
    """Raised when the patient already has an active booking that day."""
    pass


class StoreUnavailable(BookingError):
    """Raised when the backing store cannot be read or written."""
    pass


class SlotConflictError(BookingError):
    """Raised by the store when a write violates a uniqueness guarantee."""
    pass


class BookingNotFound(BookingError):
    """Raised when a booking id does not exist."""
    pass


class InvalidTransition(BookingError):
    """Raised when a booking status change is not allowed."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move booking from {current} to {target}")
        self.current = current
        self.target = target
