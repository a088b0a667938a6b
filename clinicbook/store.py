"""Persistence interface consumed by the booking engine.

Implementations must raise StoreUnavailable for read/write failures (never
return an empty result in their place) and SlotConflictError when a write
would put two active bookings on one slot or two on one patient-day.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Tuple

from clinicbook.models import BlockedSlotRecord, BookingRecord, BookingStatus, ClinicHoliday
from clinicbook.schedule import ClinicSchedule

DateRange = Tuple[str, str]


class BookingStore(ABC):
    """Backing store for schedules, bookings, blocks and holidays."""

    @abstractmethod
    def fetch_clinic_schedule(self, clinic_id: str) -> Tuple[Optional[ClinicSchedule], int]:
        """Schedule and slot duration of a clinic; (None, default) if unknown."""

    @abstractmethod
    def save_clinic_schedule(self, clinic_id: str, schedule: ClinicSchedule, slot_minutes: int) -> None:
        """Create or replace a clinic's schedule."""

    @abstractmethod
    def fetch_bookings(self, doctor_id: str, clinic_id: str, date_range: DateRange) -> List[BookingRecord]:
        """Bookings of a doctor at a clinic with date in [start, end]."""

    @abstractmethod
    def fetch_patient_bookings(self, patient_id: str, date_iso: str) -> List[BookingRecord]:
        """All bookings of a patient on one date, any clinic or doctor."""

    @abstractmethod
    def fetch_blocked_slots(self, doctor_id: str, clinic_id: str, date_range: DateRange) -> List[BlockedSlotRecord]:
        """Blocked slots of a doctor at a clinic with date in [start, end]."""

    @abstractmethod
    def fetch_holidays(self, clinic_id: str, date_range: DateRange) -> List[ClinicHoliday]:
        """Clinic holidays with date in [start, end]."""

    @abstractmethod
    def get_booking(self, booking_id: str) -> Optional[BookingRecord]:
        """Booking by id, or None."""

    @abstractmethod
    def insert_booking(self, record: BookingRecord) -> BookingRecord:
        """Insert a booking; raises SlotConflictError on a uniqueness violation."""

    @abstractmethod
    def update_booking_status(
        self,
        booking_id: str,
        status: BookingStatus,
        expected: Optional[BookingStatus] = None,
    ) -> BookingRecord:
        """
        Set a booking's status.

        With ``expected`` the write only happens if the stored status still
        matches; otherwise InvalidTransition is raised. Raises SlotConflictError
        if reactivating the booking collides with another active one.
        """

    @abstractmethod
    def move_booking(self, booking_id: str, date_iso: str, time_slot: str) -> BookingRecord:
        """Change date/time in place (created_at kept); raises SlotConflictError."""

    @abstractmethod
    def expire_pending_older_than(self, cutoff: datetime, doctor_id: Optional[str] = None) -> int:
        """Cancel pending bookings created at or before cutoff; returns count."""

    @abstractmethod
    def complete_confirmed_before(self, date_iso: str) -> int:
        """Mark confirmed bookings dated before date_iso as completed; returns count."""

    @abstractmethod
    def insert_blocked_slot(self, record: BlockedSlotRecord) -> BlockedSlotRecord:
        """Insert a block; raises SlotConflictError if the slot is already blocked."""

    @abstractmethod
    def delete_blocked_slot(self, doctor_id: str, clinic_id: str, date_iso: str, time_slot: str) -> bool:
        """Remove a block; True if one was deleted."""

    @abstractmethod
    def insert_holiday(self, holiday: ClinicHoliday) -> ClinicHoliday:
        """Add a clinic holiday (idempotent)."""

    @abstractmethod
    def delete_holiday(self, clinic_id: str, date_iso: str) -> bool:
        """Remove a clinic holiday; True if one was deleted."""
