"""Booking service: slot listing and booking arbitration.

Every availability-affecting operation starts with sweep_expired(), so a
pending hold older than PENDING_HOLD_MINUTES is cancelled before anything
reads the slot. The in-process availability check gives the caller a clear
rejection; the store's uniqueness guarantees are what actually prevent two
active bookings on one slot.
"""
from datetime import timedelta
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from clinicbook import config
from clinicbook.availability import (
    SlotStatus,
    SlotView,
    classify_slots,
    count_by_status,
    drop_past_slots,
    is_past,
)
from clinicbook.circuit_breaker import CircuitBreaker
from clinicbook.clock import Clock
from clinicbook.errors import (
    BookingNotFound,
    InvalidTransition,
    RejectionReason,
    SlotConflictError,
)
from clinicbook.logging_config import get_logger
from clinicbook.models import (
    BlockedSlotRecord,
    BookingRecord,
    BookingStatus,
    BookingType,
    ClinicHoliday,
    check_transition,
)
from clinicbook.schedule import ScheduleValidation, resolve_day, validate_schedule
from clinicbook.slots import generate_slots
from clinicbook.store import BookingStore
from clinicbook.timecodec import normalize_time
from clinicbook.weekdays import parse_date, weekday_of

logger = get_logger(__name__)


class DecisionStatus(str, Enum):
    """Terminal states of a booking attempt."""
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class BookingDecision(BaseModel):
    """Outcome of attempt_booking / reschedule_booking / status changes."""
    status: DecisionStatus
    reason: Optional[RejectionReason] = None
    message: str = ""
    booking: Optional[BookingRecord] = None

    @property
    def accepted(self) -> bool:
        return self.status == DecisionStatus.ACCEPTED

    @classmethod
    def accept(cls, booking: BookingRecord, message: str = "") -> "BookingDecision":
        return cls(status=DecisionStatus.ACCEPTED, booking=booking, message=message)

    @classmethod
    def reject(
        cls,
        reason: RejectionReason,
        message: str,
        booking: Optional[BookingRecord] = None,
    ) -> "BookingDecision":
        return cls(status=DecisionStatus.REJECTED, reason=reason, message=message, booking=booking)


class DaySlots(BaseModel):
    """Classified slots of one date."""
    date: str
    weekday: str
    closed: bool = Field(..., description="True for holidays, weekly-off and unscheduled days")
    slot_minutes: int
    slots: List[SlotView] = Field(default_factory=list)

    @property
    def available(self) -> List[SlotView]:
        return [s for s in self.slots if s.status == SlotStatus.AVAILABLE]


class DaySummary(BaseModel):
    """One day of the patient booking window."""
    date: str
    weekday: str
    is_today: bool
    closed: bool
    available_count: int


class BoardEntry(BaseModel):
    """One slot on the doctor's daily board."""
    slot: SlotView
    booking: Optional[BookingRecord] = None


class DailyBoard(BaseModel):
    """Every grid slot of a date with what occupies it."""
    date: str
    closed: bool
    entries: List[BoardEntry] = Field(default_factory=list)
    counts: Dict[str, int] = Field(default_factory=dict)


class BookingService:
    """
    Slot availability engine and booking arbiter over a BookingStore.

    Store calls go through a circuit breaker; StoreUnavailable always
    propagates and is never read as "no bookings, everything free".
    """

    def __init__(
        self,
        store: BookingStore,
        clock: Optional[Clock] = None,
        breaker: Optional[CircuitBreaker] = None,
        hold_minutes: int = config.PENDING_HOLD_MINUTES,
    ):
        self.store = store
        self.clock = clock or Clock()
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=config.STORE_FAILURE_THRESHOLD,
            timeout=config.STORE_CIRCUIT_TIMEOUT,
        )
        self.hold_minutes = hold_minutes

    def _call(self, method: str, *args, **kwargs):
        return self.breaker.call(getattr(self.store, method), *args, **kwargs)

    # =========================================================================
    # Hold expiry
    # =========================================================================

    def sweep_expired(self, doctor_id: Optional[str] = None) -> int:
        """
        Cancel pending bookings whose hold has run out.

        Idempotent; safe to call at the top of every operation.

        Args:
            doctor_id: Limit the sweep to one doctor (None sweeps all)

        Returns:
            Number of bookings cancelled
        """
        cutoff = self.clock.now() - timedelta(minutes=self.hold_minutes)
        expired = self._call("expire_pending_older_than", cutoff, doctor_id=doctor_id)
        if expired:
            logger.info("pending_holds_expired", count=expired, doctor_id=doctor_id)
        return expired

    # =========================================================================
    # Availability
    # =========================================================================

    def _grid_for(self, clinic_id: str, date_iso: str):
        """(candidate slots, slot_minutes, closed) for a clinic and date."""
        schedule, slot_minutes = self._call("fetch_clinic_schedule", clinic_id)
        holidays = self._call("fetch_holidays", clinic_id, (date_iso, date_iso))
        if holidays:
            return [], slot_minutes, True

        window = resolve_day(schedule, date_iso)
        return generate_slots(window, slot_minutes), slot_minutes, window is None

    def _classified_day(
        self,
        clinic_id: str,
        doctor_id: str,
        date_iso: str,
        exclude_booking_id: Optional[str] = None,
    ) -> DaySlots:
        candidates, slot_minutes, closed = self._grid_for(clinic_id, date_iso)
        views: List[SlotView] = []
        if candidates:
            bookings = self._call("fetch_bookings", doctor_id, clinic_id, (date_iso, date_iso))
            blocks = self._call("fetch_blocked_slots", doctor_id, clinic_id, (date_iso, date_iso))
            if exclude_booking_id is not None:
                bookings = [b for b in bookings if b.id != exclude_booking_id]
            views = classify_slots(
                candidates, date_iso, clinic_id, bookings, blocks,
                now=self.clock.now(), hold_minutes=self.hold_minutes,
            )

        return DaySlots(
            date=date_iso,
            weekday=weekday_of(date_iso).value,
            closed=closed,
            slot_minutes=slot_minutes,
            slots=views,
        )

    def list_available_slots(self, clinic_id: str, doctor_id: str, date_iso: str) -> DaySlots:
        """
        Classified slots of one date, as shown to a patient.

        Slots already started (relative to the clock) are omitted.

        Args:
            clinic_id: Clinic identifier
            doctor_id: Doctor identifier
            date_iso: "YYYY-MM-DD"

        Returns:
            DaySlots; closed days have no slots
        """
        date_iso = parse_date(date_iso).isoformat()
        self.sweep_expired(doctor_id)

        day = self._classified_day(clinic_id, doctor_id, date_iso)
        day.slots = drop_past_slots(day.slots, date_iso, self.clock.now())
        return day

    def list_upcoming_days(
        self,
        clinic_id: str,
        doctor_id: str,
        days: int = config.BOOKING_WINDOW_DAYS,
    ) -> List[DaySummary]:
        """Available-slot counts for the next ``days`` calendar days, today first."""
        self.sweep_expired(doctor_id)

        today = self.clock.today()
        end = today + timedelta(days=days - 1)
        date_range = (today.isoformat(), end.isoformat())

        schedule, slot_minutes = self._call("fetch_clinic_schedule", clinic_id)
        holidays = {h.holiday_date for h in self._call("fetch_holidays", clinic_id, date_range)}
        bookings = self._call("fetch_bookings", doctor_id, clinic_id, date_range)
        blocks = self._call("fetch_blocked_slots", doctor_id, clinic_id, date_range)
        now = self.clock.now()

        summaries = []
        for offset in range(days):
            date_iso = (today + timedelta(days=offset)).isoformat()
            window = None if date_iso in holidays else resolve_day(schedule, date_iso)
            candidates = generate_slots(window, slot_minutes)
            views = classify_slots(
                candidates, date_iso, clinic_id, bookings, blocks,
                now=now, hold_minutes=self.hold_minutes,
            )
            views = drop_past_slots(views, date_iso, now)
            summaries.append(DaySummary(
                date=date_iso,
                weekday=weekday_of(date_iso).value,
                is_today=offset == 0,
                closed=window is None,
                available_count=sum(1 for v in views if v.status == SlotStatus.AVAILABLE),
            ))

        return summaries

    def daily_board(self, clinic_id: str, doctor_id: str, date_iso: str) -> DailyBoard:
        """Doctor's view of a date: every slot, past ones included, with its occupant."""
        date_iso = parse_date(date_iso).isoformat()
        self.sweep_expired(doctor_id)

        day = self._classified_day(clinic_id, doctor_id, date_iso)
        bookings = {}
        if day.slots:
            bookings = {
                b.id: b
                for b in self._call("fetch_bookings", doctor_id, clinic_id, (date_iso, date_iso))
            }

        entries = [
            BoardEntry(slot=view, booking=bookings.get(view.booking_id))
            for view in day.slots
        ]
        return DailyBoard(
            date=date_iso,
            closed=day.closed,
            entries=entries,
            counts=count_by_status(day.slots),
        )

    # =========================================================================
    # Booking arbitration
    # =========================================================================

    def _slot_problem(
        self,
        clinic_id: str,
        doctor_id: str,
        date_iso: str,
        slot: str,
        exclude_booking_id: Optional[str] = None,
    ) -> Optional[str]:
        """Why date+slot cannot be taken right now, or None if it is free."""
        if is_past(date_iso, slot, self.clock.now()):
            return "This time slot has already passed"

        day = self._classified_day(clinic_id, doctor_id, date_iso, exclude_booking_id)
        view = next((v for v in day.slots if v.time == slot), None)
        if view is None:
            return "The clinic has no slot at this time"
        if view.status != SlotStatus.AVAILABLE:
            return f"This time slot is {view.status.value}"
        return None

    def _has_other_booking(self, patient_id: str, date_iso: str, exclude_booking_id: Optional[str] = None) -> bool:
        existing = self._call("fetch_patient_bookings", patient_id, date_iso)
        return any(b.is_active and b.id != exclude_booking_id for b in existing)

    @staticmethod
    def _parse_request(date_iso: str, slot: str):
        """(date, slot) in canonical form, or None if either is malformed."""
        try:
            day = parse_date(date_iso).isoformat()
        except (TypeError, ValueError):
            return None
        normalized = normalize_time(slot)
        if normalized is None:
            return None
        return day, normalized

    def attempt_booking(
        self,
        patient_id: str,
        clinic_id: str,
        doctor_id: str,
        date_iso: str,
        slot: str,
    ) -> BookingDecision:
        """
        Claim a slot for a patient as a new pending hold.

        Steps: sweep stale holds, one-booking-per-patient-per-day, fresh
        slot-still-free check, insert. A uniqueness conflict at insert time
        means another request won the race and is reported as a rejection.

        Returns:
            BookingDecision (accepted with the new booking, or rejected with a reason)

        Raises:
            StoreUnavailable: If the store cannot be read or written
        """
        parsed = self._parse_request(date_iso, slot)
        if parsed is None:
            return BookingDecision.reject(
                RejectionReason.INVALID_REQUEST,
                "Invalid date or time. Use YYYY-MM-DD and HH:MM",
            )
        date_iso, slot = parsed
        log = logger.bind(patient_id=patient_id, clinic_id=clinic_id, doctor_id=doctor_id, date=date_iso, slot=slot)

        # The same-day check spans every doctor, so the sweep must too
        self.sweep_expired()

        if self._has_other_booking(patient_id, date_iso):
            log.info("booking_rejected", reason=RejectionReason.ALREADY_BOOKED.value)
            return BookingDecision.reject(
                RejectionReason.ALREADY_BOOKED,
                "You already have an appointment booked on this date",
            )

        problem = self._slot_problem(clinic_id, doctor_id, date_iso, slot)
        if problem is not None:
            log.info("booking_rejected", reason=RejectionReason.SLOT_UNAVAILABLE.value, detail=problem)
            return BookingDecision.reject(RejectionReason.SLOT_UNAVAILABLE, problem)

        record = BookingRecord(
            date=date_iso,
            time_slot=slot,
            clinic_id=clinic_id,
            doctor_id=doctor_id,
            patient_id=patient_id,
            status=BookingStatus.PENDING,
            created_at=self.clock.now(),
        )
        try:
            booking = self._call("insert_booking", record)
        except SlotConflictError:
            return self._conflict_decision(log, patient_id, date_iso)

        log.info("booking_accepted", booking_id=booking.id)
        return BookingDecision.accept(booking, "Appointment requested, awaiting doctor confirmation")

    def _conflict_decision(self, log, patient_id: Optional[str], date_iso: str, exclude_booking_id: Optional[str] = None):
        """Name the constraint a concurrent writer beat us to."""
        if patient_id and self._has_other_booking(patient_id, date_iso, exclude_booking_id):
            log.info("booking_conflict", reason=RejectionReason.ALREADY_BOOKED.value)
            return BookingDecision.reject(
                RejectionReason.ALREADY_BOOKED,
                "You already have an appointment booked on this date",
            )
        log.info("booking_conflict", reason=RejectionReason.SLOT_UNAVAILABLE.value)
        return BookingDecision.reject(
            RejectionReason.SLOT_UNAVAILABLE,
            "This slot was just booked by another patient",
        )

    def reschedule_booking(self, booking_id: str, new_date_iso: str, new_slot: str) -> BookingDecision:
        """
        Move an active booking to a new date/time in place.

        created_at is preserved, so a pending booking keeps its original hold
        deadline. The new slot goes through the same checks as a new booking.
        """
        parsed = self._parse_request(new_date_iso, new_slot)
        if parsed is None:
            return BookingDecision.reject(
                RejectionReason.INVALID_REQUEST,
                "Invalid date or time. Use YYYY-MM-DD and HH:MM",
            )
        new_date_iso, new_slot = parsed

        booking = self._call("get_booking", booking_id)
        if booking is None:
            return BookingDecision.reject(RejectionReason.BOOKING_NOT_FOUND, f"Booking {booking_id} not found")

        self.sweep_expired()
        booking = self._call("get_booking", booking_id)
        if not booking.is_active:
            return BookingDecision.reject(
                RejectionReason.INVALID_TRANSITION,
                f"Cannot reschedule a {booking.status.value} booking",
                booking=booking,
            )

        log = logger.bind(booking_id=booking_id, date=new_date_iso, slot=new_slot)

        if booking.patient_id and self._has_other_booking(booking.patient_id, new_date_iso, booking_id):
            log.info("reschedule_rejected", reason=RejectionReason.ALREADY_BOOKED.value)
            return BookingDecision.reject(
                RejectionReason.ALREADY_BOOKED,
                "The patient already has an appointment on this date",
                booking=booking,
            )

        problem = self._slot_problem(
            booking.clinic_id, booking.doctor_id, new_date_iso, new_slot,
            exclude_booking_id=booking_id,
        )
        if problem is not None:
            log.info("reschedule_rejected", reason=RejectionReason.SLOT_UNAVAILABLE.value, detail=problem)
            return BookingDecision.reject(RejectionReason.SLOT_UNAVAILABLE, problem, booking=booking)

        try:
            moved = self._call("move_booking", booking_id, new_date_iso, new_slot)
        except SlotConflictError:
            return self._conflict_decision(log, booking.patient_id, new_date_iso, booking_id)

        log.info("booking_rescheduled", old_date=booking.date, old_slot=booking.time_slot)
        return BookingDecision.accept(moved, f"Appointment moved to {new_date_iso} at {new_slot}")

    def register_walk_in(
        self,
        clinic_id: str,
        doctor_id: str,
        date_iso: str,
        slot: str,
        name: str,
        phone: Optional[str] = None,
    ) -> BookingDecision:
        """Record a walk-in patient straight into a confirmed booking."""
        parsed = self._parse_request(date_iso, slot)
        if parsed is None or not name.strip():
            return BookingDecision.reject(
                RejectionReason.INVALID_REQUEST,
                "Walk-ins need a name, a YYYY-MM-DD date and an HH:MM time",
            )
        date_iso, slot = parsed
        log = logger.bind(clinic_id=clinic_id, doctor_id=doctor_id, date=date_iso, slot=slot)

        self.sweep_expired(doctor_id)

        day = self._classified_day(clinic_id, doctor_id, date_iso)
        view = next((v for v in day.slots if v.time == slot), None)
        if view is None or view.status != SlotStatus.AVAILABLE:
            return BookingDecision.reject(RejectionReason.SLOT_UNAVAILABLE, "This time slot is not free")

        record = BookingRecord(
            date=date_iso,
            time_slot=slot,
            clinic_id=clinic_id,
            doctor_id=doctor_id,
            status=BookingStatus.CONFIRMED,
            booking_type=BookingType.WALK_IN,
            walk_in_name=name.strip(),
            walk_in_phone=phone,
            created_at=self.clock.now(),
        )
        try:
            booking = self._call("insert_booking", record)
        except SlotConflictError:
            return self._conflict_decision(log, None, date_iso)

        log.info("walk_in_registered", booking_id=booking.id)
        return BookingDecision.accept(booking, "Walk-in registered")

    # =========================================================================
    # Status transitions
    # =========================================================================

    def _transition(self, booking_id: str, target: BookingStatus) -> BookingDecision:
        booking = self._call("get_booking", booking_id)
        if booking is None:
            return BookingDecision.reject(RejectionReason.BOOKING_NOT_FOUND, f"Booking {booking_id} not found")

        # An approval must not revive a hold that has already run out
        self.sweep_expired(booking.doctor_id)
        booking = self._call("get_booking", booking_id)

        try:
            check_transition(booking.status, target)
        except InvalidTransition as e:
            logger.info("transition_rejected", booking_id=booking_id, current=e.current, target=e.target)
            return BookingDecision.reject(RejectionReason.INVALID_TRANSITION, str(e), booking=booking)

        try:
            updated = self._call("update_booking_status", booking_id, target, expected=booking.status)
        except BookingNotFound:
            return BookingDecision.reject(RejectionReason.BOOKING_NOT_FOUND, f"Booking {booking_id} not found")
        except InvalidTransition as e:
            logger.info("transition_lost_race", booking_id=booking_id, current=e.current, target=e.target)
            return BookingDecision.reject(
                RejectionReason.INVALID_TRANSITION,
                str(e),
                booking=self._call("get_booking", booking_id),
            )
        except SlotConflictError:
            logger.info("transition_conflict", booking_id=booking_id, target=target.value)
            return BookingDecision.reject(
                RejectionReason.SLOT_UNAVAILABLE,
                "This slot now holds another booking",
                booking=booking,
            )

        logger.info("booking_status_changed", booking_id=booking_id, old=booking.status.value, new=target.value)
        return BookingDecision.accept(updated, f"Booking {target.value}")

    def approve_booking(self, booking_id: str) -> BookingDecision:
        """Doctor approval: pending -> confirmed."""
        return self._transition(booking_id, BookingStatus.CONFIRMED)

    def reject_booking(self, booking_id: str) -> BookingDecision:
        """Doctor rejection of a pending request: pending -> cancelled."""
        booking = self._call("get_booking", booking_id)
        if booking is not None and booking.status != BookingStatus.PENDING:
            return BookingDecision.reject(
                RejectionReason.INVALID_TRANSITION,
                f"Only pending bookings can be rejected (booking is {booking.status.value})",
                booking=booking,
            )
        return self._transition(booking_id, BookingStatus.CANCELLED)

    def cancel_booking(self, booking_id: str) -> BookingDecision:
        """Patient or doctor cancellation: pending|confirmed -> cancelled."""
        return self._transition(booking_id, BookingStatus.CANCELLED)

    def complete_past_bookings(self) -> int:
        """Confirmed bookings dated before today become completed."""
        completed = self._call("complete_confirmed_before", self.clock.today().isoformat())
        if completed:
            logger.info("bookings_completed", count=completed)
        return completed

    # =========================================================================
    # Doctor blocks, holidays, schedule
    # =========================================================================

    def block_slot(
        self,
        doctor_id: str,
        clinic_id: str,
        date_iso: str,
        slot: str,
        reason: Optional[str] = None,
    ) -> BlockedSlotRecord:
        """
        Block one date+time for a doctor.

        Blocking an already-blocked slot returns the existing block.
        Existing bookings on the slot are left alone.
        """
        record = BlockedSlotRecord(
            doctor_id=doctor_id,
            clinic_id=clinic_id,
            blocked_date=date_iso,
            time_slot=slot,
            reason=(reason or "").strip() or None,
        )
        try:
            block = self._call("insert_blocked_slot", record)
        except SlotConflictError:
            existing = self._call(
                "fetch_blocked_slots", doctor_id, clinic_id, (record.blocked_date, record.blocked_date)
            )
            current = next((b for b in existing if b.time_slot == record.time_slot), None)
            if current is None:
                # The conflicting block was removed before it could be read
                raise SlotConflictError(f"Slot {record.blocked_date} {record.time_slot} changed while blocking")
            return current

        logger.info("slot_blocked", doctor_id=doctor_id, clinic_id=clinic_id, date=block.blocked_date, slot=block.time_slot)
        return block

    def unblock_slot(self, doctor_id: str, clinic_id: str, date_iso: str, slot: str) -> bool:
        """Remove a block; False if there was none."""
        date_iso = parse_date(date_iso).isoformat()
        slot = normalize_time(slot) or slot
        removed = self._call("delete_blocked_slot", doctor_id, clinic_id, date_iso, slot)
        if removed:
            logger.info("slot_unblocked", doctor_id=doctor_id, clinic_id=clinic_id, date=date_iso, slot=slot)
        return removed

    def add_holiday(self, clinic_id: str, date_iso: str, label: Optional[str] = None) -> ClinicHoliday:
        """Close a clinic on one calendar date."""
        return self._call("insert_holiday", ClinicHoliday(clinic_id=clinic_id, holiday_date=date_iso, label=label))

    def remove_holiday(self, clinic_id: str, date_iso: str) -> bool:
        return self._call("delete_holiday", clinic_id, parse_date(date_iso).isoformat())

    def save_clinic_schedule(self, clinic_id: str, raw_schedule: dict, slot_minutes: Optional[int] = None) -> ScheduleValidation:
        """
        Validate and persist a clinic schedule.

        Returns:
            ScheduleValidation; its warnings list malformed entries that were dropped
        """
        result = validate_schedule(raw_schedule, slot_minutes)
        self._call("save_clinic_schedule", clinic_id, result.schedule, result.slot_minutes)
        logger.info(
            "schedule_saved",
            clinic_id=clinic_id,
            slot_minutes=result.slot_minutes,
            warnings=len(result.warnings),
        )
        return result
