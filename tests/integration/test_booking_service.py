"""Integration tests for listing and booking over an in-memory store."""
from datetime import timedelta

import pytest

from clinicbook.availability import SlotStatus
from clinicbook.booking import BookingService, DecisionStatus
from clinicbook.circuit_breaker import CircuitBreaker
from clinicbook.errors import RejectionReason, StoreUnavailable
from clinicbook.models import BookingRecord, BookingStatus

DOCTOR = "doc-1"
DATE = "2026-02-02"  # Monday, three days after the fixed clock


def times(day):
    return [view.time for view in day.slots]


def status_of(day, slot):
    return next(view.status for view in day.slots if view.time == slot)


class TestListAvailableSlots:
    """Test classified slot listing."""

    def test_lists_morning_grid(self, service, clinic):
        day = service.list_available_slots(clinic, DOCTOR, DATE)

        assert not day.closed
        assert day.weekday == "mon"
        assert times(day) == ["09:00", "09:30", "10:00", "10:30", "11:00", "11:30"]
        assert all(view.status == SlotStatus.AVAILABLE for view in day.slots)

    def test_break_and_weekly_off(self, service):
        service.save_clinic_schedule("clinic-x", {
            "default": {"start": "09:00", "end": "12:00", "break_start": "10:00", "break_end": "10:30"},
            "weekly_off": ["mon"],
        }, 30)

        assert times(service.list_available_slots("clinic-x", DOCTOR, "2026-02-03")) == [
            "09:00", "09:30", "10:30", "11:00", "11:30"
        ]
        monday = service.list_available_slots("clinic-x", DOCTOR, DATE)
        assert monday.closed
        assert monday.slots == []

    def test_open_day_without_room_for_a_slot_is_not_closed(self, service):
        """A break covering the whole window leaves an open day with no slots."""
        service.save_clinic_schedule("clinic-y", {
            "default": {"start": "09:00", "end": "10:00", "break_start": "09:00", "break_end": "10:00"},
        }, 30)

        day = service.list_available_slots("clinic-y", DOCTOR, DATE)
        assert day.slots == []
        assert not day.closed
        assert not service.list_upcoming_days("clinic-y", DOCTOR)[3].closed

    def test_unknown_clinic_is_closed_not_an_error(self, service):
        day = service.list_available_slots("no-such-clinic", DOCTOR, DATE)
        assert day.closed
        assert day.slot_minutes == 30

    def test_holiday_closes_day(self, service, clinic):
        service.add_holiday(clinic, DATE, "Staff training")
        assert service.list_available_slots(clinic, DOCTOR, DATE).closed

        service.remove_holiday(clinic, DATE)
        assert not service.list_available_slots(clinic, DOCTOR, DATE).closed

    def test_classification_reflects_state(self, service, clinic):
        decision = service.attempt_booking("pat-1", clinic, DOCTOR, DATE, "09:00")
        service.approve_booking(decision.booking.id)
        service.attempt_booking("pat-2", clinic, DOCTOR, DATE, "09:30")
        service.block_slot(DOCTOR, clinic, DATE, "10:00", reason="Rounds")

        day = service.list_available_slots(clinic, DOCTOR, DATE)

        assert status_of(day, "09:00") == SlotStatus.BOOKED
        assert status_of(day, "09:30") == SlotStatus.PENDING
        assert status_of(day, "10:00") == SlotStatus.BLOCKED
        assert status_of(day, "10:30") == SlotStatus.AVAILABLE
        assert len(day.available) == 3

    def test_listing_is_idempotent(self, service, clinic):
        service.attempt_booking("pat-1", clinic, DOCTOR, DATE, "09:00")

        first = service.list_available_slots(clinic, DOCTOR, DATE)
        second = service.list_available_slots(clinic, DOCTOR, DATE)

        assert first == second

    def test_today_hides_started_slots(self, service, clinic, clock):
        clock.advance(hours=3)  # 10:00 on 2026-01-30
        day = service.list_available_slots(clinic, DOCTOR, "2026-01-30")
        assert times(day) == ["10:30", "11:00", "11:30"]

    def test_past_date_lists_nothing(self, service, clinic):
        assert service.list_available_slots(clinic, DOCTOR, "2026-01-29").slots == []

    def test_malformed_date_raises(self, service, clinic):
        with pytest.raises(ValueError):
            service.list_available_slots(clinic, DOCTOR, "02/02/2026")


class TestUpcomingDays:

    def test_window_of_fourteen_days(self, service, clinic):
        days = service.list_upcoming_days(clinic, DOCTOR)

        assert len(days) == 14
        assert days[0].date == "2026-01-30"
        assert days[0].is_today
        assert not days[1].is_today
        assert days[-1].date == "2026-02-12"
        assert all(d.available_count == 6 for d in days)

    def test_counts_reflect_bookings_and_closures(self, service, clinic):
        service.attempt_booking("pat-1", clinic, DOCTOR, DATE, "09:00")
        service.add_holiday(clinic, "2026-02-03")

        days = {d.date: d for d in service.list_upcoming_days(clinic, DOCTOR)}

        assert days[DATE].available_count == 5
        assert days["2026-02-03"].closed
        assert days["2026-02-03"].available_count == 0


class TestAttemptBooking:
    """Booking arbitration."""

    def test_accepts_free_slot_as_pending(self, service, clinic, clock):
        decision = service.attempt_booking("pat-1", clinic, DOCTOR, DATE, "9:30")

        assert decision.status == DecisionStatus.ACCEPTED
        assert decision.reason is None
        assert decision.booking.status == BookingStatus.PENDING
        assert decision.booking.time_slot == "09:30"
        assert decision.booking.created_at == clock.now()

    def test_same_day_at_another_clinic_is_already_booked(self, service, clinic, second_clinic):
        """One appointment per patient per day, system wide."""
        first = service.attempt_booking("pat-1", clinic, DOCTOR, "2026-02-01", "09:00")
        assert first.accepted

        second = service.attempt_booking("pat-1", second_clinic, "doc-2", "2026-02-01", "11:00")

        assert second.status == DecisionStatus.REJECTED
        assert second.reason == RejectionReason.ALREADY_BOOKED

    def test_cancelled_booking_does_not_count_for_same_day(self, service, clinic):
        first = service.attempt_booking("pat-1", clinic, DOCTOR, DATE, "09:00")
        service.cancel_booking(first.booking.id)

        assert service.attempt_booking("pat-1", clinic, DOCTOR, DATE, "10:00").accepted

    def test_expired_hold_with_another_doctor_does_not_count(self, service, clinic, second_clinic, clock):
        """Stale holds are swept across doctors before the same-day check."""
        service.attempt_booking("pat-1", second_clinic, "doc-2", "2026-02-01", "09:00")
        clock.advance(minutes=16)

        decision = service.attempt_booking("pat-1", clinic, DOCTOR, "2026-02-01", "10:00")

        assert decision.accepted
        assert sorted(b.status for b in service.store.fetch_patient_bookings("pat-1", "2026-02-01")) == [
            BookingStatus.CANCELLED, BookingStatus.PENDING
        ]

    @pytest.mark.parametrize("setup", ["pending", "confirmed", "blocked"])
    def test_occupied_slot_is_unavailable(self, service, clinic, setup):
        if setup == "blocked":
            service.block_slot(DOCTOR, clinic, DATE, "09:00")
        else:
            taken = service.attempt_booking("pat-1", clinic, DOCTOR, DATE, "09:00")
            if setup == "confirmed":
                service.approve_booking(taken.booking.id)

        decision = service.attempt_booking("pat-2", clinic, DOCTOR, DATE, "09:00")

        assert decision.reason == RejectionReason.SLOT_UNAVAILABLE

    def test_slot_outside_grid_is_unavailable(self, service, clinic):
        decision = service.attempt_booking("pat-1", clinic, DOCTOR, DATE, "09:15")
        assert decision.reason == RejectionReason.SLOT_UNAVAILABLE

    def test_closed_day_is_unavailable(self, service, clinic):
        service.add_holiday(clinic, DATE)
        decision = service.attempt_booking("pat-1", clinic, DOCTOR, DATE, "09:00")
        assert decision.reason == RejectionReason.SLOT_UNAVAILABLE

    def test_started_slot_is_unavailable(self, service, clinic, clock):
        clock.advance(hours=2)  # 09:00 today
        decision = service.attempt_booking("pat-1", clinic, DOCTOR, "2026-01-30", "09:00")
        assert decision.reason == RejectionReason.SLOT_UNAVAILABLE
        assert "passed" in decision.message

    @pytest.mark.parametrize("date,slot", [("2026-02-30", "09:00"), ("tomorrow", "09:00"), (DATE, "nine")])
    def test_malformed_request(self, service, clinic, date, slot):
        decision = service.attempt_booking("pat-1", clinic, DOCTOR, date, slot)
        assert decision.reason == RejectionReason.INVALID_REQUEST


class TestPendingHoldExpiry:
    """A pending hold lasts 15 minutes."""

    def test_hold_older_than_fifteen_minutes_frees_slot(self, service, clinic, clock):
        first = service.attempt_booking("pat-1", clinic, DOCTOR, DATE, "09:00")
        clock.advance(minutes=16)

        second = service.attempt_booking("pat-2", clinic, DOCTOR, DATE, "09:00")

        assert second.accepted
        assert service.store.get_booking(first.booking.id).status == BookingStatus.CANCELLED

    def test_hold_within_fifteen_minutes_still_blocks(self, service, clinic, clock):
        service.attempt_booking("pat-1", clinic, DOCTOR, DATE, "09:00")
        clock.advance(minutes=14)

        assert service.attempt_booking("pat-2", clinic, DOCTOR, DATE, "09:00").reason == RejectionReason.SLOT_UNAVAILABLE

    def test_expired_hold_does_not_count_for_same_day(self, service, clinic, clock):
        service.attempt_booking("pat-1", clinic, DOCTOR, DATE, "09:00")
        clock.advance(minutes=16)

        assert service.attempt_booking("pat-1", clinic, DOCTOR, DATE, "10:00").accepted

    def test_stale_row_inserted_directly_is_swept(self, service, store, clinic, clock):
        """A pending row created 16 minutes ago never blocks a new attempt."""
        store.insert_booking(BookingRecord(
            date=DATE, time_slot="09:00", clinic_id=clinic, doctor_id=DOCTOR,
            patient_id="pat-9", status=BookingStatus.PENDING,
            created_at=clock.now() - timedelta(minutes=16),
        ))

        assert service.attempt_booking("pat-1", clinic, DOCTOR, DATE, "09:00").accepted

    def test_sweep_is_idempotent(self, service, clinic, clock):
        service.attempt_booking("pat-1", clinic, DOCTOR, DATE, "09:00")
        clock.advance(minutes=20)

        assert service.sweep_expired(DOCTOR) == 1
        assert service.sweep_expired(DOCTOR) == 0

    def test_confirmed_booking_never_expires(self, service, clinic, clock):
        decision = service.attempt_booking("pat-1", clinic, DOCTOR, DATE, "09:00")
        service.approve_booking(decision.booking.id)
        clock.advance(hours=2)

        assert service.attempt_booking("pat-2", clinic, DOCTOR, DATE, "09:00").reason == RejectionReason.SLOT_UNAVAILABLE


class TestRescheduleBooking:
    """Rescheduling mutates the booking in place."""

    def test_moves_in_place_and_keeps_created_at(self, service, clinic, clock):
        original = service.attempt_booking("pat-1", clinic, DOCTOR, DATE, "09:00").booking
        clock.advance(minutes=5)

        decision = service.reschedule_booking(original.id, "2026-02-03", "10:30")

        assert decision.accepted
        assert decision.booking.id == original.id
        assert (decision.booking.date, decision.booking.time_slot) == ("2026-02-03", "10:30")
        assert decision.booking.created_at == original.created_at
        assert status_of(service.list_available_slots(clinic, DOCTOR, DATE), "09:00") == SlotStatus.AVAILABLE

    def test_hold_deadline_not_reset_by_reschedule(self, service, clinic, clock):
        original = service.attempt_booking("pat-1", clinic, DOCTOR, DATE, "09:00").booking
        clock.advance(minutes=10)
        service.reschedule_booking(original.id, DATE, "10:00")
        clock.advance(minutes=6)

        day = service.list_available_slots(clinic, DOCTOR, DATE)
        assert status_of(day, "10:00") == SlotStatus.AVAILABLE

    def test_same_day_move_to_other_slot(self, service, clinic):
        """The patient's own booking does not trip the same-day rule."""
        original = service.attempt_booking("pat-1", clinic, DOCTOR, DATE, "09:00").booking
        assert service.reschedule_booking(original.id, DATE, "11:30").accepted

    def test_target_slot_taken(self, service, clinic):
        mine = service.attempt_booking("pat-1", clinic, DOCTOR, DATE, "09:00").booking
        service.attempt_booking("pat-2", clinic, DOCTOR, DATE, "10:00")

        decision = service.reschedule_booking(mine.id, DATE, "10:00")

        assert decision.reason == RejectionReason.SLOT_UNAVAILABLE
        assert service.store.get_booking(mine.id).time_slot == "09:00"

    def test_target_day_already_booked_elsewhere(self, service, clinic, second_clinic):
        mine = service.attempt_booking("pat-1", clinic, DOCTOR, DATE, "09:00").booking
        service.attempt_booking("pat-1", second_clinic, "doc-2", "2026-02-03", "09:00")

        decision = service.reschedule_booking(mine.id, "2026-02-03", "11:00")

        assert decision.reason == RejectionReason.ALREADY_BOOKED

    def test_expired_hold_elsewhere_does_not_block_move(self, service, clinic, second_clinic, clock):
        mine = service.attempt_booking("pat-1", clinic, DOCTOR, DATE, "09:00").booking
        service.approve_booking(mine.id)
        service.attempt_booking("pat-1", second_clinic, "doc-2", "2026-02-03", "09:00")
        clock.advance(minutes=16)

        decision = service.reschedule_booking(mine.id, "2026-02-03", "11:00")

        assert decision.accepted
        assert decision.booking.status == BookingStatus.CONFIRMED

    def test_unknown_booking(self, service, clinic):
        assert service.reschedule_booking("appt_missing", DATE, "09:00").reason == RejectionReason.BOOKING_NOT_FOUND

    def test_cancelled_booking_cannot_move(self, service, clinic):
        mine = service.attempt_booking("pat-1", clinic, DOCTOR, DATE, "09:00").booking
        service.cancel_booking(mine.id)

        assert service.reschedule_booking(mine.id, DATE, "10:00").reason == RejectionReason.INVALID_TRANSITION


class FailingStore:
    """Store stand-in whose every call fails like a dropped connection."""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise StoreUnavailable(f"{name} failed: connection refused")
        return fail


class TestStoreUnavailable:
    """Store failures propagate; they are never read as 'all slots free'."""

    def test_listing_raises(self, clock):
        service = BookingService(FailingStore(), clock=clock)
        with pytest.raises(StoreUnavailable):
            service.list_available_slots("clinic-a", DOCTOR, DATE)

    def test_booking_raises(self, clock):
        service = BookingService(FailingStore(), clock=clock)
        with pytest.raises(StoreUnavailable):
            service.attempt_booking("pat-1", "clinic-a", DOCTOR, DATE, "09:00")

    def test_breaker_opens_after_repeated_failures(self, clock):
        breaker = CircuitBreaker(failure_threshold=2, timeout=60)
        service = BookingService(FailingStore(), clock=clock, breaker=breaker)

        for _ in range(3):
            with pytest.raises(StoreUnavailable):
                service.list_available_slots("clinic-a", DOCTOR, DATE)

        assert breaker.state == "open"
