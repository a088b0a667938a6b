"""Integration tests for the SQLAlchemy booking store."""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from clinicbook.errors import BookingNotFound, InvalidTransition, SlotConflictError, StoreUnavailable
from clinicbook.models import BlockedSlotRecord, BookingRecord, BookingStatus, ClinicHoliday
from clinicbook.schedule import ClinicSchedule, DaySchedule
from clinicbook.weekdays import WeekdayKey

T0 = datetime(2026, 1, 30, 7, 0, tzinfo=timezone.utc)


def record(slot="09:00", date="2026-02-02", patient_id="pat-1", status=BookingStatus.PENDING, **overrides):
    fields = dict(
        date=date,
        time_slot=slot,
        clinic_id="clinic-a",
        doctor_id="doc-1",
        patient_id=patient_id,
        status=status,
        created_at=T0,
    )
    fields.update(overrides)
    return BookingRecord(**fields)


class TestClinicSchedule:

    def test_unknown_clinic_has_no_schedule(self, store):
        schedule, slot_minutes = store.fetch_clinic_schedule("nowhere")
        assert schedule is None
        assert slot_minutes == 30

    def test_save_and_fetch(self, store):
        schedule = ClinicSchedule(
            default=DaySchedule(start="09:00", end="17:00", break_start="13:00", break_end="14:00"),
            weekly_off=["sun"],
        )
        store.save_clinic_schedule("clinic-a", schedule, 45)

        fetched, slot_minutes = store.fetch_clinic_schedule("clinic-a")
        assert slot_minutes == 45
        assert fetched.default.break_start == "13:00"
        assert fetched.weekly_off == [WeekdayKey.SUN]

    def test_save_replaces_and_clamps(self, store):
        store.save_clinic_schedule("clinic-a", ClinicSchedule(), 30)
        store.save_clinic_schedule("clinic-a", ClinicSchedule(default=DaySchedule(start="10:00", end="11:00")), 500)

        fetched, slot_minutes = store.fetch_clinic_schedule("clinic-a")
        assert slot_minutes == 120
        assert fetched.default.start == "10:00"


class TestBookings:

    def test_insert_assigns_id_and_keeps_created_at(self, store):
        saved = store.insert_booking(record())
        assert saved.id.startswith("appt_")
        assert saved.created_at == T0
        assert store.get_booking(saved.id) == saved

    def test_second_active_booking_on_slot_conflicts(self, store):
        store.insert_booking(record(patient_id="pat-1"))
        with pytest.raises(SlotConflictError):
            store.insert_booking(record(patient_id="pat-2"))

    def test_cancelled_booking_frees_slot(self, store):
        first = store.insert_booking(record(patient_id="pat-1"))
        store.update_booking_status(first.id, BookingStatus.CANCELLED)

        second = store.insert_booking(record(patient_id="pat-2"))
        assert second.status == BookingStatus.PENDING

    def test_one_active_booking_per_patient_per_day(self, store):
        store.insert_booking(record(slot="09:00"))
        with pytest.raises(SlotConflictError):
            store.insert_booking(record(slot="10:00", clinic_id="clinic-b"))

    def test_walk_ins_without_patient_do_not_collide(self, store):
        store.insert_booking(record(slot="09:00", patient_id=None, walk_in_name="A"))
        store.insert_booking(record(slot="09:30", patient_id=None, walk_in_name="B"))
        assert len(store.fetch_bookings("doc-1", "clinic-a", ("2026-02-02", "2026-02-02"))) == 2

    def test_fetch_bookings_filters_range_and_orders(self, store):
        store.insert_booking(record(slot="10:00", date="2026-02-03", patient_id="p1"))
        store.insert_booking(record(slot="09:00", date="2026-02-03", patient_id="p2"))
        store.insert_booking(record(slot="09:00", date="2026-02-10", patient_id="p3"))
        store.insert_booking(record(slot="09:00", date="2026-02-03", patient_id="p4", doctor_id="doc-2", clinic_id="clinic-b"))

        rows = store.fetch_bookings("doc-1", "clinic-a", ("2026-02-01", "2026-02-05"))
        assert [(b.date, b.time_slot) for b in rows] == [("2026-02-03", "09:00"), ("2026-02-03", "10:00")]

    def test_fetch_patient_bookings_spans_clinics(self, store):
        store.insert_booking(record(clinic_id="clinic-b"))
        rows = store.fetch_patient_bookings("pat-1", "2026-02-02")
        assert [b.clinic_id for b in rows] == ["clinic-b"]

    def test_update_unknown_booking(self, store):
        with pytest.raises(BookingNotFound):
            store.update_booking_status("appt_missing", BookingStatus.CONFIRMED)

    def test_update_with_stale_expected_status(self, store):
        saved = store.insert_booking(record())
        store.update_booking_status(saved.id, BookingStatus.CANCELLED)

        with pytest.raises(InvalidTransition):
            store.update_booking_status(saved.id, BookingStatus.CONFIRMED, expected=BookingStatus.PENDING)
        assert store.get_booking(saved.id).status == BookingStatus.CANCELLED

    def test_update_with_matching_expected_status(self, store):
        saved = store.insert_booking(record())
        updated = store.update_booking_status(saved.id, BookingStatus.CONFIRMED, expected=BookingStatus.PENDING)
        assert updated.status == BookingStatus.CONFIRMED

    def test_reactivating_onto_taken_slot_conflicts(self, store):
        first = store.insert_booking(record(patient_id="p1"))
        store.update_booking_status(first.id, BookingStatus.CANCELLED)
        store.insert_booking(record(patient_id="p2"))

        with pytest.raises(SlotConflictError):
            store.update_booking_status(first.id, BookingStatus.CONFIRMED)
        assert store.get_booking(first.id).status == BookingStatus.CANCELLED

    def test_move_keeps_created_at(self, store):
        saved = store.insert_booking(record())
        moved = store.move_booking(saved.id, "2026-02-04", "11:00")
        assert (moved.date, moved.time_slot) == ("2026-02-04", "11:00")
        assert moved.created_at == T0

    def test_move_onto_taken_slot_conflicts(self, store):
        store.insert_booking(record(slot="09:00", patient_id="p1"))
        other = store.insert_booking(record(slot="10:00", patient_id="p2"))
        with pytest.raises(SlotConflictError):
            store.move_booking(other.id, "2026-02-02", "09:00")

    def test_expire_pending_older_than(self, store):
        old = store.insert_booking(record(slot="09:00", patient_id="p1"))
        fresh = store.insert_booking(record(slot="09:30", patient_id="p2", created_at=T0 + timedelta(minutes=10)))
        confirmed = store.insert_booking(record(slot="10:00", patient_id="p3", status=BookingStatus.CONFIRMED))

        expired = store.expire_pending_older_than(T0 + timedelta(minutes=5))

        assert expired == 1
        assert store.get_booking(old.id).status == BookingStatus.CANCELLED
        assert store.get_booking(fresh.id).status == BookingStatus.PENDING
        assert store.get_booking(confirmed.id).status == BookingStatus.CONFIRMED

    def test_expire_scoped_to_doctor(self, store):
        store.insert_booking(record(slot="09:00", patient_id="p1", doctor_id="doc-2"))
        assert store.expire_pending_older_than(T0 + timedelta(hours=1), doctor_id="doc-1") == 0
        assert store.expire_pending_older_than(T0 + timedelta(hours=1), doctor_id="doc-2") == 1

    def test_complete_confirmed_before(self, store):
        past = store.insert_booking(record(date="2026-01-29", status=BookingStatus.CONFIRMED))
        today = store.insert_booking(record(date="2026-01-30", patient_id="p2", status=BookingStatus.CONFIRMED))

        assert store.complete_confirmed_before("2026-01-30") == 1
        assert store.get_booking(past.id).status == BookingStatus.COMPLETED
        assert store.get_booking(today.id).status == BookingStatus.CONFIRMED


class TestBlocksAndHolidays:

    def test_block_unique_and_removable(self, store):
        block = BlockedSlotRecord(clinic_id="clinic-a", doctor_id="doc-1", blocked_date="2026-02-02", time_slot="09:00")
        saved = store.insert_blocked_slot(block)
        assert saved.id.startswith("blk_")

        with pytest.raises(SlotConflictError):
            store.insert_blocked_slot(block)

        assert store.delete_blocked_slot("doc-1", "clinic-a", "2026-02-02", "09:00") is True
        assert store.delete_blocked_slot("doc-1", "clinic-a", "2026-02-02", "09:00") is False
        assert store.fetch_blocked_slots("doc-1", "clinic-a", ("2026-02-01", "2026-02-28")) == []

    def test_holidays_upsert(self, store):
        store.insert_holiday(ClinicHoliday(clinic_id="clinic-a", holiday_date="2026-02-16"))
        store.insert_holiday(ClinicHoliday(clinic_id="clinic-a", holiday_date="2026-02-16", label="Presidents Day"))

        holidays = store.fetch_holidays("clinic-a", ("2026-02-01", "2026-02-28"))
        assert [(h.holiday_date, h.label) for h in holidays] == [("2026-02-16", "Presidents Day")]

        assert store.delete_holiday("clinic-a", "2026-02-16") is True
        assert store.fetch_holidays("clinic-a", ("2026-02-01", "2026-02-28")) == []


class TestStoreFailures:

    def test_driver_errors_become_store_unavailable(self, store, monkeypatch):
        """A failed read must propagate, never look like an empty result."""
        def broken_session():
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))

        monkeypatch.setattr(store, "SessionLocal", broken_session)

        with pytest.raises(StoreUnavailable):
            store.fetch_bookings("doc-1", "clinic-a", ("2026-02-01", "2026-02-28"))
