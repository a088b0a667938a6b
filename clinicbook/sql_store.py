"""SQLAlchemy implementation of the booking store.

Pattern: Thin wrapper around SQLAlchemy, one session per call.
Database rows are converted to domain records at this boundary.
"""
import functools
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from clinicbook import config
from clinicbook.database_models import Appointment, Base, BlockedSlot, Clinic, Holiday
from clinicbook.errors import BookingNotFound, InvalidTransition, SlotConflictError, StoreUnavailable
from clinicbook.logging_config import get_logger
from clinicbook.models import (
    BlockedSlotRecord,
    BookingRecord,
    BookingStatus,
    BookingType,
    ClinicHoliday,
)
from clinicbook.schedule import ClinicSchedule, clamp_slot_minutes
from clinicbook.store import BookingStore, DateRange

logger = get_logger(__name__)


def _to_db_time(value: datetime) -> datetime:
    """Aware -> naive UTC for storage."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db_time(value: datetime) -> datetime:
    """Naive UTC from storage -> aware UTC."""
    return value.replace(tzinfo=timezone.utc)


def store_operation(func):
    """Map driver errors onto the engine's error taxonomy."""
    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except IntegrityError as e:
            logger.info("store_conflict", operation=func.__name__, detail=str(e.orig))
            raise SlotConflictError(str(e.orig)) from e
        except SQLAlchemyError as e:
            logger.error("store_unavailable", operation=func.__name__, error=str(e))
            raise StoreUnavailable(f"{func.__name__} failed: {e}") from e
    return wrapper


def _booking_from_row(row: Appointment) -> BookingRecord:
    return BookingRecord(
        id=row.id,
        date=row.appointment_date,
        time_slot=row.time_slot,
        clinic_id=row.clinic_id,
        doctor_id=row.doctor_id,
        status=BookingStatus(row.status),
        created_at=_from_db_time(row.created_at),
        patient_id=row.patient_id,
        booking_type=BookingType(row.booking_type),
        walk_in_name=row.walk_in_name,
        walk_in_phone=row.walk_in_phone,
    )


def _block_from_row(row: BlockedSlot) -> BlockedSlotRecord:
    return BlockedSlotRecord(
        id=row.id,
        clinic_id=row.clinic_id,
        doctor_id=row.doctor_id,
        blocked_date=row.blocked_date,
        time_slot=row.time_slot,
        reason=row.reason,
    )


class SQLBookingStore(BookingStore):
    """
    Booking store over any SQLAlchemy-supported database.

    The partial unique indexes in database_models make concurrent double
    booking impossible even when two requests pass the pre-check together.
    """

    def __init__(self, database_url: Optional[str] = None):
        """
        Initialize store with database connection.

        Args:
            database_url: SQLAlchemy connection string (defaults to config.DATABASE_URL)
        """
        database_url = database_url or config.DATABASE_URL
        engine_kwargs = {"pool_pre_ping": True}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 15}
            if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
                # Single shared connection, otherwise every session sees an empty database
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(database_url, **engine_kwargs)
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine)

    def close(self) -> None:
        """Dispose of pooled connections."""
        self.engine.dispose()

    # =========================================================================
    # Clinic schedule
    # =========================================================================

    @store_operation
    def fetch_clinic_schedule(self, clinic_id: str) -> Tuple[Optional[ClinicSchedule], int]:
        with self.SessionLocal() as db:
            clinic = db.get(Clinic, clinic_id)
            if clinic is None:
                return None, config.DEFAULT_SLOT_MINUTES

            schedule = ClinicSchedule(**clinic.schedule) if clinic.schedule else None
            return schedule, clamp_slot_minutes(clinic.slot_minutes)

    @store_operation
    def save_clinic_schedule(self, clinic_id: str, schedule: ClinicSchedule, slot_minutes: int) -> None:
        with self.SessionLocal() as db:
            clinic = db.get(Clinic, clinic_id)
            if clinic is None:
                clinic = Clinic(id=clinic_id)
                db.add(clinic)
            clinic.schedule = schedule.model_dump(mode="json", exclude_none=True)
            clinic.slot_minutes = clamp_slot_minutes(slot_minutes)
            db.commit()

    # =========================================================================
    # Bookings
    # =========================================================================

    @store_operation
    def fetch_bookings(self, doctor_id: str, clinic_id: str, date_range: DateRange) -> List[BookingRecord]:
        start, end = date_range
        with self.SessionLocal() as db:
            rows = db.query(Appointment).filter(
                Appointment.doctor_id == doctor_id,
                Appointment.clinic_id == clinic_id,
                Appointment.appointment_date >= start,
                Appointment.appointment_date <= end,
            ).order_by(Appointment.appointment_date, Appointment.time_slot).all()
            return [_booking_from_row(row) for row in rows]

    @store_operation
    def fetch_patient_bookings(self, patient_id: str, date_iso: str) -> List[BookingRecord]:
        with self.SessionLocal() as db:
            rows = db.query(Appointment).filter(
                Appointment.patient_id == patient_id,
                Appointment.appointment_date == date_iso,
            ).all()
            return [_booking_from_row(row) for row in rows]

    @store_operation
    def get_booking(self, booking_id: str) -> Optional[BookingRecord]:
        with self.SessionLocal() as db:
            row = db.get(Appointment, booking_id)
            return _booking_from_row(row) if row is not None else None

    @store_operation
    def insert_booking(self, record: BookingRecord) -> BookingRecord:
        with self.SessionLocal() as db:
            row = Appointment(
                patient_id=record.patient_id,
                doctor_id=record.doctor_id,
                clinic_id=record.clinic_id,
                appointment_date=record.date,
                time_slot=record.time_slot,
                status=record.status.value,
                booking_type=record.booking_type.value,
                walk_in_name=record.walk_in_name,
                walk_in_phone=record.walk_in_phone,
                created_at=_to_db_time(record.created_at),
            )
            if record.id:
                row.id = record.id
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise
            db.refresh(row)
            return _booking_from_row(row)

    @store_operation
    def update_booking_status(
        self,
        booking_id: str,
        status: BookingStatus,
        expected: Optional[BookingStatus] = None,
    ) -> BookingRecord:
        with self.SessionLocal() as db:
            query = db.query(Appointment).filter(Appointment.id == booking_id)
            if expected is not None:
                query = query.filter(Appointment.status == BookingStatus(expected).value)

            try:
                updated = query.update(
                    {Appointment.status: BookingStatus(status).value},
                    synchronize_session=False,
                )
                db.commit()
            except IntegrityError:
                db.rollback()
                raise

            row = db.get(Appointment, booking_id)
            if row is None:
                raise BookingNotFound(f"Booking {booking_id} not found")
            if not updated:
                # Someone else changed the status since the caller read it
                raise InvalidTransition(row.status, BookingStatus(status).value)
            return _booking_from_row(row)

    @store_operation
    def move_booking(self, booking_id: str, date_iso: str, time_slot: str) -> BookingRecord:
        with self.SessionLocal() as db:
            row = db.get(Appointment, booking_id)
            if row is None:
                raise BookingNotFound(f"Booking {booking_id} not found")
            row.appointment_date = date_iso
            row.time_slot = time_slot
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise
            db.refresh(row)
            return _booking_from_row(row)

    @store_operation
    def expire_pending_older_than(self, cutoff: datetime, doctor_id: Optional[str] = None) -> int:
        with self.SessionLocal() as db:
            query = db.query(Appointment).filter(
                Appointment.status == BookingStatus.PENDING.value,
                Appointment.created_at <= _to_db_time(cutoff),
            )
            if doctor_id is not None:
                query = query.filter(Appointment.doctor_id == doctor_id)

            expired = query.update(
                {Appointment.status: BookingStatus.CANCELLED.value},
                synchronize_session=False,
            )
            db.commit()

        return expired

    @store_operation
    def complete_confirmed_before(self, date_iso: str) -> int:
        with self.SessionLocal() as db:
            completed = db.query(Appointment).filter(
                Appointment.status == BookingStatus.CONFIRMED.value,
                Appointment.appointment_date < date_iso,
            ).update(
                {Appointment.status: BookingStatus.COMPLETED.value},
                synchronize_session=False,
            )
            db.commit()

        return completed

    # =========================================================================
    # Blocked slots
    # =========================================================================

    @store_operation
    def fetch_blocked_slots(self, doctor_id: str, clinic_id: str, date_range: DateRange) -> List[BlockedSlotRecord]:
        start, end = date_range
        with self.SessionLocal() as db:
            rows = db.query(BlockedSlot).filter(
                BlockedSlot.doctor_id == doctor_id,
                BlockedSlot.clinic_id == clinic_id,
                BlockedSlot.blocked_date >= start,
                BlockedSlot.blocked_date <= end,
            ).order_by(BlockedSlot.blocked_date, BlockedSlot.time_slot).all()
            return [_block_from_row(row) for row in rows]

    @store_operation
    def insert_blocked_slot(self, record: BlockedSlotRecord) -> BlockedSlotRecord:
        with self.SessionLocal() as db:
            row = BlockedSlot(
                doctor_id=record.doctor_id,
                clinic_id=record.clinic_id,
                blocked_date=record.blocked_date,
                time_slot=record.time_slot,
                reason=record.reason,
            )
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise
            db.refresh(row)
            return _block_from_row(row)

    @store_operation
    def delete_blocked_slot(self, doctor_id: str, clinic_id: str, date_iso: str, time_slot: str) -> bool:
        with self.SessionLocal() as db:
            deleted = db.query(BlockedSlot).filter(
                BlockedSlot.doctor_id == doctor_id,
                BlockedSlot.clinic_id == clinic_id,
                BlockedSlot.blocked_date == date_iso,
                BlockedSlot.time_slot == time_slot,
            ).delete()
            db.commit()

        return deleted > 0

    # =========================================================================
    # Holidays
    # =========================================================================

    @store_operation
    def fetch_holidays(self, clinic_id: str, date_range: DateRange) -> List[ClinicHoliday]:
        start, end = date_range
        with self.SessionLocal() as db:
            rows = db.query(Holiday).filter(
                Holiday.clinic_id == clinic_id,
                Holiday.holiday_date >= start,
                Holiday.holiday_date <= end,
            ).order_by(Holiday.holiday_date).all()
            return [
                ClinicHoliday(clinic_id=row.clinic_id, holiday_date=row.holiday_date, label=row.label)
                for row in rows
            ]

    @store_operation
    def insert_holiday(self, holiday: ClinicHoliday) -> ClinicHoliday:
        with self.SessionLocal() as db:
            row = db.get(Holiday, (holiday.clinic_id, holiday.holiday_date))
            if row is None:
                db.add(Holiday(
                    clinic_id=holiday.clinic_id,
                    holiday_date=holiday.holiday_date,
                    label=holiday.label,
                ))
            else:
                row.label = holiday.label
            db.commit()

        return holiday

    @store_operation
    def delete_holiday(self, clinic_id: str, date_iso: str) -> bool:
        with self.SessionLocal() as db:
            deleted = db.query(Holiday).filter(
                Holiday.clinic_id == clinic_id,
                Holiday.holiday_date == date_iso,
            ).delete()
            db.commit()

        return deleted > 0
