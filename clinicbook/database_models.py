"""SQLAlchemy database models for the booking store.

The double-booking guarantees live here, not in application code:
- one active (pending/confirmed) booking per clinic+date+slot
- one active booking per patient per date
- one block per doctor+clinic+date+slot
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, UniqueConstraint, text
from sqlalchemy.orm import declarative_base

Base = declarative_base()

ACTIVE_STATUS_SQL = "status IN ('pending', 'confirmed')"


def utc_now():
    """Current UTC timestamp, naive (all stored timestamps are UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_id(prefix: str) -> str:
    """Generate a prefixed UUID."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class Clinic(Base):
    """Clinic weekly schedule and slot duration."""
    __tablename__ = "clinics"

    id = Column(String(100), primary_key=True, index=True)
    schedule = Column(JSON, nullable=True)  # ClinicSchedule dict
    slot_minutes = Column(Integer, nullable=False, default=30)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    def __repr__(self):
        return f"<Clinic(id={self.id}, slot_minutes={self.slot_minutes})>"


class Appointment(Base):
    """Appointment rows; status drives slot occupancy."""
    __tablename__ = "appointments"

    id = Column(String(40), primary_key=True, default=lambda: generate_id("appt"))
    patient_id = Column(String(100), nullable=True, index=True)
    doctor_id = Column(String(100), nullable=False, index=True)
    clinic_id = Column(String(100), nullable=False, index=True)
    appointment_date = Column(String(10), nullable=False, index=True)  # YYYY-MM-DD
    time_slot = Column(String(5), nullable=False)  # HH:MM
    status = Column(String(20), nullable=False, default="pending", index=True)
    booking_type = Column(String(20), nullable=False, default="online")
    walk_in_name = Column(String(200), nullable=True)
    walk_in_phone = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (
        Index(
            "uq_appointments_active_slot",
            "clinic_id", "appointment_date", "time_slot",
            unique=True,
            sqlite_where=text(ACTIVE_STATUS_SQL),
            postgresql_where=text(ACTIVE_STATUS_SQL),
        ),
        Index(
            "uq_appointments_patient_day",
            "patient_id", "appointment_date",
            unique=True,
            sqlite_where=text(f"patient_id IS NOT NULL AND {ACTIVE_STATUS_SQL}"),
            postgresql_where=text(f"patient_id IS NOT NULL AND {ACTIVE_STATUS_SQL}"),
        ),
    )

    def __repr__(self):
        return (
            f"<Appointment(id={self.id}, date={self.appointment_date}, "
            f"slot={self.time_slot}, status={self.status})>"
        )


class BlockedSlot(Base):
    """Doctor-initiated slot exclusions."""
    __tablename__ = "doctor_blocked_slots"

    id = Column(String(40), primary_key=True, default=lambda: generate_id("blk"))
    doctor_id = Column(String(100), nullable=False, index=True)
    clinic_id = Column(String(100), nullable=False, index=True)
    blocked_date = Column(String(10), nullable=False, index=True)
    time_slot = Column(String(5), nullable=False)
    reason = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("doctor_id", "clinic_id", "blocked_date", "time_slot", name="uq_blocked_slot"),
    )

    def __repr__(self):
        return f"<BlockedSlot(date={self.blocked_date}, slot={self.time_slot})>"


class Holiday(Base):
    """Dates a clinic is closed."""
    __tablename__ = "clinic_holidays"

    clinic_id = Column(String(100), primary_key=True)
    holiday_date = Column(String(10), primary_key=True)
    label = Column(String(200), nullable=True)

    def __repr__(self):
        return f"<Holiday(clinic={self.clinic_id}, date={self.holiday_date})>"
