"""Pydantic models for API request/response validation."""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from clinicbook.availability import SlotView
from clinicbook.booking import BookingDecision
from clinicbook.schedule import ClinicSchedule


class BookingRequest(BaseModel):
    """Request schema for POST /bookings."""
    patient_id: str = Field(..., min_length=1, max_length=100, description="Patient identifier")
    clinic_id: str = Field(..., min_length=1, max_length=100, description="Clinic identifier")
    doctor_id: str = Field(..., min_length=1, max_length=100, description="Doctor identifier")
    date: str = Field(..., description="Appointment date, YYYY-MM-DD", examples=["2026-02-01"])
    time_slot: str = Field(..., description="Slot start, HH:MM", examples=["09:30"])

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "patient_id": "pat-42",
                "clinic_id": "clinic-downtown",
                "doctor_id": "doc-7",
                "date": "2026-02-01",
                "time_slot": "09:30"
            }
        }
    )


class RescheduleRequest(BaseModel):
    """Request schema for PUT /bookings/{booking_id}/reschedule."""
    new_date: str = Field(..., description="New date, YYYY-MM-DD")
    new_time_slot: str = Field(..., description="New slot start, HH:MM")


class WalkInRequest(BaseModel):
    """Request schema for POST /walk-ins."""
    clinic_id: str = Field(..., min_length=1, max_length=100)
    doctor_id: str = Field(..., min_length=1, max_length=100)
    date: str = Field(..., description="YYYY-MM-DD")
    time_slot: str = Field(..., description="HH:MM")
    name: str = Field(..., min_length=1, max_length=200, description="Walk-in patient name")
    phone: Optional[str] = Field(None, max_length=50)


class BlockSlotRequest(BaseModel):
    """Request schema for POST/DELETE /blocked-slots."""
    clinic_id: str = Field(..., min_length=1, max_length=100)
    doctor_id: str = Field(..., min_length=1, max_length=100)
    date: str = Field(..., description="YYYY-MM-DD")
    time_slot: str = Field(..., description="HH:MM")
    reason: Optional[str] = Field(None, max_length=500)


class HolidayRequest(BaseModel):
    """Request schema for POST /clinics/{clinic_id}/holidays."""
    date: str = Field(..., description="YYYY-MM-DD")
    label: Optional[str] = Field(None, max_length=200)


class ScheduleRequest(BaseModel):
    """
    Request schema for PUT /clinics/{clinic_id}/schedule.

    Day entries are kept as raw dicts so malformed times come back as
    warnings instead of a 422.
    """
    schedule: Dict[str, Any] = Field(..., description="Weekly schedule (default, weekly_off, sun..sat)")
    slot_minutes: Optional[int] = Field(None, description="Slot duration, clamped to 20-120")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "schedule": {
                    "default": {"start": "09:00", "end": "17:00", "break_start": "13:00", "break_end": "14:00"},
                    "weekly_off": ["sun"],
                    "sat": {"start": "09:00", "end": "12:00"}
                },
                "slot_minutes": 30
            }
        }
    )


class ScheduleResponse(BaseModel):
    """Response schema for PUT /clinics/{clinic_id}/schedule."""
    clinic_id: str
    slot_minutes: int
    schedule: ClinicSchedule
    warnings: List[str] = Field(default_factory=list)


class SlotsResponse(BaseModel):
    """Response schema for GET .../slots."""
    date: str
    weekday: str
    closed: bool
    slot_minutes: int
    slots: List[SlotView]
    by_period: Dict[str, List[str]] = Field(default_factory=dict)


class BookingResponse(BookingDecision):
    """Accepted booking decision."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "accepted",
                "reason": None,
                "message": "Appointment requested, awaiting doctor confirmation",
                "booking": {
                    "id": "appt_3f2a9c81d4e0",
                    "date": "2026-02-01",
                    "time_slot": "09:30",
                    "clinic_id": "clinic-downtown",
                    "doctor_id": "doc-7",
                    "status": "pending",
                    "patient_id": "pat-42",
                    "booking_type": "online"
                }
            }
        }
    )


class ErrorResponse(BaseModel):
    """Error response schema."""
    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Detailed error information")
    code: Optional[str] = Field(None, description="Error code")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "Slot Unavailable",
                "detail": "This slot was just booked by another patient",
                "code": "SLOT_UNAVAILABLE"
            }
        }
    )
