"""FastAPI server exposing the clinic booking engine.

Features:
- CORS middleware for the patient and doctor web apps
- Request ID tagging for structured logs
- Global exception handling
- Health check endpoint

Booking rejections are mapped to 409/404/400 with an ErrorResponse body;
an unreachable store is a 503, never an empty slot list.
"""
from contextlib import asynccontextmanager
from typing import List

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clinicbook import config
from clinicbook.api.dependencies import get_booking_service, get_store
from clinicbook.api.models import (
    BlockSlotRequest,
    BookingRequest,
    BookingResponse,
    ErrorResponse,
    HolidayRequest,
    RescheduleRequest,
    ScheduleRequest,
    ScheduleResponse,
    SlotsResponse,
    WalkInRequest,
)
from clinicbook.availability import group_by_period
from clinicbook.booking import BookingDecision, BookingService, DailyBoard, DaySummary
from clinicbook.errors import RejectionReason, SlotConflictError, StoreUnavailable
from clinicbook.logging_config import RequestIDMiddleware, get_logger, setup_structured_logging
from clinicbook.models import BlockedSlotRecord, ClinicHoliday

logger = get_logger(__name__)

REJECTION_STATUS = {
    RejectionReason.ALREADY_BOOKED: status.HTTP_409_CONFLICT,
    RejectionReason.SLOT_UNAVAILABLE: status.HTTP_409_CONFLICT,
    RejectionReason.BOOKING_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    RejectionReason.INVALID_TRANSITION: status.HTTP_400_BAD_REQUEST,
    RejectionReason.INVALID_REQUEST: status.HTTP_400_BAD_REQUEST,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown logic."""
    setup_structured_logging(config.LOG_LEVEL)
    logger.info("server_starting")

    yield

    if get_store.cache_info().currsize:
        get_store().close()
    logger.info("server_stopped")


app = FastAPI(
    title="Clinic Booking API",
    description="Slot availability and booking arbitration for clinic appointments",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",  # Development
        "http://localhost:8081",  # Expo dev server
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


def decision_response(decision: BookingDecision, success_status: int = status.HTTP_200_OK):
    """Accepted decisions pass through; rejections become an ErrorResponse."""
    if decision.accepted:
        return JSONResponse(
            status_code=success_status,
            content=decision.model_dump(mode="json"),
        )
    return JSONResponse(
        status_code=REJECTION_STATUS[decision.reason],
        content=ErrorResponse(
            error=decision.reason.value.replace("_", " ").title(),
            detail=decision.message,
            code=decision.reason.value.upper()
        ).model_dump()
    )


# Global exception handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors consistently."""
    logger.warning("validation_error", errors=str(exc.errors()))
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ErrorResponse(
            error="Validation Error",
            detail=str(exc.errors()),
            code="VALIDATION_ERROR"
        ).model_dump()
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    """Bad dates or times reaching the engine (query strings, records)."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(
            error="Invalid Request",
            detail=str(exc),
            code="INVALID_REQUEST"
        ).model_dump()
    )


@app.exception_handler(SlotConflictError)
async def slot_conflict_handler(request: Request, exc: SlotConflictError):
    """A write that kept colliding with concurrent changes to the same slot."""
    logger.info("slot_conflict_response", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=ErrorResponse(
            error="Conflict",
            detail="This slot is being changed by another request. Please try again.",
            code="SLOT_CONFLICT"
        ).model_dump()
    )


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
    """Store failures must never look like an empty schedule."""
    logger.error("store_unavailable_response", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=ErrorResponse(
            error="Service Unavailable",
            detail="Booking data is temporarily unavailable. Please try again later.",
            code="STORE_UNAVAILABLE"
        ).model_dump()
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all handler for unexpected exceptions."""
    logger.error("unexpected_error", error=str(exc), exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="Internal Server Error",
            detail="An unexpected error occurred. Please try again later.",
            code="INTERNAL_ERROR"
        ).model_dump()
    )


@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint for load balancers."""
    return {
        "status": "healthy",
        "service": "clinic-booking-api",
        "version": "1.0.0"
    }


# =============================================================================
# Patient-facing availability
# =============================================================================

@app.get("/clinics/{clinic_id}/doctors/{doctor_id}/slots", tags=["Availability"], response_model=SlotsResponse)
def list_slots(
    clinic_id: str,
    doctor_id: str,
    date: str = Query(..., description="YYYY-MM-DD"),
    service: BookingService = Depends(get_booking_service),
):
    """
    Classified slots of one date.

    Closed days (holiday, weekly-off, no hours) return an empty list with
    closed=true rather than an error.
    """
    day = service.list_available_slots(clinic_id, doctor_id, date)
    by_period = {
        period: [view.time for view in views]
        for period, views in group_by_period(day.slots).items()
    }
    return SlotsResponse(
        date=day.date,
        weekday=day.weekday,
        closed=day.closed,
        slot_minutes=day.slot_minutes,
        slots=day.slots,
        by_period=by_period,
    )


@app.get("/clinics/{clinic_id}/doctors/{doctor_id}/days", tags=["Availability"], response_model=List[DaySummary])
def list_days(
    clinic_id: str,
    doctor_id: str,
    service: BookingService = Depends(get_booking_service),
):
    """Available-slot counts for the booking window, today first."""
    return service.list_upcoming_days(clinic_id, doctor_id)


@app.get("/clinics/{clinic_id}/doctors/{doctor_id}/board", tags=["Doctor"], response_model=DailyBoard)
def daily_board(
    clinic_id: str,
    doctor_id: str,
    date: str = Query(..., description="YYYY-MM-DD"),
    service: BookingService = Depends(get_booking_service),
):
    """Doctor's daily board: every slot with its booking or block."""
    return service.daily_board(clinic_id, doctor_id, date)


# =============================================================================
# Bookings
# =============================================================================

@app.post("/bookings", tags=["Bookings"], response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(request: BookingRequest, service: BookingService = Depends(get_booking_service)):
    """
    Request an appointment.

    Returns:
        201 with the pending booking

    Raises:
        409: Slot taken/blocked/past, or patient already booked that day
        400: Malformed date or time
        503: Store unavailable
    """
    decision = service.attempt_booking(
        patient_id=request.patient_id,
        clinic_id=request.clinic_id,
        doctor_id=request.doctor_id,
        date_iso=request.date,
        slot=request.time_slot,
    )
    return decision_response(decision, status.HTTP_201_CREATED)


@app.put("/bookings/{booking_id}/reschedule", tags=["Bookings"], response_model=BookingResponse)
def reschedule_booking(
    booking_id: str,
    request: RescheduleRequest,
    service: BookingService = Depends(get_booking_service),
):
    """Move a booking to a new date/time (same checks as a new booking)."""
    decision = service.reschedule_booking(booking_id, request.new_date, request.new_time_slot)
    return decision_response(decision)


@app.post("/bookings/{booking_id}/approve", tags=["Doctor"], response_model=BookingResponse)
def approve_booking(booking_id: str, service: BookingService = Depends(get_booking_service)):
    return decision_response(service.approve_booking(booking_id))


@app.post("/bookings/{booking_id}/reject", tags=["Doctor"], response_model=BookingResponse)
def reject_booking(booking_id: str, service: BookingService = Depends(get_booking_service)):
    return decision_response(service.reject_booking(booking_id))


@app.post("/bookings/{booking_id}/cancel", tags=["Bookings"], response_model=BookingResponse)
def cancel_booking(booking_id: str, service: BookingService = Depends(get_booking_service)):
    return decision_response(service.cancel_booking(booking_id))


@app.post("/walk-ins", tags=["Doctor"], response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def register_walk_in(request: WalkInRequest, service: BookingService = Depends(get_booking_service)):
    """Record a walk-in patient as a confirmed booking."""
    decision = service.register_walk_in(
        clinic_id=request.clinic_id,
        doctor_id=request.doctor_id,
        date_iso=request.date,
        slot=request.time_slot,
        name=request.name,
        phone=request.phone,
    )
    return decision_response(decision, status.HTTP_201_CREATED)


# =============================================================================
# Doctor blocks, holidays, schedule
# =============================================================================

@app.post("/blocked-slots", tags=["Doctor"], response_model=BlockedSlotRecord, status_code=status.HTTP_201_CREATED)
def block_slot(request: BlockSlotRequest, service: BookingService = Depends(get_booking_service)):
    return service.block_slot(
        doctor_id=request.doctor_id,
        clinic_id=request.clinic_id,
        date_iso=request.date,
        slot=request.time_slot,
        reason=request.reason,
    )


@app.delete("/blocked-slots", tags=["Doctor"])
def unblock_slot(request: BlockSlotRequest, service: BookingService = Depends(get_booking_service)):
    """Remove a block; 404 if the slot was not blocked."""
    removed = service.unblock_slot(request.doctor_id, request.clinic_id, request.date, request.time_slot)
    if not removed:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=ErrorResponse(
                error="Not Found",
                detail="No block exists for this slot",
                code="BLOCK_NOT_FOUND"
            ).model_dump()
        )
    return {"removed": True}


@app.post("/clinics/{clinic_id}/holidays", tags=["Clinic"], response_model=ClinicHoliday, status_code=status.HTTP_201_CREATED)
def add_holiday(clinic_id: str, request: HolidayRequest, service: BookingService = Depends(get_booking_service)):
    return service.add_holiday(clinic_id, request.date, request.label)


@app.delete("/clinics/{clinic_id}/holidays/{date}", tags=["Clinic"])
def remove_holiday(clinic_id: str, date: str, service: BookingService = Depends(get_booking_service)):
    return {"removed": service.remove_holiday(clinic_id, date)}


@app.put("/clinics/{clinic_id}/schedule", tags=["Clinic"], response_model=ScheduleResponse)
def save_schedule(clinic_id: str, request: ScheduleRequest, service: BookingService = Depends(get_booking_service)):
    """
    Save a clinic's weekly schedule.

    Malformed times are dropped and listed in ``warnings``; slot_minutes
    is clamped to the allowed range.
    """
    result = service.save_clinic_schedule(clinic_id, request.schedule, request.slot_minutes)
    return ScheduleResponse(
        clinic_id=clinic_id,
        slot_minutes=result.slot_minutes,
        schedule=result.schedule,
        warnings=result.warnings,
    )


if __name__ == "__main__":
    import uvicorn

    # Run server
    uvicorn.run(
        "clinicbook.api_server:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=config.LOG_LEVEL.lower()
    )
