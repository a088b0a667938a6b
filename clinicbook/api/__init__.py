"""API package initialization."""
from clinicbook.api.models import BookingRequest, ErrorResponse, RescheduleRequest

__all__ = ["BookingRequest", "ErrorResponse", "RescheduleRequest"]
