"""FastAPI dependency injection functions."""
import threading
from functools import lru_cache

from clinicbook import config
from clinicbook.booking import BookingService
from clinicbook.sql_store import SQLBookingStore


@lru_cache(maxsize=1)
def get_store() -> SQLBookingStore:
    """
    Get booking store (cached singleton).

    Pattern: Create engine once, reuse its connection pool across requests.
    """
    return SQLBookingStore(database_url=config.DATABASE_URL)


# Initialize singletons
_booking_service = None
_booking_service_lock = threading.Lock()


def get_booking_service() -> BookingService:
    """
    Get or create booking service singleton.

    Sync endpoints run in a thread pool; the lock keeps every request on
    the same service and circuit breaker.
    """
    global _booking_service
    if _booking_service is None:
        with _booking_service_lock:
            if _booking_service is None:
                _booking_service = BookingService(store=get_store())
    return _booking_service
