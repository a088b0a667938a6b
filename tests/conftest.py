"""Shared test fixtures."""
from datetime import datetime, timezone

import pytest

from clinicbook.booking import BookingService
from clinicbook.clock import FixedClock
from clinicbook.sql_store import SQLBookingStore

# Friday 2026-01-30, 07:00 clinic time (UTC for tests)
NOW = datetime(2026, 1, 30, 7, 0, tzinfo=timezone.utc)

MORNING_SCHEDULE = {
    "default": {"start": "09:00", "end": "12:00"},
}


@pytest.fixture
def clock() -> FixedClock:
    """Clock frozen at NOW; tests move it with clock.advance()."""
    return FixedClock(NOW)


@pytest.fixture
def store():
    """Create SQLBookingStore with in-memory database."""
    store = SQLBookingStore(database_url="sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def service(store, clock) -> BookingService:
    """BookingService over the in-memory store and the fixed clock."""
    return BookingService(store, clock=clock)


@pytest.fixture
def clinic(service) -> str:
    """clinic-a open 09:00-12:00 every day, 30 minute slots."""
    service.save_clinic_schedule("clinic-a", MORNING_SCHEDULE, 30)
    return "clinic-a"


@pytest.fixture
def second_clinic(service) -> str:
    """clinic-b with the same hours as clinic-a."""
    service.save_clinic_schedule("clinic-b", MORNING_SCHEDULE, 30)
    return "clinic-b"
