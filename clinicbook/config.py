"""Configuration for the clinic booking engine.

Business rules are centralized here - modify as needed without touching code.
Deployment settings are read from the environment (a local .env is honored).
"""
import os

from dotenv import load_dotenv

load_dotenv()

# Slot grid
DEFAULT_SLOT_MINUTES = 30
MIN_SLOT_MINUTES = 20
MAX_SLOT_MINUTES = 120

# A pending booking holds its slot for this long before it is swept to cancelled
PENDING_HOLD_MINUTES = 15

# Patients can book this many calendar days ahead, today included
BOOKING_WINDOW_DAYS = 14

# Period labels: morning < 12:00 <= afternoon < 17:00 <= evening
MORNING_CUTOFF_HOUR = 12
EVENING_CUTOFF_HOUR = 17

# Persistence
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///clinicbook.db")

# Store circuit breaker
STORE_FAILURE_THRESHOLD = int(os.getenv("STORE_FAILURE_THRESHOLD", "5"))
STORE_CIRCUIT_TIMEOUT = int(os.getenv("STORE_CIRCUIT_TIMEOUT", "30"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
