"""Injectable time source.

Hold expiry and "today" both read from a Clock so tests can move time
deterministically.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Optional


class Clock:
    """Wall clock in the clinic's local timezone."""

    def __init__(self, tz: Optional[timezone] = None):
        """
        Args:
            tz: Clinic timezone. Defaults to the host's local timezone.
        """
        self.tz = tz

    def now(self) -> datetime:
        """Current aware datetime in the clinic timezone."""
        if self.tz is None:
            return datetime.now().astimezone()
        return datetime.now(self.tz)

    def today(self) -> date:
        """Current calendar date in the clinic timezone."""
        return self.now().date()


class FixedClock(Clock):
    """Clock frozen at a given instant; advance() moves it forward."""

    def __init__(self, at: datetime):
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        super().__init__(tz=at.tzinfo)
        self._now = at

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> datetime:
        """Move the clock forward by timedelta(**kwargs)."""
        self._now = self._now + timedelta(**kwargs)
        return self._now
