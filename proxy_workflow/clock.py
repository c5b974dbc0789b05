"""
Clock abstraction.

The engine never reads the wall clock directly. Every timestamp it writes
and every expiry it evaluates comes from an injected Clock, so tests can
freeze and advance time.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class Clock(ABC):
    """Source of the current time."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current time (timezone-aware, UTC)."""
        pass


class SystemClock(Clock):
    """Wall-clock time."""

    def now(self) -> datetime:
        return utc_now()


class FixedClock(Clock):
    """
    A clock that only moves when told to.

    Usage:
        clock = FixedClock(datetime(2024, 1, 1, tzinfo=timezone.utc))
        clock.advance(days=8)
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or utc_now()

    def now(self) -> datetime:
        return self._now

    def set(self, moment: datetime) -> None:
        self._now = moment

    def advance(self, **delta) -> datetime:
        """Move forward by a timedelta expressed as keyword arguments."""
        self._now = self._now + timedelta(**delta)
        return self._now
