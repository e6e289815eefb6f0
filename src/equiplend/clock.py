"""Time sources.

Services never call ``datetime.now()`` directly; they ask an injected clock so
overdue detection and expiry checks are deterministic under test.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional


class Clock(ABC):
    """Source of the current time."""

    @abstractmethod
    def now(self) -> datetime:
        """Current time as a timezone-aware datetime."""

    def today(self) -> date:
        """Current calendar day."""
        return self.now().date()


class SystemClock(Clock):
    """Wall clock time."""

    def __init__(self, tz: Optional[tzinfo] = None):
        self.tz = tz or timezone.utc

    def now(self) -> datetime:
        return datetime.now(self.tz)


class FixedClock(Clock):
    """Clock that only moves when told to. Used for testing."""

    def __init__(self, moment: datetime):
        self._moment = ensure_aware(moment)

    def now(self) -> datetime:
        return self._moment

    def set(self, moment: datetime) -> None:
        self._moment = ensure_aware(moment)

    def advance(self, **kwargs) -> datetime:
        """Move the clock forward by ``timedelta(**kwargs)``."""
        self._moment = self._moment + timedelta(**kwargs)
        return self._moment


def ensure_aware(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment
