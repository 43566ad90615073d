"""Time sources used to stamp NTP replies."""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock(ABC):
    """Provider of the current UTC wall-clock time."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current time as a timezone-aware UTC datetime."""
        pass


class SystemClock(Clock):
    """Clock backed by the host system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock that returns a preset instant until it is moved.

    Useful for deterministic tests of timestamp handling.
    """

    def __init__(self, at: Optional[datetime] = None):
        self._lock = threading.Lock()
        self._at = _as_utc(at) if at is not None else datetime(1970, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        with self._lock:
            return self._at

    def set(self, at: datetime) -> None:
        with self._lock:
            self._at = _as_utc(at)

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._at = self._at + timedelta(seconds=seconds)


def _as_utc(at: datetime) -> datetime:
    # Naive datetimes are taken to already be UTC
    if at.tzinfo is None:
        return at.replace(tzinfo=timezone.utc)
    return at.astimezone(timezone.utc)
