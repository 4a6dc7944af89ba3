"""
Time source for the scheduler.

Everything that asks "what time is it?" goes through a Clock so tests can
drive the scheduler with a controllable one.  All datetimes handed around
the system are timezone-aware UTC; to_utc() is the single place naive or
foreign-zone values are converted.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone


class Clock(ABC):
    """Abstract time source."""

    @abstractmethod
    def now(self) -> datetime:
        """Current time, timezone-aware UTC."""
        ...


class SystemClock(Clock):
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def to_utc(value: datetime, assume_utc: bool = False) -> datetime:
    """
    Convert a datetime to timezone-aware UTC.

    Naive datetimes are rejected unless assume_utc is set, in which case
    they are interpreted as UTC wall time.
    """
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        if not assume_utc:
            raise ValueError(f"Naive datetime not allowed: {value.isoformat()}")
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
