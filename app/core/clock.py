"""
Time source for the journey engine.

All timestamps inside the engine are naive UTC datetimes, matching what the
database columns store. Services take a ``Clock`` so tests can move time
forward explicitly instead of sleeping.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional, Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Coerce a datetime, date or ISO-8601 string to naive UTC.

    Returns None for anything that cannot be read as a point in time.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return to_naive_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


class SystemClock:
    """Wall clock."""

    def now(self) -> datetime:
        return utcnow()


class FrozenClock:
    """
    Manually driven clock.

    Usage:
        clock = FrozenClock(datetime(2026, 1, 1))
        clock.advance(minutes=5)
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = to_naive_utc(start) if start else utcnow()

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = to_naive_utc(value)

    def advance(self, delta: Optional[timedelta] = None, **kwargs) -> datetime:
        self._now = self._now + (delta or timedelta(**kwargs))
        return self._now
