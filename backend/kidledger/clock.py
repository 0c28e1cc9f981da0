"""Injectable time source.

All timestamps written to the ledger are naive UTC datetimes (SQLite does
not round-trip timezone offsets), so every clock returns naive UTC and the
helpers below convert to an account's local calendar when day boundaries
matter.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo


class Clock(ABC):
    """Source of the current time."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current time as a naive UTC datetime."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class ManualClock(Clock):
    """Clock that only moves when told to; used by tests and replays."""

    def __init__(self, start: datetime | None = None):
        self._now = to_naive_utc(start or datetime(2024, 1, 1, 12, 0, 0))

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = to_naive_utc(value)

    def advance(self, **kwargs) -> datetime:
        """Move forward by ``timedelta(**kwargs)`` and return the new time."""
        self._now = self._now + timedelta(**kwargs)
        return self._now


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def local_date(now: datetime, tz_name: str) -> date:
    """Calendar date of a naive UTC instant in the given timezone."""
    aware = now.replace(tzinfo=timezone.utc)
    return aware.astimezone(ZoneInfo(tz_name)).date()


def local_midnight_utc(day: date, tz_name: str) -> datetime:
    """Naive UTC instant of local midnight at the start of ``day``."""
    local = datetime.combine(day, time.min, tzinfo=ZoneInfo(tz_name))
    return to_naive_utc(local)
