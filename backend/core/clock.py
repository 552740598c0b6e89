"""
Time source for the visit lifecycle engine.

Every timestamp the engine writes comes from a Clock passed in by the
caller, so tests can pin "now" with FixedClock.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...

    def today(self) -> date: ...


class SystemClock:
    """Wall clock. Returns naive UTC datetimes to match the DateTime columns."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)

    def today(self) -> date:
        return self.now().date()


class FixedClock:
    """Deterministic clock for tests and replays."""

    def __init__(self, at: datetime):
        self._at = at

    def now(self) -> datetime:
        return self._at

    def today(self) -> date:
        return self._at.date()

    def advance(self, **kwargs) -> None:
        self._at = self._at + timedelta(**kwargs)


system_clock = SystemClock()
