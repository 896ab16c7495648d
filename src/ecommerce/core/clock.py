"""Clock abstraction for time-dependent infrastructure.

WallClock: real wall-clock time (production)
ManualClock: deterministic time that only moves when told to (tests)

Cache expiry and outbox grace periods read ``clock.now()`` instead of
calling ``datetime.now()`` directly.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


class IClock(Protocol):
    """Clock interface used by all time-dependent code."""

    def now(self) -> datetime:
        """Current time as timezone-aware UTC datetime."""
        ...


class WallClock:
    """Real wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """Clock for deterministic tests.

    Time advances only when explicitly moved forward.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._time = start or datetime(2025, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._time

    def set_time(self, t: datetime) -> None:
        """Move time. Must be monotonically increasing."""
        if t < self._time:
            raise ValueError(
                f"ManualClock cannot go backwards: {t} < {self._time}"
            )
        self._time = t

    def advance(self, delta: timedelta) -> None:
        """Advance time by *delta*."""
        self.set_time(self._time + delta)
