"""
Clocks

All time-dependent services read the time through a Clock so that
schedules, grace periods and drawdown windows can be driven by a
virtual clock in tests.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol


class Clock(Protocol):
    """Source of the current time and of waiting."""

    def now(self) -> datetime:
        """Current time (timezone-aware, UTC)."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Wait for the given number of seconds."""
        ...


class SystemClock:
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class VirtualClock:
    """
    Manually advanced clock.

    sleep() advances the virtual time instead of waiting, so a scheduler
    loop driven by this clock runs as fast as the event loop allows.

    Usage:
        clock = VirtualClock(datetime(2026, 3, 2, 4, 30, tzinfo=timezone.utc))
        clock.advance(seconds=31)
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2026, 1, 5, 4, 30, tzinfo=timezone.utc)
        if self._now.tzinfo is None:
            raise ValueError("VirtualClock requires a timezone-aware start time")

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 0.0, **kwargs) -> datetime:
        """Move time forward; accepts timedelta keyword arguments too."""
        self._now += timedelta(seconds=seconds, **kwargs)
        return self._now

    def set(self, moment: datetime) -> None:
        """Jump to a moment (must not go backwards)."""
        if moment < self._now:
            raise ValueError("VirtualClock cannot move backwards")
        self._now = moment

    async def sleep(self, seconds: float) -> None:
        self.advance(seconds=max(seconds, 0.0))
        # Yield so other tasks observe the new time
        await asyncio.sleep(0)
