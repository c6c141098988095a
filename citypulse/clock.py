"""Clock abstraction shared by every periodic task and cascade timer.

The engine never calls ``datetime.now()`` directly. A ``SystemClock`` follows
wall-clock time; a ``SimulatedClock`` only moves when the scheduler advances
it, which makes simulation-time tests deterministic.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional

from .schemas import TimeOfDay


class Clock(ABC):
    """Source of the current (wall or simulated) time."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current time as an aware datetime."""

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Wait ``seconds`` of clock time."""


class SystemClock(Clock):
    """Wall-clock time, local to the host unless a timezone is given.

    Routine hours and time-of-day buckets are read from ``now().hour``, so
    the default follows the deployment's local wall clock.
    """

    def __init__(self, tz: Optional[tzinfo] = None) -> None:
        self.tz = tz

    def now(self) -> datetime:
        if self.tz is None:
            return datetime.now().astimezone()
        return datetime.now(self.tz)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class SimulatedClock(Clock):
    """Manually advanced clock used for simulation-time runs and tests."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._now = start or datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc)
        if self._now.tzinfo is None:
            self._now = self._now.replace(tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> datetime:
        if seconds < 0:
            raise ValueError("SimulatedClock cannot move backwards")
        self._now = self._now + timedelta(seconds=seconds)
        return self._now

    def set(self, moment: datetime) -> None:
        if moment < self._now:
            raise ValueError("SimulatedClock cannot move backwards")
        self._now = moment

    async def sleep(self, seconds: float) -> None:
        # Simulated time passes instantly; yield so other tasks can run.
        self.advance(max(0.0, seconds))
        await asyncio.sleep(0)


def time_of_day(hour: int) -> TimeOfDay:
    """Bucket an hour into morning [5,12), afternoon [12,17), evening [17,22), night."""
    if 5 <= hour < 12:
        return TimeOfDay.MORNING
    if 12 <= hour < 17:
        return TimeOfDay.AFTERNOON
    if 17 <= hour < 22:
        return TimeOfDay.EVENING
    return TimeOfDay.NIGHT
