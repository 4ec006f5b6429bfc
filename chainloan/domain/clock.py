"""
Clock abstraction for live vs simulated time.

The transaction tracker measures its wait window and sleeps between polls
through a Clock, so the same polling loop runs against wall-clock time in
production and against simulated time in tests.

Usage:
    # Live
    clock = SystemClock()
    await clock.sleep(2.0)

    # Tests
    clock = SimulatedClock()
    await clock.sleep(2.0)  # Returns immediately, clock.monotonic() advanced by 2
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta


class Clock(ABC):
    """Abstract clock interface."""

    @abstractmethod
    def now(self) -> datetime:
        """Current wall-clock time."""
        ...

    @abstractmethod
    def monotonic(self) -> float:
        """Monotonic seconds, used for deadlines."""
        ...

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """
        Suspend for `seconds`.

        In live mode, this performs real sleep.
        In simulated mode, this advances time immediately.
        """
        ...


class SystemClock(Clock):
    """Real-time clock backed by the running event loop."""

    def now(self) -> datetime:
        return datetime.now()

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class SimulatedClock(Clock):
    """
    Simulated clock for deterministic tests.

    sleep() advances time instantly but still yields to the event loop, so
    other tasks (a concurrent disconnect, a second request) get to run.
    """

    def __init__(self, start_time: datetime | None = None):
        self._start = start_time or datetime(2024, 1, 1, 9, 30)
        self._elapsed = 0.0
        self.sleep_calls = 0

    def now(self) -> datetime:
        return self._start + timedelta(seconds=self._elapsed)

    def monotonic(self) -> float:
        return self._elapsed

    async def sleep(self, seconds: float) -> None:
        self.sleep_calls += 1
        self.advance_by(seconds)
        await asyncio.sleep(0)

    def advance_by(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError(f"Cannot move clock backwards: {seconds}")
        self._elapsed += seconds
