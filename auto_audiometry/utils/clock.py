"""Clock and timer abstractions.

Core logic depends on these interfaces rather than calling real time
directly, so that complete test runs can be replayed instantly in tests and
headless simulations.
"""
from __future__ import annotations

import asyncio
import time
from typing import Protocol


class Clock(Protocol):
    """Monotonic clock in milliseconds."""

    def now_ms(self) -> float:
        ...


class Timer(Protocol):
    """Suspension points used by the protocol engine."""

    async def sleep(self, duration_ms: float) -> None:
        ...

    async def wait_for(self, future: asyncio.Future, timeout_ms: float) -> bool:
        """Wait until ``future`` completes or ``timeout_ms`` elapses.

        Returns True if the future completed inside the window. The future
        is never cancelled by the timer.
        """
        ...


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now_ms(self) -> float:
        return time.monotonic() * 1000.0


class AsyncioTimer:
    """Production timer backed by the running asyncio event loop."""

    async def sleep(self, duration_ms: float) -> None:
        await asyncio.sleep(max(0.0, duration_ms) / 1000.0)

    async def wait_for(self, future: asyncio.Future, timeout_ms: float) -> bool:
        try:
            await asyncio.wait_for(asyncio.shield(future), timeout=max(0.0, timeout_ms) / 1000.0)
        except asyncio.TimeoutError:
            return False
        return True


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start_ms: float = 0.0) -> None:
        self._now = float(start_ms)

    def now_ms(self) -> float:
        return self._now

    def advance(self, duration_ms: float) -> None:
        if duration_ms < 0:
            raise ValueError("Cannot move a clock backwards")
        self._now += float(duration_ms)

    def advance_to(self, timestamp_ms: float) -> None:
        if timestamp_ms > self._now:
            self._now = float(timestamp_ms)


class VirtualTimer:
    """Timer that advances a ManualClock instead of sleeping.

    While waiting on a response window it yields to the event loop for a
    fixed number of rounds so that other tasks (a simulated subject, a test
    script) get the chance to signal a response. If nothing arrives the
    clock jumps to the end of the window.
    """

    def __init__(self, clock: ManualClock, settle_rounds: int = 10) -> None:
        if settle_rounds < 1:
            raise ValueError("settle_rounds must be >= 1")
        self.clock = clock
        self.settle_rounds = settle_rounds

    async def sleep(self, duration_ms: float) -> None:
        self.clock.advance(max(0.0, duration_ms))
        await asyncio.sleep(0)

    async def wait_for(self, future: asyncio.Future, timeout_ms: float) -> bool:
        start = self.clock.now_ms()
        for _ in range(self.settle_rounds):
            if future.done():
                break
            await asyncio.sleep(0)

        if not future.done():
            self.clock.advance(max(0.0, timeout_ms))
            return False

        result = future.result() if not future.cancelled() else None
        if isinstance(result, (int, float)):
            self.clock.advance_to(min(float(result), start + timeout_ms))
        return True
