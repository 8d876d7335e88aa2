from __future__ import annotations

"""
reindexkit.core.time
====================

Clock abstractions:
- Clock Protocol for dependency-injection and testing.
- SystemClock: production default implementation.
- ManualClock: deterministic time control for tests.
"""

import asyncio
import time
from typing import Protocol

from .types import Millis, MonotonicMs


class Clock(Protocol):
    """Minimal clock protocol used by the scheduler."""

    def mono_ms(self) -> MonotonicMs: ...
    async def sleep_ms(self, ms: Millis) -> None: ...


class SystemClock:
    """Default clock backed by the process monotonic timer and asyncio.sleep."""

    def mono_ms(self) -> MonotonicMs:
        """Process-local monotonic milliseconds (not related to wall clock)."""
        return time.monotonic_ns() // 1_000_000

    async def sleep_ms(self, ms: Millis) -> None:
        """Async sleep for the given number of milliseconds."""
        await asyncio.sleep(max(0.0, ms / 1000.0))


class ManualClock(SystemClock):
    """
    Controllable clock for tests.

    - Monotonic time starts at `start_ms` and advances only through `advance`
      or `sleep_ms`.
    - `sleep_ms` fast-forwards immediately, yielding once to the event loop.
    """

    def __init__(self, start_ms: Millis = 0) -> None:
        self._mono: Millis = start_ms

    def mono_ms(self) -> MonotonicMs:
        return self._mono

    def advance(self, ms: Millis) -> None:
        self._mono += max(0, int(ms))

    async def sleep_ms(self, ms: Millis) -> None:
        self.advance(ms)
        await asyncio.sleep(0)
