# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Per-key debounce timers on the running event loop.

Each key has at most one armed timer. Arming a key that already has a timer
replaces it. A timer is an asyncio task sleeping on the injected clock, then
invoking the callback synchronously; timer handles are held in an explicit
table so `cancel`/`cancel_all` never leave orphaned sleepers behind.
"""

import asyncio
from collections.abc import Callable
from typing import Generic, TypeVar, Union

from ..core.logging import get_logger
from ..core.time import Clock
from ..core.types import Millis, format_entity_id

K = TypeVar("K")

DelaySpec = Union[int, Callable[[K], int]]


def resolve_delay(spec: DelaySpec, key: K) -> Millis:
    """Evaluate a fixed or per-key delay, clamped to >= 0."""
    value = spec(key) if callable(spec) else spec
    return max(0, int(value))


class DebounceTimer(Generic[K]):
    """
    Usage:
      timers = DebounceTimer(on_fire, clock)
      timers.arm("post-1", 25)
      timers.armed("post-1")  # True until the callback has been invoked
      timers.cancel("post-1")
    """

    def __init__(self, on_fire: Callable[[K], None], clock: Clock) -> None:
        self._on_fire = on_fire
        self._clock = clock
        self._tasks: dict[K, asyncio.Task[None]] = {}
        self._log = get_logger("scheduler.debounce")

    def arm(self, key: K, delay_ms: Millis) -> None:
        self.cancel(key)
        self._tasks[key] = asyncio.create_task(self._sleep_then_fire(key, delay_ms))

    def cancel(self, key: K) -> bool:
        task = self._tasks.pop(key, None)
        if task is None:
            return False
        task.cancel()
        return True

    def cancel_all(self) -> int:
        n = len(self._tasks)
        for task in self._tasks.values():
            task.cancel()
        self._tasks.clear()
        if n:
            self._log.debug("debounce timers cancelled", count=n)
        return n

    def armed(self, key: K) -> bool:
        return key in self._tasks

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    async def _sleep_then_fire(self, key: K, delay_ms: Millis) -> None:
        await self._clock.sleep_ms(delay_ms)
        # A re-arm during the sleep replaced our handle; the new timer owns the key.
        if self._tasks.get(key) is not asyncio.current_task():
            return
        del self._tasks[key]
        self._log.debug("debounce fired", entity_id=format_entity_id(key), delay_ms=delay_ms)
        self._on_fire(key)
