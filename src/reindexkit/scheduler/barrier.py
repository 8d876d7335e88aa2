# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Drain barrier primitives used by `flush()`.

A DrainWaiter is attached to one entity's state. The manager records callback
failures on every waiter attached at the time of the failure and releases the
waiters once the entity is idle again.
"""

import asyncio
from collections.abc import Iterable

from ..api.errors import CallbackFailure
from ..core.types import EntityId


class DrainWaiter:
    __slots__ = ("entity_id", "failures", "_future")

    def __init__(self, entity_id: EntityId) -> None:
        self.entity_id = entity_id
        self.failures: list[CallbackFailure] = []
        self._future: asyncio.Future[None] = asyncio.get_running_loop().create_future()

    @property
    def released(self) -> bool:
        return self._future.done()

    def record(self, failure: CallbackFailure) -> None:
        self.failures.append(failure)

    def release(self) -> None:
        if not self._future.done():
            self._future.set_result(None)

    async def wait(self) -> None:
        await self._future


def release_all(waiters: list[DrainWaiter]) -> None:
    """Release and detach every waiter in place."""
    pending, waiters[:] = list(waiters), []
    for w in pending:
        w.release()


def raise_first_failure(waiters: Iterable[DrainWaiter]) -> None:
    """Re-raise the earliest recorded callback failure, if any, once draining is over."""
    for w in waiters:
        if w.failures:
            raise w.failures[0]
