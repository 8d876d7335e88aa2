# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Host-facing contracts (public, stable).

The scheduler never computes what a reindex does nor how ancestors are found.
The host supplies both as a capability set: entities that can resolve their own
ancestor chain, and one reindex callback.
"""

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from ..core.types import EntityId


class ReindexStrength(str, Enum):
    """How much of an entity's derived projection a run recomputes."""

    partial = "partial"
    full = "full"

    @property
    def rank(self) -> int:
        return 1 if self is ReindexStrength.full else 0


@dataclass(frozen=True)
class ReindexOptions:
    """
    Options handed to the reindex callback for one run.

    Attributes:
        only_replies: True for a Partial pass (recompute counts/aggregates only).
        skip_ancestors: The caller already takes care of ancestor aggregates; the
                        callback may skip any ancestor work of its own.
    """

    only_replies: bool = False
    skip_ancestors: bool = False

    @property
    def strength(self) -> ReindexStrength:
        return ReindexStrength.partial if self.only_replies else ReindexStrength.full


@runtime_checkable
class ReindexEntity(Protocol):
    """
    A tree node known to the scheduler.

    `load_path(include_self=False)` must return the ordered chain from the tree
    root down to the entity's parent; with `include_self=True` the entity itself
    is appended.
    """

    @property
    def id(self) -> EntityId: ...

    async def load_path(self, *, include_self: bool) -> Sequence[ReindexEntity]: ...


ReindexFn = Callable[[Any, ReindexOptions], Awaitable[None]]
