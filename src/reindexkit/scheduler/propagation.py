# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Hierarchical propagator.

A change to one node must eventually show up in every ancestor's aggregates.
Instead of recomputing the chain eagerly, each ancestor receives a Partial,
non-propagating request through the normal coalescing path, so ancestor work is
debounced and batched across many descendant mutations. The host's path
resolver is trusted to return the complete root-to-parent chain: the propagator
walks it once and never re-walks ancestors of ancestors.
"""

from collections.abc import Callable, Sequence
from typing import Any

from ..api.entity import ReindexStrength
from ..core.logging import get_logger
from ..core.types import EntityId

# (entity, strength, chain of the entity's own ancestors, root first)
ScheduleFn = Callable[[Any, ReindexStrength, Sequence[Any]], None]


class HierarchicalPropagator:
    def __init__(self, schedule: ScheduleFn, entity_id: Callable[[Any], EntityId]) -> None:
        self._schedule = schedule
        self._entity_id = entity_id
        self._log = get_logger("scheduler.propagation")

    async def ancestors(self, entity: Any) -> list[Any]:
        """Resolve the ancestor chain (root first), without the entity itself."""
        own_id = self._entity_id(entity)
        path: Sequence[Any] = await entity.load_path(include_self=False)
        return [a for a in path if self._entity_id(a) != own_id]

    def fan_out(self, ancestors: Sequence[Any]) -> int:
        """Issue one Partial request per ancestor."""
        for depth, ancestor in enumerate(ancestors):
            self._schedule(ancestor, ReindexStrength.partial, ancestors[:depth])
        if ancestors:
            self._log.debug("propagated partial reindex", ancestors=len(ancestors))
        return len(ancestors)

    async def propagate(self, entity: Any, chain: Sequence[Any] | None = None) -> list[Any]:
        """Resolve the ancestor chain (unless already known) and fan out. Returns the ancestors."""
        ancestors = list(chain) if chain is not None else await self.ancestors(entity)
        self.fan_out(ancestors)
        return ancestors
