# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Bulk suppression windows.

While a window is open for a scope, requests for the scope entity and for any
entity below it are recorded instead of scheduled. Closing the outermost level
of a window hands back one merged request per touched entity, in first-touch
order, for replay through the normal scheduling path.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from ..api.entity import ReindexStrength
from ..api.errors import SchedulingMisuseError
from ..core.types import EntityId, ScopeId
from .state import escalate


@dataclass
class SuppressedRequest:
    entity: Any
    strength: ReindexStrength
    propagate: bool
    skip_ancestors: bool = False
    hits: int = 1


@dataclass
class _Window:
    depth: int = 0
    touched: dict[EntityId, SuppressedRequest] = field(default_factory=dict)


class BulkRegistry:
    def __init__(self) -> None:
        self._windows: dict[ScopeId, _Window] = {}

    @property
    def active(self) -> bool:
        return bool(self._windows)

    def is_open(self, scope: ScopeId) -> bool:
        return scope in self._windows

    def depth(self, scope: ScopeId) -> int:
        w = self._windows.get(scope)
        return w.depth if w else 0

    def begin(self, scope: ScopeId) -> int:
        w = self._windows.setdefault(scope, _Window())
        w.depth += 1
        return w.depth

    def scope_for(self, entity_id: EntityId, ancestor_ids: Iterable[EntityId] = ()) -> ScopeId | None:
        """The innermost open scope covering the entity: itself first, then its nearest ancestor."""
        if entity_id in self._windows:
            return entity_id
        for aid in reversed(list(ancestor_ids)):
            if aid in self._windows:
                return aid
        return None

    def record(
        self,
        scope: ScopeId,
        entity_id: EntityId,
        entity: Any,
        strength: ReindexStrength,
        propagate: bool,
        *,
        skip_ancestors: bool = False,
    ) -> SuppressedRequest:
        touched = self._windows[scope].touched
        req = touched.get(entity_id)
        if req is None:
            req = touched[entity_id] = SuppressedRequest(
                entity=entity, strength=strength, propagate=propagate, skip_ancestors=skip_ancestors
            )
            return req
        req.entity = entity
        req.strength = escalate(req.strength, strength)
        req.propagate = req.propagate or propagate
        req.skip_ancestors = req.skip_ancestors or skip_ancestors
        req.hits += 1
        return req

    def end(self, scope: ScopeId) -> list[SuppressedRequest] | None:
        """
        Close one nesting level. Returns the merged requests when the outermost
        level closes, None while the window stays open.
        """
        w = self._windows.get(scope)
        if w is None:
            raise SchedulingMisuseError(f"end_bulk({scope!r}) without a matching begin_bulk")
        w.depth -= 1
        if w.depth > 0:
            return None
        del self._windows[scope]
        return list(w.touched.values())

    def clear(self) -> None:
        self._windows.clear()
