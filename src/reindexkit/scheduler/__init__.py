# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from .bulk import BulkRegistry
from .cooldown import CooldownController, DelayDecision
from .debounce import DebounceTimer
from .manager import HierarchicalReindexManager, create
from .propagation import HierarchicalPropagator
from .state import TaskSnapshot, TaskState, escalate
from .stats import ReindexStats

__all__ = [
    "BulkRegistry",
    "CooldownController",
    "DebounceTimer",
    "DelayDecision",
    "HierarchicalPropagator",
    "HierarchicalReindexManager",
    "ReindexStats",
    "TaskSnapshot",
    "TaskState",
    "create",
    "escalate",
]
