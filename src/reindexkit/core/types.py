from __future__ import annotations

"""
reindexkit.core.types
=====================

Shared type aliases and small constants used across the codebase.
Keep this module **tiny** and dependency-free.
"""

from typing import Final, Union

# ---- Identifiers -------------------------------------------------------------

# Opaque, hashable key of a tree entity (string or byte handle).
EntityId = Union[str, bytes]
ScopeId = EntityId

# ---- Time --------------------------------------------------------------------

Millis = int
MonotonicMs = int  # process-local monotonic time (ms)

# ---- Defaults ----------------------------------------------------------------

DEFAULT_DELAY_MS: Final[int] = 50
DEFAULT_ADAPTIVE_COOLDOWN_MIN_MS: Final[int] = 1
DEFAULT_COOLDOWN_WINDOW_MS: Final[int] = 0
DEFAULT_RETRY_DELAY_MS: Final[int] = 1


def format_entity_id(entity_id: EntityId) -> str:
    """Printable form of an id for logs, events and metric-free diagnostics."""
    if isinstance(entity_id, bytes):
        return entity_id.hex()
    return str(entity_id)
