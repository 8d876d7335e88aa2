# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
reindexkit public extension API.

Re-exports the stable contracts a host implements or catches: entities,
the reindex callback signature, strengths and the error taxonomy.
"""

from .entity import ReindexEntity, ReindexFn, ReindexOptions, ReindexStrength
from .errors import CallbackFailure, ReindexkitError, SchedulingMisuseError

__all__ = [
    "CallbackFailure",
    "ReindexEntity",
    "ReindexFn",
    "ReindexOptions",
    "ReindexStrength",
    "ReindexkitError",
    "SchedulingMisuseError",
]
