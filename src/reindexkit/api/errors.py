# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Error taxonomy for the reindex scheduler.

Misuse of the scheduler API is reported to the caller synchronously. Failures
raised by the host-supplied reindex callback are contained per entity and only
re-surface through the instrumentation sink and through `flush()` callers that
were waiting on the failing entity.
"""

from typing import Any


class ReindexkitError(Exception):
    """Base class for all reindexkit errors."""

    ...


class SchedulingMisuseError(ReindexkitError, ValueError):
    """
    The scheduler API was used incorrectly: calls after shutdown, ending a bulk
    window that was never begun, or invalid configuration values.
    """

    ...


class CallbackFailure(ReindexkitError):
    """The host reindex callback raised for one entity."""

    def __init__(self, entity_id: Any, cause: BaseException) -> None:
        super().__init__(f"reindex failed for {entity_id!r}: {type(cause).__name__}: {cause}")
        self.entity_id = entity_id
        self.cause = cause
