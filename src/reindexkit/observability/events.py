from __future__ import annotations

"""
reindexkit.observability.events
===============================

Structured instrumentation events emitted by the scheduler to the injected sink.

Design principles:
- One flat model for every phase; optional fields are filled only where the
  phase has them (e.g. `duration_ms` for run/flush ends).
- Pydantic v2 models with `extra="forbid"` to fail fast on unknown fields.
- Timestamps are process-local **monotonic milliseconds** from the manager clock.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ..api.entity import ReindexStrength


class EventPhase(str, Enum):
    """Scheduler lifecycle points reported to the sink."""

    SCHEDULE = "schedule"
    COALESCED = "schedule:coalesced"
    UPGRADE = "strength:upgrade"
    COOLDOWN_TRIM = "cooldown:trim"
    DELAY_ERROR = "delay:error"
    RETRY = "timer:retry"
    RUN_START = "run:start"
    RUN_END = "run:end"
    RUN_ERROR = "run:error"
    PROPAGATE = "propagate"
    PROPAGATE_ERROR = "propagate:error"
    FLUSH_START = "flush:start"
    FLUSH_END = "flush:end"
    BULK_SUPPRESSED = "bulk:suppressed"
    BULK_END = "bulk:end"
    CLOSE = "close"


class ReindexEvent(BaseModel):
    """
    One instrumentation event.

    Fields:
        phase: Lifecycle point.
        entity_id: Printable id of the entity (hex for byte ids); `"*"` for
                   manager-wide events such as a global flush.
        ts_ms: Monotonic timestamp when the event was produced.
        strength: Strength requested (schedule) or executed (run).
        delay_ms: Timer delay chosen when scheduling.
        schedule_delay_ms: Time between the request that armed the run and the
                           run start (run:start only).
        duration_ms: Elapsed time of a run or flush.
        count: Number of items (ancestors scheduled, entities replayed, ...).
        error: `Type: message` of a failure.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    phase: EventPhase
    entity_id: str
    ts_ms: int = Field(ge=0)
    strength: ReindexStrength | None = None
    delay_ms: int | None = Field(default=None, ge=0)
    schedule_delay_ms: int | None = Field(default=None, ge=0)
    duration_ms: int | None = Field(default=None, ge=0)
    count: int | None = Field(default=None, ge=0)
    error: str | None = None
