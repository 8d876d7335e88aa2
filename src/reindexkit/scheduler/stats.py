# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from dataclasses import dataclass, field

from ..core.types import EntityId


@dataclass
class DelayTimer:
    """Running aggregate of schedule delays (ms)."""

    count: int = 0
    total_ms: int = 0
    max_ms: int = 0

    def observe(self, ms: int) -> None:
        self.count += 1
        self.total_ms += ms
        self.max_ms = max(self.max_ms, ms)

    @property
    def mean_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0


@dataclass
class SchedulerMetrics:
    """
    Minimal in-process counters owned by one manager instance. Plug a
    Prometheus exporter through the instrumentation sink instead of reading
    these from global state.
    """

    total_runs: int = 0
    failures: int = 0
    suppressed: int = 0
    schedule_delay: DelayTimer = field(default_factory=DelayTimer)


@dataclass(frozen=True)
class ReindexStats:
    total_runs: int
    failures: int
    suppressed: int
    per_entity: dict[EntityId, int]
    schedule_delay_count: int
    schedule_delay_mean_ms: float
    schedule_delay_max_ms: int
