# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from dataclasses import dataclass

from ..core.types import EntityId, Millis, MonotonicMs
from .debounce import DelaySpec, resolve_delay


@dataclass(frozen=True)
class DelayDecision:
    delay_ms: Millis
    base_ms: Millis
    trimmed: bool = False

    @property
    def leading(self) -> bool:
        return self.delay_ms == 0


class CooldownController:
    """
    Chooses the timer delay for a newly armed run of one id.

    The debounce interval is measured from the end of the id's previous run:
    an id that never ran (or whose interval has elapsed) runs on the leading
    edge, otherwise it waits out the rest of the interval. Inside the cooldown
    window right after a run, the wait is trimmed to `adaptive_min_ms` so the
    first post-run request stays responsive.
    """

    def __init__(self, delay: DelaySpec, *, cooldown_window_ms: Millis = 0, adaptive_min_ms: Millis = 1) -> None:
        self._delay = delay
        self.cooldown_window_ms = cooldown_window_ms
        self.adaptive_min_ms = adaptive_min_ms

    def decide(
        self,
        entity_id: EntityId,
        last_run_ended_at: MonotonicMs | None,
        now: MonotonicMs,
        *,
        base_ms: Millis | None = None,
    ) -> DelayDecision:
        """`base_ms` replaces the configured delay (used when the delay function fails)."""
        base = resolve_delay(self._delay, entity_id) if base_ms is None else max(0, base_ms)
        if last_run_ended_at is None:
            return DelayDecision(delay_ms=0, base_ms=base)

        since = max(0, now - last_run_ended_at)
        remaining = max(0, base - since)
        if self.cooldown_window_ms > 0 and since < self.cooldown_window_ms and remaining > self.adaptive_min_ms:
            return DelayDecision(delay_ms=self.adaptive_min_ms, base_ms=base, trimmed=True)
        return DelayDecision(delay_ms=remaining, base_ms=base)
