# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..api.entity import ReindexStrength
from ..core.types import EntityId, MonotonicMs
from .barrier import DrainWaiter


def escalate(current: ReindexStrength | None, incoming: ReindexStrength | None) -> ReindexStrength | None:
    """Merge two requested strengths: Full dominates Partial, None is weaker than both."""
    if current is None:
        return incoming
    if incoming is None:
        return current
    return incoming if incoming.rank > current.rank else current


@dataclass
class TaskState:
    """
    Scheduler-side state of one entity id.

    Mutated only from the manager's entry points and its timer/run tasks, all on
    the same event loop.
    """

    entity_id: EntityId
    entity: Any
    pending_strength: ReindexStrength | None = None
    running: bool = False
    timer_armed: bool = False
    last_run_ended_at: MonotonicMs | None = None
    last_scheduled_at: MonotonicMs | None = None
    runs: int = 0
    failures: int = 0
    last_error: BaseException | None = None
    # sticky hint for the next run, cleared when a run takes it
    skip_ancestors: bool = False
    # close(entity_id) arrived while a run was in flight; drop the state once it ends
    closing: bool = False
    waiters: list[DrainWaiter] = field(default_factory=list)

    @property
    def idle(self) -> bool:
        return not self.running and not self.timer_armed and self.pending_strength is None

    def merge(self, strength: ReindexStrength) -> bool:
        """Merge a request into the pending strength. Returns True if it escalated a pending Partial."""
        before = self.pending_strength
        self.pending_strength = escalate(before, strength)
        return before is ReindexStrength.partial and self.pending_strength is ReindexStrength.full

    def take_pending(self) -> ReindexStrength | None:
        strength, self.pending_strength = self.pending_strength, None
        return strength

    def snapshot(self) -> TaskSnapshot:
        return TaskSnapshot(
            entity_id=self.entity_id,
            pending_strength=self.pending_strength,
            skip_ancestors=self.skip_ancestors,
            running=self.running,
            timer_armed=self.timer_armed,
            last_run_ended_at=self.last_run_ended_at,
            runs=self.runs,
            failures=self.failures,
            waiters=len(self.waiters),
        )


@dataclass(frozen=True)
class TaskSnapshot:
    """Read-only view of a TaskState."""

    entity_id: EntityId
    pending_strength: ReindexStrength | None
    skip_ancestors: bool
    running: bool
    timer_armed: bool
    last_run_ended_at: MonotonicMs | None
    runs: int
    failures: int
    waiters: int

    @property
    def idle(self) -> bool:
        return not self.running and not self.timer_armed and self.pending_strength is None
