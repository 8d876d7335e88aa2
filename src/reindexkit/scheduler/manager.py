# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Hierarchical reindex manager.

Coalescing per-entity scheduler for derived-data recomputation:

  add(E) ──merge──> TaskState(E) ──arm/lead──> reindex(E) ──pending?──> follow-up
     │
     └─ load_path(E) ──> add(ancestor, partial, propagate=False)  (one hop)

Contract notes:
- `add()` returns once scheduling is *committed* (timer armed or leading run
  started) for the entity and, when propagating, for every ancestor. It never
  waits for the reindex callback; use `flush()` for fresh post-call state.
- A run that fails is contained to its entity. `flush()` callers waiting on that
  entity receive the first `CallbackFailure` after the entity has settled.
"""

import asyncio
from collections.abc import Callable, Iterator, Sequence
from contextlib import asynccontextmanager, contextmanager
from typing import Any

from opentelemetry import trace as otel_trace

from ..api.entity import ReindexFn, ReindexOptions, ReindexStrength
from ..api.errors import CallbackFailure, SchedulingMisuseError
from ..core.config import SchedulerConfig
from ..core.logging import get_logger, log_context
from ..core.time import Clock, SystemClock
from ..core.types import EntityId, ScopeId, format_entity_id
from ..observability.events import EventPhase
from ..observability.sinks import EventEmitter, InstrumentationSink
from ..observability.tracing import get_tracer, span
from .barrier import DrainWaiter, raise_first_failure, release_all
from .bulk import BulkRegistry, SuppressedRequest
from .cooldown import CooldownController
from .debounce import DebounceTimer, DelaySpec
from .propagation import HierarchicalPropagator
from .state import TaskSnapshot, TaskState
from .stats import ReindexStats, SchedulerMetrics


def _default_id_of(entity: Any) -> EntityId:
    return entity.id


class HierarchicalReindexManager:
    """
    Usage:
      mgr = create(reindex=my_reindex, delay=25)
      await mgr.add(post)                       # Full for post, Partial for its ancestors
      await mgr.add(post, ReindexStrength.partial, propagate_parents=False)
      await mgr.flush()                         # wait until everything settled
      await mgr.aclose()
    """

    def __init__(
        self,
        reindex: ReindexFn,
        *,
        config: SchedulerConfig | None = None,
        delay: DelaySpec | None = None,
        sink: InstrumentationSink | None = None,
        clock: Clock | None = None,
        id_of: Callable[[Any], EntityId] | None = None,
        tracer: otel_trace.Tracer | None = None,
    ) -> None:
        self.config = config or SchedulerConfig()
        self._reindex = reindex
        self._clock: Clock = clock or SystemClock()
        self._id_of = id_of or _default_id_of
        self._events = EventEmitter(sink, self._clock)
        self._tracer = tracer or get_tracer()
        self._log = get_logger("scheduler")

        self._cooldown = CooldownController(
            delay if delay is not None else self.config.delay_ms,
            cooldown_window_ms=self.config.cooldown_window_ms,
            adaptive_min_ms=self.config.adaptive_cooldown_min_ms,
        )
        self._timers: DebounceTimer[EntityId] = DebounceTimer(self._on_timer, self._clock)
        self._propagator = HierarchicalPropagator(self._schedule_ancestor, self._id_of)
        self._bulk = BulkRegistry()

        self._states: dict[EntityId, TaskState] = {}
        self._inflight: dict[EntityId, asyncio.Task[None]] = {}
        self._metrics = SchedulerMetrics()
        self._closed = False
        # add() calls still resolving ancestor paths; flush() waits for them
        self._propagations = 0
        self._propagations_idle = asyncio.Event()
        self._propagations_idle.set()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def add(
        self,
        entity: Any,
        strength: ReindexStrength | str = ReindexStrength.full,
        *,
        propagate_parents: bool | None = None,
        skip_ancestors: bool = False,
    ) -> None:
        """
        Request a reindex of `entity` and, by default, a Partial pass of every ancestor.

        `skip_ancestors` is handed to the callback of the next run of `entity`
        (`ReindexOptions.skip_ancestors`); it sticks until a run takes it.
        """
        self._ensure_open("add")
        strength = ReindexStrength(strength)
        propagate = self.config.propagate_parents_default if propagate_parents is None else propagate_parents

        with self._tracking_propagation():
            scheduled, chain = await self._commit(entity, strength, propagate, skip_ancestors)
            if scheduled and propagate:
                await self._fan_out(entity, chain)

    async def flush(self, entity_id: EntityId | None = None) -> None:
        """
        Wait until `entity_id` (or every known entity) is idle.

        Armed timers of the awaited entities are fired immediately, and follow-up
        runs triggered while waiting start without delay. Raises the first
        `CallbackFailure` observed during the wait, after everything settled.
        """
        self._ensure_open("flush")
        target = "*" if entity_id is None else entity_id
        started = self._clock.mono_ms()
        self._events.emit(EventPhase.FLUSH_START, target)
        try:
            with span(self._tracer, "reindexkit.flush", entity_id=format_entity_id(target)):
                if entity_id is None:
                    await self._flush_all()
                else:
                    await self._flush_one(entity_id)
        finally:
            self._events.emit(EventPhase.FLUSH_END, target, duration_ms=self._clock.mono_ms() - started)

    def begin_bulk(self, scope: ScopeId) -> None:
        """Open (or nest) a suppression window for `scope` and everything below it."""
        self._ensure_open("begin_bulk")
        depth = self._bulk.begin(scope)
        self._log.debug("bulk window opened", scope=format_entity_id(scope), depth=depth)

    def end_bulk(self, scope: ScopeId):
        """
        Close one level of the bulk window for `scope`.

        Misuse is raised immediately, before anything is awaited. The returned
        awaitable replays one merged request per touched entity once the
        outermost level closes:

            await mgr.end_bulk(thread.id)
        """
        self._ensure_open("end_bulk")
        requests = self._bulk.end(scope)
        return self._replay(scope, requests or [])

    @asynccontextmanager
    async def bulk(self, scope: ScopeId):
        """`async with mgr.bulk(scope): ...` wrapper around begin_bulk/end_bulk."""
        self.begin_bulk(scope)
        try:
            yield self
        finally:
            if not self._closed:
                await self.end_bulk(scope)

    def in_bulk(self, scope: ScopeId) -> bool:
        return self._bulk.is_open(scope)

    def close(self, entity_id: EntityId | None = None) -> None:
        """
        Drop pending work for one entity, or shut the whole manager down.

        Armed timers are cancelled and waiters released. Runs already in flight are
        not cancelled; they finish without triggering follow-ups.
        """
        if entity_id is not None:
            state = self._states.get(entity_id)
            if state is None:
                return
            self._discard(state)
            if state.running:
                state.closing = True
            else:
                del self._states[entity_id]
            self._events.emit(EventPhase.CLOSE, entity_id)
            return

        if self._closed:
            return
        self._closed = True
        self._timers.cancel_all()
        self._bulk.clear()
        for state in self._states.values():
            self._discard(state)
        self._events.emit(EventPhase.CLOSE, "*")
        self._log.info("reindex manager closed", entities=len(self._states), inflight=len(self._inflight))

    async def aclose(self) -> None:
        """`close()`, then wait for in-flight callbacks to return."""
        self.close()
        if self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)

    async def __aenter__(self) -> HierarchicalReindexManager:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    @property
    def closed(self) -> bool:
        return self._closed

    def size(self) -> int:
        return len(self._states)

    def pending(self, entity_id: EntityId) -> bool:
        state = self._states.get(entity_id)
        return state is not None and not state.idle

    def snapshot(self, entity_id: EntityId) -> TaskSnapshot | None:
        state = self._states.get(entity_id)
        return state.snapshot() if state else None

    def snapshots(self) -> list[TaskSnapshot]:
        return [s.snapshot() for s in self._states.values()]

    def stats(self) -> ReindexStats:
        m = self._metrics
        return ReindexStats(
            total_runs=m.total_runs,
            failures=m.failures,
            suppressed=m.suppressed,
            per_entity={eid: s.runs for eid, s in self._states.items()},
            schedule_delay_count=m.schedule_delay.count,
            schedule_delay_mean_ms=m.schedule_delay.mean_ms,
            schedule_delay_max_ms=m.schedule_delay.max_ms,
        )

    # ------------------------------------------------------------------ #
    # Scheduling
    # ------------------------------------------------------------------ #

    def _ensure_open(self, op: str) -> None:
        if self._closed:
            raise SchedulingMisuseError(f"{op}() called after the reindex manager was closed")

    def _state_for(self, entity: Any) -> TaskState:
        eid = self._id_of(entity)
        state = self._states.get(eid)
        if state is None:
            state = self._states[eid] = TaskState(entity_id=eid, entity=entity)
        else:
            state.entity = entity  # hosts may hand in a fresh object for the same id
            state.closing = False
        return state

    def _schedule(self, entity: Any, strength: ReindexStrength, skip_ancestors: bool = False) -> None:
        state = self._state_for(entity)
        if skip_ancestors:
            state.skip_ancestors = True
        if state.merge(strength):
            self._events.emit(EventPhase.UPGRADE, state.entity_id, strength=ReindexStrength.full)
        if state.running or state.timer_armed:
            self._events.emit(EventPhase.COALESCED, state.entity_id, strength=strength)
            return
        self._arm(state)

    def _schedule_ancestor(self, ancestor: Any, strength: ReindexStrength, above: Sequence[Any]) -> None:
        if self._closed:
            return  # closed while the path was loading
        if self._bulk.active:
            scope = self._bulk.scope_for(self._id_of(ancestor), (self._id_of(a) for a in above))
            if scope is not None:
                self._suppress(scope, ancestor, strength, False, False)
                return
        self._schedule(ancestor, strength)

    def _arm(self, state: TaskState) -> None:
        """Start a leading run or arm the debounce timer for an id with pending work."""
        now = self._clock.mono_ms()
        state.last_scheduled_at = now
        if state.waiters:
            delay_ms = 0
        else:
            try:
                decision = self._cooldown.decide(state.entity_id, state.last_run_ended_at, now)
            except Exception as e:
                # pending work always ends up with a timer or a run
                self._log.warning(
                    "delay function failed, using configured delay",
                    entity_id=format_entity_id(state.entity_id),
                    delay_ms=self.config.delay_ms,
                    exc_info=e,
                )
                self._events.emit(
                    EventPhase.DELAY_ERROR,
                    state.entity_id,
                    delay_ms=self.config.delay_ms,
                    error=f"{type(e).__name__}: {e}",
                )
                decision = self._cooldown.decide(
                    state.entity_id, state.last_run_ended_at, now, base_ms=self.config.delay_ms
                )
            delay_ms = decision.delay_ms
            if decision.trimmed:
                self._events.emit(EventPhase.COOLDOWN_TRIM, state.entity_id, delay_ms=delay_ms)

        self._events.emit(EventPhase.SCHEDULE, state.entity_id, strength=state.pending_strength, delay_ms=delay_ms)
        if delay_ms == 0:
            self._start_run(state)
            return
        state.timer_armed = True
        self._timers.arm(state.entity_id, delay_ms)

    def _on_timer(self, entity_id: EntityId) -> None:
        state = self._states.get(entity_id)
        if state is None:
            return
        state.timer_armed = False
        if state.running:
            # only a timer that outlived the arming rules gets here; never start a second run
            state.timer_armed = True
            self._timers.arm(entity_id, self.config.retry_delay_ms)
            self._events.emit(EventPhase.RETRY, entity_id, delay_ms=self.config.retry_delay_ms)
            return
        self._start_run(state)

    def _start_run(self, state: TaskState) -> None:
        strength = state.take_pending()
        if strength is None:
            self._settle(state)
            return
        skip_ancestors, state.skip_ancestors = state.skip_ancestors, False
        state.running = True
        state.timer_armed = False

        started = self._clock.mono_ms()
        schedule_delay = None
        if state.last_scheduled_at is not None:
            schedule_delay = max(0, started - state.last_scheduled_at)
            self._metrics.schedule_delay.observe(schedule_delay)
        self._events.emit(
            EventPhase.RUN_START, state.entity_id, strength=strength, schedule_delay_ms=schedule_delay
        )
        options = ReindexOptions(only_replies=strength is ReindexStrength.partial, skip_ancestors=skip_ancestors)
        self._inflight[state.entity_id] = asyncio.create_task(self._run(state, options, started))

    async def _run(self, state: TaskState, options: ReindexOptions, started: int) -> None:
        eid = state.entity_id
        strength = options.strength
        with log_context(entity_id=format_entity_id(eid), strength=strength.value):
            try:
                with span(
                    self._tracer,
                    "reindexkit.run",
                    entity_id=format_entity_id(eid),
                    strength=strength.value,
                    skip_ancestors=options.skip_ancestors,
                ):
                    await self._reindex(state.entity, options)
            except asyncio.CancelledError:
                self._log.warning("reindex run cancelled")
                raise
            except Exception as e:
                failure = CallbackFailure(eid, e)
                state.failures += 1
                state.last_error = e
                self._metrics.failures += 1
                for w in state.waiters:
                    w.record(failure)
                self._log.warning("reindex run failed", exc_info=e)
                self._events.emit(
                    EventPhase.RUN_ERROR,
                    eid,
                    strength=strength,
                    duration_ms=self._clock.mono_ms() - started,
                    error=f"{type(e).__name__}: {e}",
                )
            else:
                state.runs += 1
                self._metrics.total_runs += 1
                duration = self._clock.mono_ms() - started
                self._log.debug("reindex run finished", duration_ms=duration)
                self._events.emit(EventPhase.RUN_END, eid, strength=strength, duration_ms=duration)
            finally:
                state.running = False
                state.last_run_ended_at = self._clock.mono_ms()
                if self._inflight.get(eid) is asyncio.current_task():
                    del self._inflight[eid]
                self._after_run(state)

    def _after_run(self, state: TaskState) -> None:
        if self._closed or state.closing:
            self._discard(state)
            if state.closing and self._states.get(state.entity_id) is state:
                del self._states[state.entity_id]
            return
        if state.pending_strength is not None and not state.timer_armed:
            self._arm(state)
        else:
            self._settle(state)

    def _settle(self, state: TaskState) -> None:
        if state.idle:
            release_all(state.waiters)

    def _discard(self, state: TaskState) -> None:
        self._timers.cancel(state.entity_id)
        state.timer_armed = False
        state.pending_strength = None
        state.skip_ancestors = False
        release_all(state.waiters)

    # ------------------------------------------------------------------ #
    # Propagation & bulk
    # ------------------------------------------------------------------ #

    @contextmanager
    def _tracking_propagation(self) -> Iterator[None]:
        self._propagations += 1
        self._propagations_idle.clear()
        try:
            yield
        finally:
            self._propagations -= 1
            if self._propagations == 0:
                self._propagations_idle.set()

    async def _commit(
        self, entity: Any, strength: ReindexStrength, propagate: bool, skip_ancestors: bool
    ) -> tuple[bool, list[Any] | None]:
        """
        Schedule `entity` itself, or record it in the bulk window covering it.

        Returns whether it was scheduled, plus its ancestor chain when the bulk
        check already had to resolve it.
        """
        eid = self._id_of(entity)
        chain: list[Any] | None = None
        if self._bulk.active:
            scope = self._bulk.scope_for(eid)
            if scope is None:
                chain = await self._resolve_ancestors(entity)
                if self._closed:
                    return False, chain
                scope = self._bulk.scope_for(eid, (self._id_of(a) for a in chain))
            if scope is not None:
                self._suppress(scope, entity, strength, propagate, skip_ancestors)
                return False, chain
        self._schedule(entity, strength, skip_ancestors)
        return True, chain

    async def _fan_out(self, entity: Any, chain: list[Any] | None) -> None:
        try:
            ancestors = await self._propagator.propagate(entity, chain)
        except Exception as e:
            self._propagate_failed(entity, e)
            raise
        if not self._closed:
            self._events.emit(EventPhase.PROPAGATE, self._id_of(entity), count=len(ancestors))

    async def _resolve_ancestors(self, entity: Any) -> list[Any]:
        try:
            return await self._propagator.ancestors(entity)
        except Exception as e:
            self._propagate_failed(entity, e)
            raise

    def _propagate_failed(self, entity: Any, e: Exception) -> None:
        self._log.warning("ancestor path lookup failed", entity_id=format_entity_id(self._id_of(entity)), exc_info=e)
        self._events.emit(EventPhase.PROPAGATE_ERROR, self._id_of(entity), error=f"{type(e).__name__}: {e}")

    def _suppress(
        self, scope: ScopeId, entity: Any, strength: ReindexStrength, propagate: bool, skip_ancestors: bool
    ) -> None:
        eid = self._id_of(entity)
        req = self._bulk.record(scope, eid, entity, strength, propagate, skip_ancestors=skip_ancestors)
        self._metrics.suppressed += 1
        self._events.emit(EventPhase.BULK_SUPPRESSED, eid, strength=req.strength, count=req.hits)

    async def _replay(self, scope: ScopeId, requests: list[SuppressedRequest]) -> None:
        """
        Commit every recorded request first, then propagate. A failing path lookup
        does not cost the other entities their run; the first error is raised at the end.
        """
        if not requests:
            return
        self._events.emit(EventPhase.BULK_END, scope, count=len(requests))
        self._log.debug("bulk window closed", scope=format_entity_id(scope), entities=len(requests))

        errors: list[Exception] = []
        to_propagate: list[tuple[Any, list[Any] | None]] = []
        with self._tracking_propagation():
            for req in requests:
                if self._closed:
                    return
                try:
                    scheduled, chain = await self._commit(req.entity, req.strength, req.propagate, req.skip_ancestors)
                except Exception as e:
                    errors.append(e)
                    continue
                if scheduled and req.propagate:
                    to_propagate.append((req.entity, chain))

            for entity, chain in to_propagate:
                if self._closed:
                    return
                try:
                    await self._fan_out(entity, chain)
                except Exception as e:
                    errors.append(e)

        if errors:
            if len(errors) > 1:
                self._log.warning(
                    "bulk replay had several failures", scope=format_entity_id(scope), failures=len(errors)
                )
            raise errors[0]

    # ------------------------------------------------------------------ #
    # Flush
    # ------------------------------------------------------------------ #

    def _drain(self, state: TaskState) -> DrainWaiter | None:
        if state.idle:
            return None
        waiter = DrainWaiter(state.entity_id)
        state.waiters.append(waiter)
        if state.timer_armed and not state.running:
            self._timers.cancel(state.entity_id)
            state.timer_armed = False
            self._start_run(state)
        return waiter

    async def _flush_one(self, entity_id: EntityId) -> None:
        state = self._states.get(entity_id)
        if state is None:
            return
        waiter = self._drain(state)
        if waiter is None:
            return
        await waiter.wait()
        raise_first_failure([waiter])

    async def _flush_all(self) -> None:
        waiters: list[DrainWaiter] = []
        while True:
            # ancestors of an add() still resolving its path are not registered yet
            await self._propagations_idle.wait()
            batch = [w for s in list(self._states.values()) if (w := self._drain(s)) is not None]
            if not batch:
                if self._propagations:
                    continue
                break
            waiters.extend(batch)
            await asyncio.gather(*(w.wait() for w in batch))
        raise_first_failure(waiters)


def create(
    reindex: ReindexFn,
    *,
    delay: DelaySpec | None = None,
    config: SchedulerConfig | None = None,
    sink: InstrumentationSink | None = None,
    clock: Clock | None = None,
    id_of: Callable[[Any], EntityId] | None = None,
    tracer: otel_trace.Tracer | None = None,
    **overrides: Any,
) -> HierarchicalReindexManager:
    """
    Build a manager.

    `delay` is either a fixed number of milliseconds or a function of the entity
    id; it takes precedence over `config.delay_ms`. Remaining keyword arguments
    override `SchedulerConfig` fields, e.g. `cooldown_window_ms=50`.
    """
    if config is None:
        config = SchedulerConfig(**overrides)
    elif overrides:
        config = SchedulerConfig(**{**config.as_dict(), **overrides})
    return HierarchicalReindexManager(
        reindex, config=config, delay=delay, sink=sink, clock=clock, id_of=id_of, tracer=tracer
    )
