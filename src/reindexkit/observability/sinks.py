from __future__ import annotations

"""
reindexkit.observability.sinks
==============================

Instrumentation sinks. A sink is any callable taking a `ReindexEvent`; it is
injected at manager construction instead of being read from global state.

- RecordingSink: keeps events in memory (tests, ad-hoc diagnostics).
- LoggingSink: forwards events to the structured library logger.
- CompositeSink: fan-out to several sinks.
- EventEmitter: used by the manager; builds events and shields the scheduler
  from sink failures.
"""

import logging
from collections.abc import Callable, Iterable
from typing import Any

from ..core.logging import get_logger, swallow
from ..core.time import Clock
from ..core.types import EntityId, format_entity_id
from .events import EventPhase, ReindexEvent

__all__ = [
    "CompositeSink",
    "EventEmitter",
    "InstrumentationSink",
    "LoggingSink",
    "RecordingSink",
]

InstrumentationSink = Callable[[ReindexEvent], None]

_ERROR_PHASES = frozenset({EventPhase.RUN_ERROR, EventPhase.PROPAGATE_ERROR, EventPhase.DELAY_ERROR})


class RecordingSink:
    """Append-only in-memory sink."""

    def __init__(self) -> None:
        self.events: list[ReindexEvent] = []

    def __call__(self, event: ReindexEvent) -> None:
        self.events.append(event)

    def of(self, phase: EventPhase, entity_id: EntityId | None = None) -> list[ReindexEvent]:
        want = format_entity_id(entity_id) if entity_id is not None else None
        return [e for e in self.events if e.phase is phase and (want is None or e.entity_id == want)]

    def clear(self) -> None:
        self.events.clear()


class LoggingSink:
    """Log every event; failures at WARNING, everything else at `level`."""

    def __init__(self, *, level: int = logging.DEBUG, logger: logging.LoggerAdapter | None = None) -> None:
        self.level = level
        self._log = logger or get_logger("events")

    def __call__(self, event: ReindexEvent) -> None:
        lvl = logging.WARNING if event.phase in _ERROR_PHASES else self.level
        self._log.log(lvl, event.phase.value, **event.model_dump(exclude_none=True, mode="json"))


class CompositeSink:
    """Deliver each event to every child sink; one failing child does not starve the others."""

    def __init__(self, sinks: Iterable[InstrumentationSink]) -> None:
        self._sinks = list(sinks)
        self._log = get_logger("events")

    def __call__(self, event: ReindexEvent) -> None:
        for sink in self._sinks:
            with swallow(logger=self._log, code="sink.composite", msg="child sink failed", level=logging.WARNING):
                sink(event)


class EventEmitter:
    """Builds `ReindexEvent`s stamped with the manager clock and hands them to the sink."""

    def __init__(self, sink: InstrumentationSink | None, clock: Clock) -> None:
        self._sink = sink
        self._clock = clock
        self._log = get_logger("events")

    @property
    def enabled(self) -> bool:
        return self._sink is not None

    def emit(self, phase: EventPhase, entity_id: EntityId | str, **fields: Any) -> None:
        if self._sink is None:
            return
        with swallow(logger=self._log, code="sink.emit", msg="instrumentation sink failed", level=logging.WARNING):
            event = ReindexEvent(
                phase=phase,
                entity_id=entity_id if entity_id == "*" else format_entity_id(entity_id),
                ts_ms=self._clock.mono_ms(),
                **fields,
            )
            self._sink(event)
