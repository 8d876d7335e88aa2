from __future__ import annotations

import logging

import pytest
from prometheus_client import CollectorRegistry
from pydantic import ValidationError

from reindexkit import CompositeSink, EventPhase, LoggingSink, RecordingSink, ReindexEvent, ReindexStrength
from reindexkit.core.time import ManualClock
from reindexkit.observability.metrics import PrometheusSink, SafeCounter
from reindexkit.observability.sinks import EventEmitter

pytestmark = [pytest.mark.unit]


def _ev(phase: EventPhase, **kw) -> ReindexEvent:
    return ReindexEvent(phase=phase, entity_id=kw.pop("entity_id", "e"), ts_ms=kw.pop("ts_ms", 0), **kw)


def test_event_model_forbids_unknown_fields():
    with pytest.raises(ValidationError):
        ReindexEvent(phase=EventPhase.RUN_START, entity_id="e", ts_ms=0, mode="full")


def test_event_model_rejects_negative_durations():
    with pytest.raises(ValidationError):
        _ev(EventPhase.RUN_END, duration_ms=-1)


def test_emitter_stamps_clock_and_formats_byte_ids():
    clock = ManualClock(start_ms=1_000)
    rec = RecordingSink()
    em = EventEmitter(rec, clock)
    em.emit(EventPhase.RUN_START, b"\xab\xcd", strength=ReindexStrength.full)
    em.emit(EventPhase.FLUSH_START, "*")
    assert [e.entity_id for e in rec.events] == ["abcd", "*"]
    assert rec.events[0].ts_ms == 1_000
    assert rec.of(EventPhase.RUN_START, b"\xab\xcd")[0].strength is ReindexStrength.full


def test_emitter_without_sink_is_disabled():
    em = EventEmitter(None, ManualClock())
    assert not em.enabled
    em.emit(EventPhase.RUN_START, "e")


def test_emitter_swallows_sink_failures():
    def broken(_event):
        raise RuntimeError("sink down")

    em = EventEmitter(broken, ManualClock())
    em.emit(EventPhase.RUN_END, "e", duration_ms=3)


def test_composite_delivers_to_remaining_sinks_after_a_failure():
    seen = RecordingSink()

    def broken(_event):
        raise RuntimeError("nope")

    sink = CompositeSink([broken, seen])
    sink(_ev(EventPhase.SCHEDULE))
    assert len(seen.events) == 1


def test_logging_sink_logs_failures_at_warning(caplog):
    sink = LoggingSink(level=logging.DEBUG)
    with caplog.at_level(logging.DEBUG, logger="reindexkit"):
        sink(_ev(EventPhase.RUN_START))
        sink(_ev(EventPhase.RUN_ERROR, error="RuntimeError: x"))
    levels = [(r.getMessage(), r.levelno) for r in caplog.records if r.name == "reindexkit.events"]
    assert ("run:start", logging.DEBUG) in levels
    assert ("run:error", logging.WARNING) in levels


def test_prometheus_sink_counts_runs_and_observes_durations():
    registry = CollectorRegistry()
    sink = PrometheusSink(registry=registry)
    sink(_ev(EventPhase.RUN_START, strength=ReindexStrength.full, schedule_delay_ms=4))
    sink(_ev(EventPhase.RUN_END, strength=ReindexStrength.full, duration_ms=12))
    sink(_ev(EventPhase.RUN_ERROR, strength=ReindexStrength.partial, duration_ms=1, error="x"))
    sink(_ev(EventPhase.FLUSH_END, entity_id="*", duration_ms=30))

    get = registry.get_sample_value
    assert get("reindexkit_runs_total", {"strength": "full", "result": "ok"}) == 1.0
    assert get("reindexkit_runs_total", {"strength": "partial", "result": "error"}) == 1.0
    assert get("reindexkit_events_total", {"phase": "run:start"}) == 1.0
    assert get("reindexkit_run_duration_seconds_count", {"strength": "full"}) == 1.0
    assert get("reindexkit_schedule_delay_seconds_count") == 1.0
    assert get("reindexkit_flush_duration_seconds_sum") == pytest.approx(0.03)


def test_safe_counter_rejects_unknown_labels():
    cnt = SafeCounter("t_total", "test", label_names=["phase"], registry=CollectorRegistry())
    with pytest.raises(ValueError):
        cnt.labels(entity="e")
