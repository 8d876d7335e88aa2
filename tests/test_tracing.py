"""OpenTelemetry spans around runs and flushes."""

from __future__ import annotations

import pytest
from opentelemetry import trace as otel_trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from reindexkit import CallbackFailure
from reindexkit.observability.tracing import setup_tracing
from tests.helpers import StubEntity


@pytest.fixture
def spans():
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return provider.get_tracer("reindexkit-test"), exporter


@pytest.mark.asyncio
async def test_each_run_and_flush_produces_a_span(manager_factory, spans, tree):
    tracer, exporter = spans
    mgr = manager_factory(delay=5, tracer=tracer)
    await mgr.add(tree[2])
    await mgr.flush()

    finished = exporter.get_finished_spans()
    runs = [s for s in finished if s.name == "reindexkit.run"]
    assert sorted(s.attributes["reindexkit.entity_id"] for s in runs) == ["child", "parent", "root"]
    by_id = {s.attributes["reindexkit.entity_id"]: s for s in runs}
    assert by_id["child"].attributes["reindexkit.strength"] == "full"
    assert by_id["root"].attributes["reindexkit.strength"] == "partial"

    [flush] = [s for s in finished if s.name == "reindexkit.flush"]
    assert flush.attributes["reindexkit.entity_id"] == "*"


@pytest.mark.asyncio
async def test_failed_run_span_is_marked_as_error(manager_factory, recorder, spans):
    tracer, exporter = spans
    recorder.fail_ids = {"bad"}
    mgr = manager_factory(delay=5, tracer=tracer)
    await mgr.add(StubEntity("bad"), propagate_parents=False)
    with pytest.raises(CallbackFailure):
        await mgr.flush("bad")

    [run] = [s for s in exporter.get_finished_spans() if s.name == "reindexkit.run"]
    assert run.status.status_code is StatusCode.ERROR
    assert any(ev.name == "exception" for ev in run.events)


def test_setup_tracing_installs_sdk_provider(monkeypatch):
    installed = []
    monkeypatch.setattr(otel_trace, "set_tracer_provider", installed.append)
    setup_tracing(service_name="forum-indexer")
    [provider] = installed
    assert isinstance(provider, TracerProvider)
    assert provider.resource.attributes["service.name"] == "forum-indexer"
