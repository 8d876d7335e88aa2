from __future__ import annotations

"""
reindexkit.observability.tracing
================================

OpenTelemetry spans around reindex runs and flushes.

- The scheduler only talks to the OpenTelemetry API: without a configured
  tracer provider every span is a no-op.
- `setup_tracing()` installs an SDK provider (optional `tracing` extra), with
  an OTLP exporter when an endpoint is given.
- A tracer can also be injected per manager (tests use an in-memory exporter).

Usage:
    setup_tracing(service_name="forum-indexer", otlp_endpoint="http://otelcol:4317")
    mgr = create(reindex, delay=25)   # runs now show up as `reindexkit.run` spans
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace as otel_trace

from ..core.logging import get_logger

__all__ = ["get_tracer", "setup_tracing", "span"]

_log = get_logger("observability.tracing")
_TRACER_NAME = "reindexkit"


def setup_tracing(*, service_name: str, otlp_endpoint: str | None = None) -> None:
    """
    Configure the global tracer provider.

    Args:
        service_name: logical service name for resources.
        otlp_endpoint: OTLP gRPC endpoint (e.g. "http://otelcol:4317"); if None,
                       spans are produced but no exporter is attached.
    """
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    if otlp_endpoint:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True)))
        _log.info("otel tracing configured (otlp)", endpoint=otlp_endpoint)
    otel_trace.set_tracer_provider(provider)


def get_tracer() -> otel_trace.Tracer:
    return otel_trace.get_tracer(_TRACER_NAME)


@contextmanager
def span(tracer: otel_trace.Tracer, name: str, **attributes: Any) -> Iterator[otel_trace.Span]:
    """
    Start a current span named `name`; None-valued attributes are dropped.

    An exception escaping the block is recorded on the span and marks it as an error.
    """
    attrs = {f"reindexkit.{k}": v for k, v in attributes.items() if v is not None}
    with tracer.start_as_current_span(name, attributes=attrs) as s:
        yield s
