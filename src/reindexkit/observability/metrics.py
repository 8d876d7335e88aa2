from __future__ import annotations

"""
reindexkit.observability.metrics
================================

Prometheus instrumentation sink built on `prometheus_client`.

Features:
- Helpers to create low-cardinality, label-validated metrics (SafeCounter/Histogram).
- PrometheusSink translating scheduler events into counters and histograms.

Entity ids are never used as label values (unbounded cardinality); labels are
limited to the event phase and the run strength.
"""

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import prometheus_client as prom

from .events import EventPhase, ReindexEvent

__all__ = [
    "PrometheusSink",
    "SafeCounter",
    "SafeHistogram",
]

# Milliseconds-oriented buckets, expressed in seconds.
DEFAULT_DURATION_BUCKETS: tuple[float, ...] = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


class _LabelChecker:
    """Validate label names against an allowlist to keep cardinality under control."""

    __slots__ = ("_allowed",)

    def __init__(self, allowed: Iterable[str] | None) -> None:
        self._allowed = frozenset(allowed or ())

    def validate(self, labels: Mapping[str, str]) -> None:
        if not self._allowed:
            return
        unknown = [k for k in labels.keys() if k not in self._allowed]
        if unknown:
            raise ValueError(f"Unknown label(s) for metric: {unknown}; allowed={sorted(self._allowed)}")


class SafeCounter:
    """
    Counter wrapper that validates label names against an allowlist.

    Example:
        cnt = SafeCounter("reindex_runs_total", "Finished runs", label_names=["strength"])
        cnt.labels(strength="full").inc()
    """

    def __init__(
        self,
        name: str,
        documentation: str,
        *,
        label_names: Sequence[str] | None = None,
        registry: Any | None = None,
    ) -> None:
        self._checker = _LabelChecker(label_names or [])
        self._labelled = bool(label_names)
        self._metric = prom.Counter(
            name, documentation, labelnames=list(label_names or []), registry=registry or prom.REGISTRY
        )

    def labels(self, **labels: str):
        self._checker.validate(labels)
        if not labels and not self._labelled:
            return self._metric
        return self._metric.labels(**labels)


class SafeHistogram:
    """Histogram wrapper that validates label names against an allowlist."""

    def __init__(
        self,
        name: str,
        documentation: str,
        *,
        label_names: Sequence[str] | None = None,
        registry: Any | None = None,
        buckets: Sequence[float] | None = None,
    ) -> None:
        self._checker = _LabelChecker(label_names or [])
        self._labelled = bool(label_names)
        self._metric = prom.Histogram(
            name,
            documentation,
            labelnames=list(label_names or []),
            registry=registry or prom.REGISTRY,
            buckets=list(buckets) if buckets is not None else prom.Histogram.DEFAULT_BUCKETS,
        )

    def labels(self, **labels: str):
        self._checker.validate(labels)
        if not labels and not self._labelled:
            return self._metric
        return self._metric.labels(**labels)


class PrometheusSink:
    """
    Instrumentation sink exporting scheduler activity.

    Metrics (with the default `reindexkit` namespace):
      - reindexkit_events_total{phase}
      - reindexkit_runs_total{strength,result}
      - reindexkit_run_duration_seconds{strength}
      - reindexkit_schedule_delay_seconds
      - reindexkit_flush_duration_seconds

    Pass a dedicated `prometheus_client.CollectorRegistry` in tests to avoid
    duplicate registration on the global registry.
    """

    def __init__(self, *, registry: Any | None = None, namespace: str = "reindexkit") -> None:
        self.events = SafeCounter(
            f"{namespace}_events_total", "Scheduler events by phase", label_names=["phase"], registry=registry
        )
        self.runs = SafeCounter(
            f"{namespace}_runs_total",
            "Finished reindex runs",
            label_names=["strength", "result"],
            registry=registry,
        )
        self.run_duration = SafeHistogram(
            f"{namespace}_run_duration_seconds",
            "Reindex callback duration",
            label_names=["strength"],
            registry=registry,
            buckets=DEFAULT_DURATION_BUCKETS,
        )
        self.schedule_delay = SafeHistogram(
            f"{namespace}_schedule_delay_seconds",
            "Time from the arming request to run start",
            registry=registry,
            buckets=DEFAULT_DURATION_BUCKETS,
        )
        self.flush_duration = SafeHistogram(
            f"{namespace}_flush_duration_seconds",
            "Time spent waiting in flush()",
            registry=registry,
            buckets=DEFAULT_DURATION_BUCKETS,
        )

    def __call__(self, event: ReindexEvent) -> None:
        self.events.labels(phase=event.phase.value).inc()
        strength = event.strength.value if event.strength is not None else "none"
        if event.phase is EventPhase.RUN_START and event.schedule_delay_ms is not None:
            self.schedule_delay.labels().observe(event.schedule_delay_ms / 1000.0)
        elif event.phase in (EventPhase.RUN_END, EventPhase.RUN_ERROR):
            result = "ok" if event.phase is EventPhase.RUN_END else "error"
            self.runs.labels(strength=strength, result=result).inc()
            if event.duration_ms is not None:
                self.run_duration.labels(strength=strength).observe(event.duration_ms / 1000.0)
        elif event.phase is EventPhase.FLUSH_END and event.duration_ms is not None:
            self.flush_duration.labels().observe(event.duration_ms / 1000.0)
