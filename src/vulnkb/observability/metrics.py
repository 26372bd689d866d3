"""
OpenTelemetry metrics for indexing and retrieval.

Instruments are created lazily on the global meter provider; without a
configured SDK they are no-ops.
"""

import time
from contextlib import contextmanager
from typing import Any

from opentelemetry import metrics
from opentelemetry.metrics import Counter, Histogram, Meter


class MetricsCollector:
    """Caches instruments and records knowledge base metrics."""

    def __init__(self, meter: Meter):
        self.meter = meter
        self._counters: dict[str, Counter] = {}
        self._histograms: dict[str, Histogram] = {}

    def counter(self, name: str, description: str = "", unit: str = "1") -> Counter:
        if name not in self._counters:
            self._counters[name] = self.meter.create_counter(
                name, description=description, unit=unit
            )
        return self._counters[name]

    def histogram(self, name: str, description: str = "", unit: str = "1") -> Histogram:
        if name not in self._histograms:
            self._histograms[name] = self.meter.create_histogram(
                name, description=description, unit=unit
            )
        return self._histograms[name]

    def record_rag_query(self, duration: float, results_count: int, filtered: bool) -> None:
        attributes = {"filtered": str(filtered).lower()}
        self.counter("vulnkb_rag_queries_total", "Knowledge base queries").add(1, attributes)
        self.histogram(
            "vulnkb_rag_query_duration_seconds", "Knowledge base query duration", "s"
        ).record(duration, attributes)
        self.histogram("vulnkb_rag_query_results", "Results returned per query").record(
            results_count, attributes
        )

    def record_indexed_chunks(self, stored: int, failed: int) -> None:
        self.counter("vulnkb_index_chunks_total", "Chunks written to the index").add(stored)
        if failed:
            self.counter(
                "vulnkb_embedding_failures_total", "Chunks skipped after embedding failure"
            ).add(failed)


_metrics_collector: MetricsCollector | None = None


def setup_metrics(meter: Meter) -> MetricsCollector:
    """Install a collector bound to an explicit meter."""
    global _metrics_collector
    _metrics_collector = MetricsCollector(meter)
    return _metrics_collector


def get_metrics_collector() -> MetricsCollector:
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(metrics.get_meter("vulnkb"))
    return _metrics_collector


def counter(name: str, description: str = "", unit: str = "1") -> Counter:
    return get_metrics_collector().counter(name, description, unit)


def histogram(name: str, description: str = "", unit: str = "1") -> Histogram:
    return get_metrics_collector().histogram(name, description, unit)


@contextmanager
def timer(metric_name: str, attributes: dict[str, Any] | None = None):
    """Record the duration of a block in `<metric_name>_duration`."""
    start_time = time.perf_counter()
    try:
        yield
    finally:
        duration = time.perf_counter() - start_time
        histogram(f"{metric_name}_duration", "Operation duration", "s").record(
            duration, attributes or {}
        )
