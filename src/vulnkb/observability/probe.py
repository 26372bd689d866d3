"""
Performance probes for indexing and retrieval operations.

A probe times a block, emits one structured log line, opens an OpenTelemetry
span and keeps per-trace timings for later inspection.
"""

import contextlib
import time
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from .logging import get_logger

log = get_logger("vulnkb.probe")

tracer = trace.get_tracer("vulnkb")

_METRICS_STORE: dict[str, dict[str, Any]] = {}


@contextlib.contextmanager
def probe(op: str, trace_id: str | None = None, **labels: Any):
    """
    Time an operation.

    Args:
        op: Operation name (e.g., "retriever.search")
        trace_id: Optional trace ID used to group timings
        **labels: Extra fields attached to the log line and span
    """
    start_time = time.perf_counter()
    ok = True
    error_type = None

    with tracer.start_as_current_span(op) as span:
        for key, value in labels.items():
            span.set_attribute(f"vulnkb.{key}", str(value))
        try:
            yield span
        except BaseException as e:
            ok = False
            error_type = type(e).__name__
            span.set_status(Status(StatusCode.ERROR, error_type))
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000

            fields = dict(labels)
            if error_type:
                fields["error"] = error_type
            log.info(f"{op} finished", op=op, ms=duration_ms, ok=ok, **fields)

            if trace_id:
                _METRICS_STORE.setdefault(trace_id, {})[op] = {
                    "duration_ms": duration_ms,
                    "success": ok,
                    "error_type": error_type,
                    "labels": labels,
                    "timestamp": time.time(),
                }


def get_trace_metrics(trace_id: str) -> dict[str, Any]:
    """Get all probe timings recorded for a trace ID."""
    return _METRICS_STORE.get(trace_id, {})


def clear_trace_metrics(trace_id: str | None = None) -> None:
    """Clear timings for one trace ID, or all of them."""
    if trace_id is None:
        _METRICS_STORE.clear()
    else:
        _METRICS_STORE.pop(trace_id, None)
