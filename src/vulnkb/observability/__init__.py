"""
Observability for the knowledge base: structured logging, probes and metrics.

Usage:
    >>> from vulnkb.observability import get_logger, probe
    >>>
    >>> logger = get_logger(__name__)
    >>> with probe("retriever.search", risk_type="xss"):
    ...     logger.info("Searching", query_length=12)

Configuration:
    - VULNKB_OBSERVABILITY__LOG_LEVEL=INFO
"""

from .logging import get_logger, get_trace_id, set_trace_id, setup_logging
from .metrics import counter, get_metrics_collector, histogram, timer
from .probe import get_trace_metrics, probe

__all__ = [
    "get_logger",
    "setup_logging",
    "set_trace_id",
    "get_trace_id",
    "probe",
    "get_trace_metrics",
    "counter",
    "histogram",
    "timer",
    "get_metrics_collector",
]
