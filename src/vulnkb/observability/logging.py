"""
Structured logging for the knowledge base with trace ID support.

Every line is a single `key=value` record:
    t=<ISO8601> level=INFO trace=<id> mod=indexer op=reindex msg="..." chunks=12
"""

import logging
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# Trace ID propagated across awaits within a request
trace_id_ctx: ContextVar[str | None] = ContextVar("vulnkb_trace_id", default=None)

_loggers: dict[str, "StructuredLogger"] = {}

# Attributes owned by logging.LogRecord; never rendered as extra fields
_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "getMessage",
        "exc_info",
        "exc_text",
        "stack_info",
        "message",
    }
)

_FORMATTER_FIELDS = frozenset({"trace_id", "op", "ms", "duration_ms"})


def _render_value(value: Any) -> str:
    text = str(value)
    if " " in text or not text:
        return f'"{text}"'
    return text


class StructuredFormatter(logging.Formatter):
    """Formatter producing single-line key=value records."""

    def format(self, record: logging.LogRecord) -> str:
        trace_id = trace_id_ctx.get() or getattr(record, "trace_id", None) or "-"

        mod = record.name.rsplit(".", 1)[-1]
        op = getattr(record, "op", None) or record.funcName or "-"

        duration = getattr(record, "ms", getattr(record, "duration_ms", None))
        ms_part = f" ms={duration:.1f}" if duration is not None else ""

        timestamp = datetime.now(UTC).isoformat()
        line = (
            f"t={timestamp} level={record.levelname} trace={trace_id} "
            f'mod={mod} op={op}{ms_part} msg="{record.getMessage()}"'
        )

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key in _FORMATTER_FIELDS:
                continue
            line += f" {key}={_render_value(value)}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredLogger:
    """Logger wrapper that accepts structured fields as keyword arguments."""

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)

    def _log(self, level: int, msg: str, exc_info: bool = False, **fields: Any) -> None:
        if not self.logger.isEnabledFor(level):
            return
        extra = {k: v for k, v in fields.items() if k not in _RECORD_ATTRS}
        extra["trace_id"] = trace_id_ctx.get()
        self.logger.log(level, msg, extra=extra, exc_info=exc_info, stacklevel=3)

    def debug(self, msg: str, **fields: Any) -> None:
        self._log(logging.DEBUG, msg, **fields)

    def info(self, msg: str, **fields: Any) -> None:
        self._log(logging.INFO, msg, **fields)

    def warning(self, msg: str, **fields: Any) -> None:
        self._log(logging.WARNING, msg, **fields)

    def error(self, msg: str, **fields: Any) -> None:
        self._log(logging.ERROR, msg, **fields)

    def exception(self, msg: str, **fields: Any) -> None:
        self._log(logging.ERROR, msg, exc_info=True, **fields)

    def timed(self, msg: str, duration_ms: float, **fields: Any) -> None:
        """Log with timing information."""
        fields["ms"] = duration_ms
        self.info(msg, **fields)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for the given module."""
    if name not in _loggers:
        _loggers[name] = StructuredLogger(name)
    return _loggers[name]


def setup_logging(level: str = "INFO") -> None:
    """Install the structured formatter on the root logger."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("opentelemetry").setLevel(logging.WARNING)


def set_trace_id(trace_id: str) -> None:
    trace_id_ctx.set(trace_id)


def get_trace_id() -> str | None:
    return trace_id_ctx.get()


def clear_trace_id() -> None:
    trace_id_ctx.set(None)
