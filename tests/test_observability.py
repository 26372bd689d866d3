"""
Tests for structured logging, probes and metrics.
"""

import logging
from unittest.mock import MagicMock

import pytest

from vulnkb.observability import metrics as metrics_module
from vulnkb.observability.logging import (
    StructuredFormatter,
    get_logger,
    get_trace_id,
    set_trace_id,
    setup_logging,
)
from vulnkb.observability.metrics import get_metrics_collector, setup_metrics, timer
from vulnkb.observability.probe import clear_trace_metrics, get_trace_metrics, probe


def _record(msg="Indexed document", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="vulnkb.rag.indexer",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
        func="reindex",
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    def test_line_shape(self):
        line = StructuredFormatter().format(_record(chunks=12, title="Login bypass"))

        assert " level=INFO trace=- mod=indexer op=reindex " in line
        assert 'msg="Indexed document"' in line
        assert " chunks=12" in line
        assert ' title="Login bypass"' in line

    def test_duration_and_op_override(self):
        line = StructuredFormatter().format(_record(op="retriever.search", ms=12.345))
        assert "op=retriever.search ms=12.3 " in line

    def test_trace_id_from_context(self):
        set_trace_id("abc123")
        line = StructuredFormatter().format(_record())
        assert "trace=abc123" in line


class TestStructuredLogger:
    def test_get_logger_is_cached(self):
        assert get_logger("vulnkb.x") is get_logger("vulnkb.x")

    def test_fields_become_record_attributes(self, caplog):
        logger = get_logger("vulnkb.test")
        with caplog.at_level(logging.INFO, logger="vulnkb.test"):
            logger.info("Scanned", changed=3, name="shadowed", module="shadowed")

        record = caplog.records[-1]
        assert record.changed == 3
        assert record.name == "vulnkb.test"
        assert record.getMessage() == "Scanned"

    def test_disabled_level_is_skipped(self, caplog):
        logger = get_logger("vulnkb.quiet")
        with caplog.at_level(logging.WARNING, logger="vulnkb.quiet"):
            logger.debug("hidden", field=1)
        assert caplog.records == []

    def test_setup_logging_installs_formatter(self):
        root = logging.getLogger()
        previous_handlers, previous_level = root.handlers[:], root.level
        try:
            setup_logging("debug")
            assert root.level == logging.DEBUG
            assert isinstance(root.handlers[0].formatter, StructuredFormatter)
        finally:
            root.handlers[:] = previous_handlers
            root.setLevel(previous_level)

    def test_trace_id_round_trip(self):
        assert get_trace_id() is None
        set_trace_id("t-1")
        assert get_trace_id() == "t-1"


class TestProbe:
    def test_successful_probe_recorded_for_trace(self):
        with probe("indexer.reindex", trace_id="t-ok", document_id="doc-1"):
            pass

        timings = get_trace_metrics("t-ok")["indexer.reindex"]
        assert timings["success"] is True
        assert timings["error_type"] is None
        assert timings["labels"] == {"document_id": "doc-1"}
        assert timings["duration_ms"] >= 0

    def test_failing_probe_reraises_and_records_error(self):
        with pytest.raises(KeyError):
            with probe("retriever.search", trace_id="t-err"):
                raise KeyError("x")

        timings = get_trace_metrics("t-err")["retriever.search"]
        assert timings["success"] is False
        assert timings["error_type"] == "KeyError"

    def test_probe_logs_one_line(self, caplog):
        with caplog.at_level(logging.INFO, logger="vulnkb.probe"):
            with probe("manager.scan", items=3):
                pass

        record = caplog.records[-1]
        assert record.getMessage() == "manager.scan finished"
        assert record.ok is True
        assert record.items == 3

    def test_clear_single_trace(self):
        with probe("a", trace_id="keep"):
            pass
        with probe("a", trace_id="drop"):
            pass

        clear_trace_metrics("drop")

        assert get_trace_metrics("drop") == {}
        assert "a" in get_trace_metrics("keep")

    def test_no_trace_id_records_nothing(self):
        with probe("untracked"):
            pass
        assert get_trace_metrics("untracked") == {}


class TestMetrics:
    @pytest.fixture
    def meter(self, monkeypatch):
        monkeypatch.setattr(metrics_module, "_metrics_collector", None)
        meter = MagicMock()
        setup_metrics(meter)
        return meter

    def test_instruments_are_cached(self, meter):
        collector = get_metrics_collector()
        assert collector.counter("c") is collector.counter("c")
        meter.create_counter.assert_called_once_with("c", description="", unit="1")

    def test_record_rag_query(self, meter):
        get_metrics_collector().record_rag_query(0.25, 3, filtered=True)

        meter.create_counter.return_value.add.assert_called_once_with(1, {"filtered": "true"})
        records = meter.create_histogram.return_value.record.call_args_list
        assert [c.args for c in records] == [(0.25, {"filtered": "true"}), (3, {"filtered": "true"})]

    def test_record_indexed_chunks_counts_failures_only_when_present(self, meter):
        get_metrics_collector().record_indexed_chunks(stored=4, failed=0)
        assert meter.create_counter.call_count == 1

        get_metrics_collector().record_indexed_chunks(stored=2, failed=1)
        assert meter.create_counter.call_count == 2

    def test_timer_records_duration(self, meter):
        with timer("vulnkb_test", {"k": "v"}):
            pass

        meter.create_histogram.assert_called_once_with(
            "vulnkb_test_duration", description="Operation duration", unit="s"
        )
        (duration, attributes), _ = meter.create_histogram.return_value.record.call_args
        assert duration >= 0
        assert attributes == {"k": "v"}

    def test_default_collector_uses_global_meter(self, monkeypatch):
        monkeypatch.setattr(metrics_module, "_metrics_collector", None)
        collector = get_metrics_collector()
        assert collector is get_metrics_collector()
        collector.counter("vulnkb_noop_total").add(1)
