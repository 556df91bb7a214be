"""
Integration tests for whop_analytics/observability.py

Tests structured logging, correlation IDs, and metrics collection.
"""
import logging
import json
import pytest
import time as time_module

from whop_analytics.observability import (
    correlation_context,
    generate_correlation_id,
    get_correlation_id,
    Timer,
    MetricsCollector,
    StructuredFormatter,
    HumanReadableFormatter,
    configure_logging,
    get_logger,
    metrics,
)


def _record(msg: str = "Test message", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test.logger",
        level=logging.INFO,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestCorrelationId:
    """Tests for correlation ID management."""

    def test_generate_correlation_id_not_empty(self):
        """Generated ID is not empty."""
        cid = generate_correlation_id()
        assert cid is not None
        assert len(cid) == 8

    def test_context_sets_and_restores(self):
        """correlation_context scopes the ID to the block."""
        before = get_correlation_id()
        with correlation_context("test-correlation-123") as cid:
            assert cid == "test-correlation-123"
            assert get_correlation_id() == "test-correlation-123"
        assert get_correlation_id() == before

    def test_nested_context_reuses_ambient_id(self):
        """A nested context without an explicit ID keeps the outer one."""
        with correlation_context("outer-id"):
            with correlation_context() as inner:
                assert inner == "outer-id"

    def test_context_generates_id(self):
        """A fresh context gets a generated ID."""
        with correlation_context() as cid:
            assert cid
            assert get_correlation_id() == cid


class TestTimer:
    """Tests for Timer context manager."""

    def test_measures_elapsed_time(self):
        """Timer measures elapsed time correctly."""
        with Timer("test_operation") as timer:
            time_module.sleep(0.05)

        assert timer.elapsed_ms >= 45
        assert timer.elapsed_ms < 1000

    def test_timer_name(self):
        """Timer stores operation name."""
        with Timer("my_operation") as timer:
            pass

        assert timer.name == "my_operation"

    def test_logs_slow_operation_as_warning(self, caplog):
        """Operations over warn_ms are logged at WARNING."""
        logger = get_logger("test.timer")
        with caplog.at_level(logging.DEBUG, logger="test.timer"):
            with Timer("slow_op", logger, warn_ms=0):
                time_module.sleep(0.01)

        assert any(
            r.levelno == logging.WARNING and "slow_op took" in r.getMessage()
            for r in caplog.records
        )

    def test_record_adds_timing_sample(self):
        """record=True feeds the process-wide collector on success only."""
        metrics.reset()
        with Timer("whop_list_members", record=True):
            pass
        with pytest.raises(RuntimeError):
            with Timer("whop_list_members", record=True):
                raise RuntimeError("boom")

        assert metrics.get_stats()["timing"]["whop_list_members"]["count"] == 1
        metrics.reset()


class TestMetricsCollector:
    """Tests for MetricsCollector class."""

    def test_record_request(self):
        """Records request counts by endpoint."""
        metrics = MetricsCollector()
        metrics.record_request("/api/health")
        metrics.record_request("/api/health")
        metrics.record_request("/api/analytics")

        stats = metrics.get_stats()
        assert stats["requests"]["/api/health"] == 2
        assert stats["requests"]["/api/analytics"] == 1

    def test_record_error(self):
        """Records error counts by type."""
        metrics = MetricsCollector()
        metrics.record_error("sync_upstream")
        metrics.record_error("sync_store")
        metrics.record_error("sync_upstream")

        stats = metrics.get_stats()
        assert stats["errors"]["sync_upstream"] == 2
        assert stats["errors"]["sync_store"] == 1

    def test_record_timing(self):
        """Records timing statistics."""
        metrics = MetricsCollector()
        metrics.record_timing("sync", 100.0)
        metrics.record_timing("sync", 200.0)
        metrics.record_timing("sync", 150.0)

        timings = metrics.get_stats()["timing"]["sync"]
        assert timings["count"] == 3
        assert timings["avg_ms"] == 150.0
        assert timings["max_ms"] == 200.0
        assert timings["p50_ms"] == 150.0

    def test_timing_samples_are_bounded(self):
        """Only the newest max_samples timings are kept."""
        metrics = MetricsCollector(max_samples=3)
        for value in (1.0, 2.0, 3.0, 4.0, 5.0):
            metrics.record_timing("op", value)

        timings = metrics.get_stats()["timing"]["op"]
        assert timings["count"] == 3
        assert timings["avg_ms"] == 4.0

    def test_reset_stats(self):
        """Reset clears all statistics."""
        metrics = MetricsCollector()
        metrics.record_request("/api/test")
        metrics.record_error("Error")
        metrics.record_timing("/api/test", 100.0)

        metrics.reset()
        stats = metrics.get_stats()

        assert stats == {"requests": {}, "errors": {}, "timing": {}}


class TestStructuredFormatter:
    """Tests for JSON log formatter."""

    def test_formats_as_json(self):
        """Outputs valid JSON."""
        parsed = json.loads(StructuredFormatter().format(_record()))

        assert parsed["message"] == "Test message"
        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "test.logger"
        assert "T" in parsed["timestamp"]

    def test_includes_correlation_id(self):
        """JSON includes correlation ID when set."""
        with correlation_context("test-correlation-456"):
            parsed = json.loads(StructuredFormatter().format(_record()))

        assert parsed["correlation_id"] == "test-correlation-456"

    def test_includes_extra_fields(self):
        """Fields passed via extra= appear at the top level."""
        parsed = json.loads(
            StructuredFormatter().format(_record(company_id="biz_1", duration_ms=12.5))
        )

        assert parsed["company_id"] == "biz_1"
        assert parsed["duration_ms"] == 12.5


class TestHumanReadableFormatter:
    """Tests for text log formatter."""

    def test_includes_correlation_and_extras(self):
        """Text lines carry the correlation ID and extras."""
        with correlation_context("abc12345"):
            line = HumanReadableFormatter().format(_record("Sync done", company_id="biz_1"))

        assert "[abc12345]" in line
        assert "Sync done" in line
        assert "biz_1" in line


class TestGetLogger:
    """Tests for get_logger function."""

    def test_returns_logger(self):
        """Returns a logger instance."""
        logger = get_logger("test.module")
        assert isinstance(logger, logging.Logger)
        assert logger.name == "test.module"


class TestConfigureLogging:
    """Tests for environment-driven logging setup."""

    def test_json_format_from_env(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "warning")
        monkeypatch.setenv("LOG_FORMAT", "json")
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_logging()

            assert root.level == logging.WARNING
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, StructuredFormatter)
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
