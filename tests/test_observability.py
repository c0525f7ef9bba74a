"""Tests for the observability module.

Tests for metrics collection, logging configuration and operation tracing.
"""
import json
import logging

import pytest

from civic_index.observability import (
    ROOT_LOGGER_NAME,
    MetricsCollector,
    configure_logging,
    metrics,
    timed_operation,
    traced,
)


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


class TestMetricsCollector:
    def test_record_operation(self):
        collector = MetricsCollector()
        collector.record_operation("sync", 10.0, True)
        collector.record_operation("sync", 30.0, False, "boom")
        data = collector.get_metrics()["sync"]
        assert data["count"] == 2
        assert data["success_count"] == 1
        assert data["error_count"] == 1
        assert data["avg_duration_ms"] == 20.0
        assert data["min_duration_ms"] == 10.0
        assert data["max_duration_ms"] == 30.0
        assert data["last_error"] == "boom"

    def test_summary(self):
        collector = MetricsCollector()
        assert collector.get_summary()["overall_success_rate"] == 1.0
        collector.record_operation("search", 1.0, True)
        collector.record_operation("search", 1.0, False, "x")
        summary = collector.get_summary()
        assert summary["total_operations"] == 2
        assert summary["overall_success_rate"] == 0.5
        assert summary["operations_tracked"] == ["search"]

    def test_reset(self):
        collector = MetricsCollector()
        collector.record_operation("search", 1.0, True)
        collector.reset()
        assert collector.get_metrics() == {}

    def test_save_metrics(self, tmp_path):
        collector = MetricsCollector(metrics_file=tmp_path / "metrics.json")
        collector.record_operation("generate_indexes", 5.0, True)
        path = collector.save_metrics()
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["operations"]["generate_indexes"]["count"] == 1
        assert [p.name for p in tmp_path.iterdir()] == ["metrics.json"]

    def test_save_without_file_raises(self):
        with pytest.raises(ValueError):
            MetricsCollector().save_metrics()


class TestTimedOperation:
    def test_records_success(self):
        with timed_operation("search", query="noise") as op:
            op["result_count"] = 2
        assert metrics.get_metrics()["search"]["success_count"] == 1

    def test_records_failure_and_reraises(self):
        with pytest.raises(RuntimeError):
            with timed_operation("sync"):
                raise RuntimeError("database locked")
        data = metrics.get_metrics()["sync"]
        assert data["error_count"] == 1
        assert data["last_error"] == "database locked"


class TestTraced:
    def test_traced_function(self):
        @traced("custom_op")
        def work(values):
            return list(values)

        assert work([1, 2]) == [1, 2]
        assert metrics.get_metrics()["custom_op"]["count"] == 1

    def test_traced_defaults_to_function_name(self):
        @traced()
        def rebuild():
            return None

        rebuild()
        assert "rebuild" in metrics.get_metrics()

    def test_traced_preserves_metadata(self):
        @traced("x")
        def documented():
            """Docstring."""

        assert documented.__name__ == "documented"
        assert documented.__doc__ == "Docstring."


class TestConfigureLogging:
    def test_creates_log_file(self, tmp_path):
        log_dir = configure_logging(log_dir=tmp_path / "logs", level=logging.DEBUG, console=False)
        try:
            logging.getLogger("civic_index.tests").info("hello from tests")
            for handler in logging.getLogger(ROOT_LOGGER_NAME).handlers:
                handler.flush()
            content = (log_dir / "civic-index.log").read_text(encoding="utf-8")
            assert "hello from tests" in content
        finally:
            _remove_handlers()

    def test_reconfigure_does_not_stack_handlers(self, tmp_path):
        try:
            configure_logging(log_dir=tmp_path / "a", console=True)
            configure_logging(log_dir=tmp_path / "b", console=True)
            installed = [
                h for h in logging.getLogger(ROOT_LOGGER_NAME).handlers
                if getattr(h, "_civic_index_handler", False)
            ]
            assert len(installed) == 2
        finally:
            _remove_handlers()


def _remove_handlers():
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        if getattr(handler, "_civic_index_handler", False):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(logging.NOTSET)
