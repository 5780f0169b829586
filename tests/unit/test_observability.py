"""
Unit tests for logging, metrics and tracing setup.
"""

import json
import logging

import pytest
from prometheus_client import CollectorRegistry

from delayqueue.config import get_settings
from delayqueue.constants import ClaimOutcome
from delayqueue.observability.logging import bind_context, clear_context, get_logger, setup_logging
from delayqueue.observability.metrics import MetricsCollector
from delayqueue.observability.tracing import get_tracer


@pytest.fixture
def restore_logging(monkeypatch):
    """Restore root logging and cached settings after the test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    get_settings.cache_clear()

    yield monkeypatch

    root.handlers = handlers
    root.setLevel(level)
    clear_context()
    get_settings.cache_clear()


class TestLogging:
    """Tests for structured logging."""

    def test_json_records_carry_extra_and_context(self, restore_logging, capsys):
        """Stdlib records are rendered as JSON with extra fields and bound context."""
        restore_logging.setenv("LOG_FORMAT", "json")
        restore_logging.setenv("OTEL_SERVICE_NAME", "dq-test")

        setup_logging("dispatcher")
        bind_context(dispatcher_id="d-1")
        logging.getLogger("delayqueue.test").info("Dispatched item", extra={"item_id": "abc"})

        line = capsys.readouterr().out.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "Dispatched item"
        assert record["item_id"] == "abc"
        assert record["process"] == "dispatcher"
        assert record["dispatcher_id"] == "d-1"
        assert record["service"] == "dq-test"
        assert record["level"] == "info"

    def test_structlog_logger(self, restore_logging, capsys):
        """structlog loggers share the same output."""
        restore_logging.setenv("LOG_FORMAT", "json")

        setup_logging()
        get_logger("delayqueue.test").warning("Claim lost", item_id="abc")

        record = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert record["event"] == "Claim lost"
        assert record["item_id"] == "abc"


class TestMetrics:
    """Tests for the metrics collector."""

    def test_exposition(self):
        """Recorded values appear in the Prometheus text output."""
        metrics = MetricsCollector(registry=CollectorRegistry())
        metrics.record_claim(ClaimOutcome.WON)
        metrics.record_dispatched("email")
        metrics.record_dispatch_pass(ready=4, duration_seconds=0.2)

        text = metrics.get_metrics().decode()

        assert 'delay_queue_claims_total{outcome="won"} 1.0' in text
        assert 'delay_queue_dispatched_total{type="email"} 1.0' in text
        assert "delay_queue_ready_items 4.0" in text
        assert metrics.get_content_type().startswith("text/plain")


class TestTracing:
    """Tests for tracing helpers."""

    def test_tracer_without_setup(self):
        """Spans can be opened before tracing is configured."""
        with get_tracer().start_as_current_span("check_lock") as span:
            span.set_attribute("item_id", "abc")
