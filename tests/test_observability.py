"""Structured logging and operation timing."""

import io
import json
import logging

import pytest

from ocistatus.observability import (
    Layer,
    LogEvent,
    configure_logging,
    correlation_id_var,
    get_correlation_id,
    get_logger,
    set_correlation_id,
    timed_operation,
)


@pytest.fixture
def log_stream():
    stream = io.StringIO()
    root = configure_logging(level="debug", fmt="json", stream=stream)
    yield stream
    for h in list(root.handlers):
        if getattr(h, "_ocistatus", False):
            root.removeHandler(h)
    root.setLevel(logging.NOTSET)


class TestStructuredLogging:
    """Tests for the JSON handler and StatusLogger."""

    def test_json_event(self, log_stream):
        set_correlation_id("corr-test")
        get_logger("unit", Layer.STORE).info("Published", location="r:t")
        event = json.loads(log_stream.getvalue().strip().splitlines()[-1])
        assert event["message"] == "Published"
        assert event["level"] == "info"
        assert event["layer"] == "store"
        assert event["logger"] == "ocistatus.store.unit"
        assert event["correlation_id"] == "corr-test"
        assert event["context"] == {"location": "r:t"}

    def test_reconfigure_replaces_handler(self, log_stream):
        root = configure_logging(level="info", fmt="text", stream=io.StringIO())
        ours = [h for h in root.handlers if getattr(h, "_ocistatus", False)]
        assert len(ours) == 1

    def test_empty_fields_dropped(self):
        event = LogEvent(timestamp="t", level="info", logger="l", message="m")
        assert set(event.to_dict()) == {"timestamp", "level", "logger", "message"}

    def test_records_propagate(self, caplog):
        with caplog.at_level(logging.WARNING, logger="ocistatus"):
            get_logger("unit", Layer.VERIFY).warning("Dropping", error="bad")
        assert any(r.getMessage() == "Dropping" and r.context == {"error": "bad"} for r in caplog.records)

    def test_correlation_id_generated(self):
        set_correlation_id("")
        cid = get_correlation_id()
        assert cid.startswith("corr-")
        assert get_correlation_id() == cid


class TestTimedOperation:
    """Tests for the timing decorator."""

    def test_success_logged_at_debug(self, caplog):
        logger = get_logger("timed", Layer.SESSION)

        @timed_operation(logger, "work")
        def work(x):
            return x * 2

        with caplog.at_level(logging.DEBUG, logger="ocistatus"):
            assert work(2) == 4
        rec = [r for r in caplog.records if r.operation == "work"][-1]
        assert rec.levelno == logging.DEBUG
        assert rec.duration_ms >= 0

    def test_failure_logged_and_reraised(self, caplog):
        logger = get_logger("timed", Layer.SESSION)

        @timed_operation(logger, "boom")
        def boom():
            raise RuntimeError("x")

        with caplog.at_level(logging.DEBUG, logger="ocistatus"):
            with pytest.raises(RuntimeError):
                boom()
        rec = [r for r in caplog.records if r.operation == "boom"][-1]
        assert rec.levelno == logging.WARNING
        assert "failed" in rec.getMessage()

    def test_call_gets_fresh_correlation_id(self, caplog):
        logger = get_logger("timed", Layer.SESSION)
        seen = []

        @timed_operation(logger, "work")
        def work():
            seen.append(correlation_id_var.get())

        with caplog.at_level(logging.DEBUG, logger="ocistatus"):
            work()
            work()
        assert all(cid.startswith("corr-") for cid in seen)
        assert seen[0] != seen[1]
        recs = [r for r in caplog.records if r.operation == "work"]
        assert [r.correlation_id for r in recs] == seen
        assert correlation_id_var.get() == ""

    def test_existing_correlation_id_kept(self):
        logger = get_logger("timed", Layer.SESSION)

        @timed_operation(logger, "work")
        def work():
            return correlation_id_var.get()

        token = set_correlation_id("corr-outer")
        try:
            assert work() == "corr-outer"
            assert correlation_id_var.get() == "corr-outer"
        finally:
            correlation_id_var.reset(token)
