"""
Structured logging tests.
"""

import io
import json

import pytest

from cargoflow.errors import Forbidden, NotFound
from cargoflow.observability import (
    CargoLayer,
    LogFormat,
    configure_logging,
    correlation_id_var,
    get_correlation_id,
    get_logger,
    reset_correlation_id,
    set_correlation_id,
    timed_operation,
)
from cargoflow.models import ShipmentStatus


@pytest.fixture
def log_stream():
    stream = io.StringIO()
    configure_logging("debug", LogFormat.JSON.value, stream=stream)
    yield stream
    configure_logging()


def lines(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


class TestStructuredLogging:

    def test_json_fields(self, log_stream):
        logger = get_logger("probe", CargoLayer.RECORDS)
        token = set_correlation_id("corr-test")
        try:
            logger.info("Shipment created", tracking_id="CARGO-001")
        finally:
            reset_correlation_id(token)
        [event] = lines(log_stream)
        assert event["level"] == "info"
        assert event["layer"] == "records"
        assert event["logger"] == "cargoflow.records.probe"
        assert event["message"] == "Shipment created"
        assert event["correlation_id"] == "corr-test"
        assert event["context"] == {"tracking_id": "CARGO-001"}
        assert "duration_ms" not in event

    def test_level_filtering(self):
        stream = io.StringIO()
        configure_logging("warning", stream=stream)
        try:
            logger = get_logger("probe", CargoLayer.CONFIG)
            logger.info("hidden")
            logger.warning("shown")
        finally:
            configure_logging()
        assert [e["message"] for e in lines(stream)] == ["shown"]

    def test_text_format(self):
        stream = io.StringIO()
        configure_logging("info", LogFormat.TEXT.value, stream=stream)
        try:
            get_logger("probe", CargoLayer.LEDGER).info("Committed", notifications=2)
        finally:
            configure_logging()
        assert stream.getvalue().strip() == "INFO ledger Committed notifications=2"

    def test_reconfigure_keeps_one_handler(self, log_stream):
        configure_logging("debug", stream=log_stream)
        get_logger("probe", CargoLayer.EVENTS).info("once")
        assert len(lines(log_stream)) == 1

    def test_correlation_id_generated_on_demand(self):
        token = correlation_id_var.set("")
        try:
            cid = get_correlation_id()
            assert cid.startswith("corr-")
            assert get_correlation_id() == cid
        finally:
            correlation_id_var.reset(token)


class TestTimedOperation:

    def test_success(self, log_stream):
        logger = get_logger("probe", CargoLayer.QUERIES)

        @timed_operation(logger, "lookup")
        def lookup():
            return 42

        assert lookup() == 42
        [event] = lines(log_stream)
        assert event["operation"] == "lookup"
        assert event["message"] == "Operation lookup completed"
        assert event["duration_ms"] >= 0

    def test_domain_rejection_records_code(self, log_stream):
        logger = get_logger("probe", CargoLayer.QUERIES)

        @timed_operation(logger, "lookup")
        def lookup():
            raise NotFound("Shipment does not exist")

        with pytest.raises(NotFound):
            lookup()
        [event] = lines(log_stream)
        assert event["level"] == "warning"
        assert event["error_code"] == "NOT_FOUND"

    def test_unexpected_error(self, log_stream):
        logger = get_logger("probe", CargoLayer.QUERIES)

        @timed_operation(logger, "lookup")
        def lookup():
            raise KeyError("x")

        with pytest.raises(KeyError):
            lookup()
        assert lines(log_stream)[0]["error_code"] == "INTERNAL"

    def test_wraps(self):
        @timed_operation(get_logger("probe", CargoLayer.QUERIES), "noop")
        def documented():
            """Docstring."""

        assert documented.__name__ == "documented"
        assert documented.__doc__ == "Docstring."


class TestWriteLogging:

    def test_write_logs_share_correlation_id(self, log_stream, tracker, clock, alice):
        tracker.create_shipment("CARGO-001", "Shanghai", "LA", clock.now() + 3600 * 24, alice)
        events = lines(log_stream)
        committed = next(e for e in events if e["message"] == "Committed write")
        notification = tracker.log.read_stream("CARGO-001")[0]
        assert committed["correlation_id"] == notification.correlation_id
        assert committed["operation"] == "create_shipment"

    def test_rejected_write_logged_at_warning(self, log_stream, tracker, shipment_id, bob):
        log_stream.truncate(0)
        log_stream.seek(0)
        with pytest.raises(Forbidden):
            tracker.update_status(shipment_id, ShipmentStatus.IN_TRANSIT, bob)
        rejected = [e for e in lines(log_stream) if e.get("operation") == "update_status"]
        assert rejected[0]["level"] == "warning"
        assert rejected[0]["error_code"] == "FORBIDDEN"

    def test_plaintext_never_logged(self, log_stream, tracker, shipment_id, alice):
        from cargoflow.client import CargoClient

        CargoClient(tracker, alice).add_event(
            shipment_id, "Shanghai", "Created", "Loaded", weight_kg=2500, contents="Electronics"
        )
        output = log_stream.getvalue()
        assert "Electronics" not in output
        assert "2500000" not in output
