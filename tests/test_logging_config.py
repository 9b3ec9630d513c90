"""Tests for structured logging helpers."""

import json
import logging

from leasecore.logging_config import StructuredFormatter, Timer, log_context, setup_logging


def make_record(**extra):
    record = logging.LogRecord("leasecore.test", logging.INFO, __file__, 10, "Scanning batch", (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:

    def test_renders_json(self):
        data = json.loads(StructuredFormatter().format(make_record(records=12)))

        assert data["message"] == "Scanning batch"
        assert data["level"] == "INFO"
        assert data["records"] == 12

    def test_redacts_sensitive_fields(self):
        record = make_record(owner_email="x@example.com", context={"api_key": "k", "operation": "scan"})
        data = json.loads(StructuredFormatter().format(record))

        assert data["owner_email"] == "[REDACTED]"
        assert data["context"] == {"api_key": "[REDACTED]", "operation": "scan"}

    def test_log_context_fields(self):
        with log_context(scan_id="abc"):
            inside = json.loads(StructuredFormatter().format(make_record()))
        outside = json.loads(StructuredFormatter().format(make_record()))

        assert inside["scan_id"] == "abc"
        assert "scan_id" not in outside


class TestSetupLogging:

    def test_file_handler(self, tmp_path):
        log_file = tmp_path / "scan.log"
        setup_logging(format="json", level="debug", log_file=str(log_file))

        logging.getLogger("leasecore.test").debug("hello")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert json.loads(log_file.read_text().splitlines()[-1])["message"] == "hello"
        assert logging.getLogger().level == logging.DEBUG


def test_timer_measures_duration():
    with Timer() as timer:
        pass
    assert timer.duration_ms >= 0
