"""
Tests for structured security events and log sanitization.
"""

import json
import logging

import pytest

from log_utils import sanitize_for_logging, setup_logging
from config_manager import LoggingConfig
from security_logger import SecurityEvent, SecurityLogger


@pytest.fixture
def events(caplog):
    """Parsed JSON payloads written to the 'security' logger."""
    caplog.set_level(logging.WARNING, logger="security")

    def parsed():
        return [json.loads(record.getMessage()) for record in caplog.records if record.name == "security"]
    return parsed


@pytest.fixture
def security_log():
    return SecurityLogger(enable_file=False)


class TestSanitizeForLogging:
    """Tests for sanitize_for_logging."""

    def test_strips_control_characters(self):
        assert sanitize_for_logging("line1\nFAKE ENTRY\r\x00done") == "line1 FAKE ENTRY done"

    def test_empty(self):
        assert sanitize_for_logging("") == ""

    def test_truncates(self):
        assert len(sanitize_for_logging("x" * 600)) == 500


class TestSecurityEvents:
    """Tests for the typed log_* helpers."""

    def test_access_denied(self, security_log, events):
        security_log.log_access_denied(action="trash", document_id=5, user_id=3, reason="Only supervisors")

        event = events()[0]
        assert event["event_type"] == "ACCESS_DENIED"
        assert event["error_code"] == "FORBIDDEN"
        assert event["context"]["document_id"] == 5
        assert event["context"]["blocked"] is True

    def test_rate_limit(self, security_log, events):
        security_log.log_rate_limit_exceeded("metadata", "10.0.0.1", "/api/metadata/options/users", 30)

        event = events()[0]
        assert event["event_type"] == "RATE_LIMITED"
        assert event["context"]["group"] == "metadata"
        assert event["context"]["retry_after"] == 30

    def test_invalid_signature(self, security_log, events):
        security_log.log_invalid_signature(12)

        assert events()[0]["context"]["file_id"] == 12

    def test_validation_failure_sanitizes_input(self, security_log, events):
        security_log.log_validation_failure(
            field="loss_id",
            error_code="METADATA_VALIDATION_ERROR",
            input_value="bad\ninput" + "y" * 80,
            source="MetadataService",
            additional_context={"path": "/api/documents/1/metadata\nforged"},
        )

        event = events()[0]
        assert event["field"] == "loss_id"
        assert "\n" not in event["sanitized_input"]
        assert event["sanitized_input"].endswith("...(truncated)")
        assert event["context"]["path"] == "/api/documents/1/metadata forged"

    def test_request_context_is_attached(self, security_log, events):
        request_id = security_log.set_request_context("req-9", user_id="4", source_ip="10.0.0.2")
        security_log.log_invalid_signature(1)
        security_log.clear_request_context()
        security_log.log_invalid_signature(2)

        first, second = events()
        assert request_id == "req-9"
        assert first["request_id"] == "req-9"
        assert first["user_id"] == "4"
        assert second["request_id"] == ""

    def test_generated_request_id(self, security_log):
        assert security_log.set_request_context().startswith("REQ-")

    def test_event_json(self):
        event = SecurityEvent(event_type="ACCESS_DENIED", severity="WARNING", source="DocumentPolicy")

        assert json.loads(event.to_json())["source"] == "DocumentPolicy"


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_file_handler_created(self, tmp_path):
        root = logging.getLogger()
        original_level = root.level
        log_file = tmp_path / "logs" / "documents.log"

        setup_logging(LoggingConfig(level="DEBUG", file=str(log_file), console=False))
        logging.getLogger("documents.test").debug("hello")

        assert log_file.exists()
        assert root.level == logging.DEBUG

        logging.basicConfig(force=True)
        root.setLevel(original_level)
