"""
Unit tests for structured logging configuration.

Tests verify:
- Logging configuration works correctly
- Context variables (request_id, feature) are set and retrieved
- Log entries carry the service name and request context
"""
import logging
from io import StringIO

from eduquest.core import logging as logging_module
from eduquest.core.logging import (
    add_request_context,
    configure_logging,
    generate_request_id,
    get_feature,
    get_logger,
    get_request_id,
    set_feature,
    set_request_id,
)


class TestLoggingConfiguration:
    """Test logging configuration and setup."""

    def test_configure_logging_json_output(self):
        """Test that logging can be configured with JSON output."""
        output = StringIO()
        configure_logging(log_level="INFO", json_output=True)

        root_logger = logging.getLogger()
        handler = logging.StreamHandler(output)
        handler.setLevel(logging.INFO)
        root_logger.addHandler(handler)
        previous_level = root_logger.level
        root_logger.setLevel(logging.INFO)
        try:
            logger = get_logger("test_logging_json")
            logger.info("test_message", test_field="test_value")
            handler.flush()
        finally:
            root_logger.removeHandler(handler)
            root_logger.setLevel(previous_level)

        output_str = output.getvalue()
        assert "test_message" in output_str or "test_field" in output_str

    def test_configure_logging_console_output(self):
        """Test that logging can be configured with console output."""
        configure_logging(log_level="INFO", json_output=False)
        logger = get_logger(__name__)

        logger.info("test_message", test_field="test_value")

    def test_service_name_override(self, monkeypatch):
        monkeypatch.setattr(logging_module, "SERVICE_NAME", logging_module.SERVICE_NAME)

        configure_logging(log_level="INFO", service_name="eduquest_ai_worker")

        assert logging_module.SERVICE_NAME == "eduquest_ai_worker"


class TestContextVariables:
    """Test request ID and feature context variables."""

    def test_set_and_get_request_id(self):
        set_request_id("test-request-456")
        assert get_request_id() == "test-request-456"

        set_request_id(None)
        assert get_request_id() is None

    def test_set_and_get_feature(self):
        set_feature("Question Generation")
        assert get_feature() == "Question Generation"

        set_feature(None)
        assert get_feature() is None

    def test_generate_request_id(self):
        request_id = generate_request_id()

        assert isinstance(request_id, str)
        assert len(request_id) == 36
        assert request_id.count("-") == 4

    def test_add_request_context(self):
        set_request_id("req-1")
        set_feature("Flashcard Generation")
        try:
            event = add_request_context(None, "info", {"event": "llm_provider_succeeded"})
        finally:
            set_request_id(None)
            set_feature(None)

        assert event["request_id"] == "req-1"
        assert event["feature"] == "Flashcard Generation"
        assert event["service"] == logging_module.SERVICE_NAME
        assert "timestamp" in event

    def test_explicit_feature_field_wins(self):
        set_feature("Doubt Answering")
        try:
            event = add_request_context(None, "info", {"event": "x", "feature": "Test Analysis"})
        finally:
            set_feature(None)

        assert event["feature"] == "Test Analysis"
