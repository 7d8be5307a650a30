"""Tests for structured logging configuration."""

import logging

import structlog

from cli.logging_config import _redact_sensitive, bind_conversation, setup_logging


class TestLoggingConfig:
    """Test structlog setup modes."""

    def test_console_mode(self):
        """Console mode logs without raising."""
        setup_logging(json_mode=False, level="DEBUG")
        structlog.get_logger().info("test message", key="value")

    def test_json_mode(self):
        setup_logging(json_mode=True, level="DEBUG")
        logging.getLogger("test_json").info("json test")

    def test_level_filtering(self):
        """Log level filters lower messages."""
        setup_logging(json_mode=False, level="WARNING")
        assert logging.getLogger().level == logging.WARNING

    def test_processor_chain(self):
        setup_logging(json_mode=True, level="DEBUG")
        config = structlog.get_config()
        assert _redact_sensitive in config["processors"]

    def test_default_level_is_info(self):
        setup_logging()
        assert logging.getLogger().level == logging.INFO


class TestRedaction:
    def test_participant_id_keeps_prefix(self):
        event = _redact_sensitive(None, None, {"event": "x", "participant_id": "628111111111@s.whatsapp.net"})
        assert event["participant_id"] == "6281******@s.whatsapp.net"

    def test_email(self):
        event = _redact_sensitive(None, None, {"event": "contact budi@example.com"})
        assert event["event"] == "contact REDACTED@email"

    def test_short_numbers_untouched(self):
        event = _redact_sensitive(None, None, {"event": "x", "conversation_id": "1203@g.us", "count": 12})
        assert event["conversation_id"] == "1203@g.us"
        assert event["count"] == 12


class TestBindConversation:
    def test_binds_and_replaces(self):
        bind_conversation("a@g.us")
        bind_conversation("b@g.us")
        try:
            assert structlog.contextvars.get_contextvars() == {"conversation_id": "b@g.us"}
        finally:
            structlog.contextvars.clear_contextvars()
