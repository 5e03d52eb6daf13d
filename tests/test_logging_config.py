"""
Structured logging, payload sanitising and configuration checks.
"""

import logging

import pytest
from unittest.mock import patch

from sheetops.core import config
from sheetops.util.logging import StructuredLogger, logger, sanitize_payload


class TestSanitizePayload:
    """Secrets never reach the log."""

    def test_tokens_and_keys_redacted(self):
        payload = {"access_token": "ya29.secret", "key": "AIza-key", "tab": "Log"}
        assert sanitize_payload(payload) == {"access_token": "[REDACTED]", "key": "[REDACTED]", "tab": "Log"}

    def test_nested_values(self):
        payload = {"data": [{"authorization": "Bearer x", "range": "Log!A2"}]}
        assert sanitize_payload(payload) == {"data": [{"authorization": "[REDACTED]", "range": "Log!A2"}]}

    def test_long_strings_truncated(self):
        assert sanitize_payload("x" * 150) == "x" * 100 + "..."

    def test_reveal_sensitive(self):
        assert sanitize_payload({"token": "t"}, reveal_sensitive=True) == {"token": "t"}


class TestStructuredLogger:

    def test_operation_format(self, caplog):
        test_logger = StructuredLogger("sheetops.test")
        with caplog.at_level(logging.INFO, logger="sheetops.test"):
            test_logger.log_batch_write("sid", "Log", 3, details={"token": "abc"})

        message = caplog.records[-1].getMessage()
        assert "Operation: sheets.batch_update, Status: success" in message
        assert "'ranges': 3" in message
        assert "abc" not in message

    def test_failures_logged_as_errors(self, caplog):
        test_logger = StructuredLogger("sheetops.test")
        with caplog.at_level(logging.INFO, logger="sheetops.test"):
            test_logger.log_operation("sheets.batch_update", "failed", {"tab": "Log"})
        assert caplog.records[-1].levelno == logging.ERROR

    def test_auth_transition(self, caplog):
        with caplog.at_level(logging.INFO, logger="sheetops"):
            logger.log_auth_transition("absent", "valid", {"expires_at_ms": 1})
        assert "'from': 'absent', 'to': 'valid'" in caplog.records[-1].getMessage()

    def test_retry_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="sheetops"):
            logger.log_retry("values.get Log", 503, 1.0, 1, 4)
        assert caplog.records[-1].getMessage() == "Sheets API values.get Log error (503). Retrying in 1.0s (1/4)"


class TestConfig:

    def test_defaults(self):
        assert config.TOKEN_TTL_MS == 3_600_000
        assert config.view_header_rows() == {"no-uptime": 0, "escalation": 3, "downtime": 0}
        assert config.VALUE_INPUT_OPTION == "USER_ENTERED"

    def test_missing_secrets_reported(self):
        with patch.dict("os.environ", {"GOOGLE_API_KEY": "", "GOOGLE_CLIENT_ID": ""}):
            issues = config.validate_config()
        assert any("GOOGLE_API_KEY" in i for i in issues)
        assert any("GOOGLE_CLIENT_ID" in i for i in issues)

    def test_secrets_read_live(self):
        with patch.dict("os.environ", {"GOOGLE_API_KEY": "k", "GOOGLE_CLIENT_ID": "c"}):
            assert config.get_google_api_key() == "k"
            assert config.validate_config() == []

    def test_bad_header_row(self):
        with patch.object(config, "ESCALATION_HEADER_ROW", -1):
            assert any("escalation" in i for i in config.validate_config())
