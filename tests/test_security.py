"""Tests for security utilities (localvault/utils/security.py).

Tests log sanitization and secret masking:
- Log injection prevention via sanitize_log_message()
- Sensitive data masking for logs
- Query string redaction for logged URLs
"""

from localvault.utils.security import (
    mask_secret,
    redact_url,
    sanitize_log_message,
)


class TestSanitizeLogMessage:
    """Test suite for log injection prevention."""

    def test_removes_newlines(self):
        """Test sanitize_log_message() removes newline characters."""
        message = "Subject\nmalicious\nlog"
        sanitized = sanitize_log_message(message)

        assert "\n" not in sanitized
        assert sanitized == "Subjectmaliciouslog"

    def test_removes_carriage_returns(self):
        """Test sanitize_log_message() removes carriage returns."""
        sanitized = sanitize_log_message("From: a@example.com\r\nBcc: evil@example.com")
        assert sanitized == "From: a@example.comBcc: evil@example.com"

    def test_removes_tabs(self):
        assert sanitize_log_message("field1\tfield2\tfield3") == "field1field2field3"

    def test_removes_control_characters(self):
        sanitized = sanitize_log_message("text\x00null\x01control\x1fmore\x7f")
        assert sanitized == "textnullcontrolmore"

    def test_preserves_normal_text(self):
        message = "Normal log message with spaces and punctuation!"
        assert sanitize_log_message(message) == message

    def test_handles_none_input(self):
        assert sanitize_log_message(None) == ""

    def test_handles_numeric_input(self):
        assert sanitize_log_message(429) == "429"
        assert sanitize_log_message(1.5) == "1.5"

    def test_preserves_unicode(self):
        assert sanitize_log_message("Grüße aus Köln") == "Grüße aus Köln"

    def test_prevents_log_injection_attacks(self):
        """Test a provider error message cannot forge a second log line."""
        attack = "Invalid grant\n2024-01-01 00:00:00 - INFO - Vault unlocked"
        sanitized = sanitize_log_message(attack)
        assert "\n" not in sanitized
        assert sanitized.startswith("Invalid grant2024")


class TestMaskSecret:
    """Tests for mask_secret()."""

    def test_shows_edges(self):
        assert mask_secret("very_secret_client_id_12345") == "very****...****2345"

    def test_short_secret(self):
        assert mask_secret("short") == "****"
        assert mask_secret(None) == "****"


class TestRedactUrl:
    """Tests for redact_url()."""

    def test_masks_token_parameters(self):
        redacted = redact_url("https://oauth2.googleapis.com/revoke?token=ya29.secret")
        assert "ya29.secret" not in redacted
        assert redacted.startswith("https://oauth2.googleapis.com/revoke?token=")

    def test_keeps_other_parameters(self):
        redacted = redact_url("https://www.googleapis.com/drive/v3/files?pageSize=100&code=abc")
        assert "pageSize=100" in redacted
        assert "abc" not in redacted

    def test_url_without_query_unchanged(self):
        url = "https://gmail.googleapis.com/gmail/v1/users/me/messages"
        assert redact_url(url) == url
