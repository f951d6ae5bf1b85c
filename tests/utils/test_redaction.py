"""Tests for centralized redaction utilities."""

import pytest

from src.utils.redaction import mask_phone, sanitize_error_message


class TestSanitizeErrorMessage:
    """Free-text error sanitization."""

    @pytest.mark.parametrize(
        "message",
        [
            "Authorization: Basic QUMxMjM6dG9rZW4=",
            'body {"auth_token": "abc123"}',
            "failed with token=abc123",
            'password = "hunter two"',
        ],
    )
    def test_secrets_redacted(self, message):
        sanitized = sanitize_error_message(message)
        assert "***REDACTED***" in sanitized
        for secret in ("QUMxMjM6dG9rZW4=", "abc123", "hunter two"):
            assert secret not in sanitized

    def test_plain_message_unchanged(self):
        assert sanitize_error_message("bucket unavailable") == "bucket unavailable"

    def test_none_passes_through(self):
        assert sanitize_error_message(None) is None

    def test_truncated(self):
        sanitized = sanitize_error_message("x" * 50, max_length=10)
        assert sanitized == "xxxxxxx..."


@pytest.mark.parametrize(
    ("phone", "masked"),
    [("+447900000001", "********0001"), ("123", "***"), ("", ""), (None, "")],
)
def test_mask_phone(phone, masked):
    assert mask_phone(phone) == masked
