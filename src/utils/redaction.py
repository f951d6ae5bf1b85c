"""Secret and PII redaction for logs and persisted errors.

Provider and storage failures can echo credentials back in their error
text; sanitize_error_message scrubs that before it is stored. Customer
phone numbers are masked in log lines.
"""

import re

_REDACTED = "***REDACTED***"

# Patterns for detecting sensitive values in free-text error messages.
# Handles: Authorization: Basic/Bearer <token>, "key": "value",
# key = "quoted value" and key=value.
_SENSITIVE_KEYWORDS = (
    r"secret|token|password|api_key|auth_token|authorization|credential"
)
_SENSITIVE_VALUE_PATTERNS = re.compile(
    r"(?i)"
    r"(?:"
    r"Authorization\s*:\s*(?:Bearer|Basic)\s+\S+"
    r"|"
    r'"(?:' + _SENSITIVE_KEYWORDS + r')"\s*:\s*"[^"]*"'
    r"|"
    r"(?:" + _SENSITIVE_KEYWORDS + r")\s*[=:]\s*\"[^\"]*\""
    r"|"
    r"(?:" + _SENSITIVE_KEYWORDS + r")\s*[=:]\s*\S+"
    r")",
)


def sanitize_error_message(msg: str | None, max_length: int = 2000) -> str | None:
    """Sanitize an error message for safe DB persistence.

    Redacts sensitive-looking key=value pairs and truncates to max_length.

    Args:
        msg: Error message to sanitize (None passes through).
        max_length: Maximum length of the sanitized message.

    Returns:
        Sanitized and truncated message, or None.
    """
    if msg is None:
        return None
    sanitized = _SENSITIVE_VALUE_PATTERNS.sub(_REDACTED, msg)
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length - 3] + "..."
    return sanitized


def mask_phone(phone: str | None) -> str:
    """Mask all but the last four digits of a phone number for logs."""
    if not phone:
        return ""
    digits = re.sub(r"\D", "", phone)
    if len(digits) <= 4:
        return "*" * len(digits)
    return "*" * (len(digits) - 4) + digits[-4:]
