"""Error formatting utilities.

This module provides:
- CargoPulseError exception class for application errors
- Error formatting for CLI display
"""

from dataclasses import dataclass, field

from src.errors.registry import get_error


@dataclass
class CargoPulseError(Exception):
    """Application error with code, message, and context.

    Attributes:
        code: Error code in E-XXXX format.
        message: Human-readable error message.
        remediation: Action user should take to resolve.
        is_retryable: Whether the operation can be retried without user action.
        status_code: HTTP status returned when raised inside a route.
        details: Additional context dictionary.
    """

    code: str
    message: str
    remediation: str
    is_retryable: bool = False
    status_code: int = 400
    details: dict = field(default_factory=dict)  # Additional context

    def __str__(self) -> str:
        """Return string representation of the error."""
        return f"{self.code}: {self.message}"

    @classmethod
    def from_code(cls, code: str, **kwargs: object) -> "CargoPulseError":
        """Create error from registry code with context substitution.

        Args:
            code: Error code in E-XXXX format.
            **kwargs: Context values for message template substitution.
                The special key 'details' is stored on the error rather
                than substituted into the message.

        Returns:
            CargoPulseError instance with formatted message.
        """
        details = kwargs.get("details", {})
        error_def = get_error(code)
        if not error_def:
            return cls(
                code=code,
                message=f"Unknown error: {code}",
                remediation="Contact support.",
                details=details if isinstance(details, dict) else {},
            )

        message = error_def.message_template
        try:
            template_kwargs = {k: v for k, v in kwargs.items() if k != "details"}
            if isinstance(details, str):
                template_kwargs["details"] = details
            message = message.format(**template_kwargs)
        except KeyError:
            # Keep template if some placeholders are missing
            pass

        return cls(
            code=error_def.code,
            message=message,
            remediation=error_def.remediation,
            is_retryable=error_def.is_retryable,
            status_code=error_def.http_status,
            details=details if isinstance(details, dict) else {},
        )

    def to_response(self) -> dict:
        """Build the JSON error body returned by the API."""
        return {
            "error": self.message,
            "error_code": self.code,
            "remediation": self.remediation,
            "details": self.details if self.details else None,
        }


def format_error(error: CargoPulseError, include_remediation: bool = True) -> str:
    """Format error for display to user.

    Args:
        error: The CargoPulseError to format.
        include_remediation: Whether to include remediation steps.

    Returns:
        Multi-line formatted string suitable for user display.
    """
    lines = [f"{error.code}: {error.message}"]

    fields = error.details.get("fields") if error.details else None
    if fields:
        for reason in fields:
            lines.append(f"  - {reason}")

    if include_remediation:
        lines.append(f"  Action: {error.remediation}")

    return "\n".join(lines)
