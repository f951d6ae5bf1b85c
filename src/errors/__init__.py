"""Error handling framework for CargoPulse.

This package provides:
- Error code registry with E-XXXX format codes
- CargoPulseError and CLI formatting
- Typed domain exceptions mapped to HTTP statuses

Error categories:
- E-1xxx: Request/payload errors
- E-2xxx: Validation errors
- E-3xxx: Provider errors
- E-4xxx: System/internal errors
- E-5xxx: Authentication errors
"""

from src.errors.registry import (
    ErrorCategory,
    ErrorCode,
    ERROR_REGISTRY,
    get_error,
    get_errors_by_category,
)
from src.errors.formatter import (
    CargoPulseError,
    format_error,
)

__all__ = [
    # Registry
    "ErrorCode",
    "ErrorCategory",
    "ERROR_REGISTRY",
    "get_error",
    "get_errors_by_category",
    # Formatter
    "CargoPulseError",
    "format_error",
]
