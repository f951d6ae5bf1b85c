"""Error code registry with E-XXXX format codes.

This module defines the error code system for CargoPulse, organizing errors
into categories:
- E-1xxx: Request/payload errors
- E-2xxx: Validation errors
- E-3xxx: Provider errors (blob storage, WhatsApp delivery)
- E-4xxx: System/internal errors
- E-5xxx: Authentication and membership errors

Each error includes a code, title, message template, remediation steps,
and the HTTP status the API returns when the error escapes a route.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    REQUEST = "request"  # E-1xxx: Request/payload errors
    VALIDATION = "validation"  # E-2xxx: Validation errors
    PROVIDER = "provider"  # E-3xxx: Storage / messaging provider errors
    SYSTEM = "system"  # E-4xxx: System/internal errors
    AUTH = "auth"  # E-5xxx: Authentication errors


@dataclass
class ErrorCode:
    """Definition of an error code with metadata.

    Attributes:
        code: Error code in E-XXXX format.
        category: Error category for grouping.
        title: Short title for display.
        message_template: Message with {placeholders} for context.
        remediation: Action user should take to resolve.
        is_retryable: Whether the operation can be retried without user action.
        http_status: Status code used when the error reaches the API boundary.
    """

    code: str  # E-XXXX format
    category: ErrorCategory
    title: str  # Short title for display
    message_template: str  # Message with {placeholders}
    remediation: str  # Action user should take
    is_retryable: bool = False  # Can be retried without user action
    http_status: int = 400


# Error registry - all defined error codes
ERROR_REGISTRY: dict[str, ErrorCode] = {
    # Request errors (E-1xxx)
    "E-1001": ErrorCode(
        code="E-1001",
        category=ErrorCategory.REQUEST,
        title="Invalid Form Data",
        message_template="Invalid form data: {details}",
        remediation="Send the intake as a multipart/form-data request.",
    ),
    "E-1002": ErrorCode(
        code="E-1002",
        category=ErrorCategory.REQUEST,
        title="Invalid Payload",
        message_template="payload must be valid JSON",
        remediation="Encode the intake payload as a JSON object in the 'payload' field.",
    ),
    "E-1003": ErrorCode(
        code="E-1003",
        category=ErrorCategory.REQUEST,
        title="Missing Client Event ID",
        message_template="clientEventId is required",
        remediation="Generate a UUID on the device and send it as 'clientEventId'.",
    ),
    "E-1004": ErrorCode(
        code="E-1004",
        category=ErrorCategory.REQUEST,
        title="Missing Field",
        message_template="{field} is required",
        remediation="Add the missing field and retry.",
    ),
    # Validation errors (E-2xxx)
    "E-2001": ErrorCode(
        code="E-2001",
        category=ErrorCategory.VALIDATION,
        title="Invalid Intake",
        message_template="Intake is incomplete: {reasons}",
        remediation="Correct the listed fields before saving the collection.",
    ),
    "E-2002": ErrorCode(
        code="E-2002",
        category=ErrorCategory.VALIDATION,
        title="Unknown Status",
        message_template="Unknown shipment status '{status}'.",
        remediation="Use one of: received, collected, loaded, departed_uk, "
        "arrived_destination, collected_by_customer, out_for_delivery.",
    ),
    "E-2003": ErrorCode(
        code="E-2003",
        category=ErrorCategory.VALIDATION,
        title="Shipment Delivered",
        message_template="Shipment {tracking_code} is delivered; delivered is terminal.",
        remediation="Delivered shipments cannot change status.",
        http_status=409,
    ),
    "E-2004": ErrorCode(
        code="E-2004",
        category=ErrorCategory.VALIDATION,
        title="Delivered Requires POD",
        message_template="Delivered is set via POD capture.",
        remediation="Capture proof of delivery (photo and receiver name) instead.",
    ),
    # Provider errors (E-3xxx)
    "E-3001": ErrorCode(
        code="E-3001",
        category=ErrorCategory.PROVIDER,
        title="Asset Upload Failed",
        message_template="Asset upload failed: {details}",
        remediation="The shipment was created. Re-attach the photos from the shipment page or retry the sync.",
        is_retryable=True,
    ),
    "E-3002": ErrorCode(
        code="E-3002",
        category=ErrorCategory.PROVIDER,
        title="WhatsApp Send Failed",
        message_template="WhatsApp provider error ({http_status}): {details}",
        remediation="Check the provider credentials and the destination number.",
        is_retryable=True,
    ),
    # System errors (E-4xxx)
    "E-4001": ErrorCode(
        code="E-4001",
        category=ErrorCategory.SYSTEM,
        title="Database Error",
        message_template="Database operation failed: {details}",
        remediation="This is a system error. Retry the operation. Contact support if issue persists.",
        is_retryable=True,
    ),
    "E-4002": ErrorCode(
        code="E-4002",
        category=ErrorCategory.SYSTEM,
        title="Tracking Code Exhausted",
        message_template="Could not allocate a unique tracking code after {attempts} attempts.",
        remediation="Retry the sync. Contact support if issue persists.",
        is_retryable=True,
    ),
    "E-4005": ErrorCode(
        code="E-4005",
        category=ErrorCategory.SYSTEM,
        title="Intake In Progress",
        message_template="Intake {client_event_id} is still being processed.",
        remediation="Retry the sync in a few seconds.",
        is_retryable=True,
        http_status=409,
    ),
    # Auth errors (E-5xxx)
    "E-5001": ErrorCode(
        code="E-5001",
        category=ErrorCategory.AUTH,
        title="Unauthorized",
        message_template="Unauthorized",
        remediation="Sign in again before syncing.",
        http_status=401,
    ),
    "E-5002": ErrorCode(
        code="E-5002",
        category=ErrorCategory.AUTH,
        title="No Organization Membership",
        message_template="No organization membership",
        remediation="Ask an administrator to add your account to an organization.",
    ),
    "E-5003": ErrorCode(
        code="E-5003",
        category=ErrorCategory.AUTH,
        title="Invalid Webhook Secret",
        message_template="Unauthorized",
        remediation="Configure TWILIO_WEBHOOK_SECRET and the status callback URL.",
        http_status=401,
    ),
}


def get_error(code: str) -> ErrorCode | None:
    """Get error definition by code.

    Args:
        code: Error code in E-XXXX format.

    Returns:
        ErrorCode if found, None otherwise.
    """
    return ERROR_REGISTRY.get(code)


def get_errors_by_category(category: ErrorCategory) -> list[ErrorCode]:
    """Get all errors in a category.

    Args:
        category: The error category to filter by.

    Returns:
        List of ErrorCode objects in the specified category.
    """
    return [e for e in ERROR_REGISTRY.values() if e.category == category]
