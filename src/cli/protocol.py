"""CargoPulseClient protocol and CLI data models.

Defines the interface the CLI and the sync engine use to talk to a
CargoPulse server. HttpClient is the implementation; tests provide fakes.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from src.offline.models import OutboxBinary
from src.offline.transport import IntakeSubmitResult


@dataclass
class HealthStatus:
    """Server health information."""

    healthy: bool
    version: str
    uptime_seconds: int


class CargoPulseClientError(Exception):
    """Transport-neutral error raised by CargoPulseClient implementations.

    HttpClient raises this on HTTP errors. The message is the server's
    ``error`` text when it sent one, so a failed outbox item shows what
    the server said.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)


class CargoPulseClient(Protocol):
    """Protocol defining the interface for server clients."""

    async def __aenter__(self) -> "CargoPulseClient":
        """Open the underlying connection pool."""
        ...

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Release resources on exit."""
        ...

    async def submit_intake(
        self,
        client_event_id: str,
        payload: dict,
        photos: Sequence[OutboxBinary],
        signature: OutboxBinary | None,
    ) -> IntakeSubmitResult:
        """Submit one queued intake.

        Args:
            client_event_id: Idempotency key generated on the device.
            payload: IntakePayload in wire (camelCase) form.
            photos: Pickup photos in capture order.
            signature: Optional pickup signature.

        Returns:
            IntakeSubmitResult with the shipment id and tracking code.
        """
        ...

    async def health(self) -> HealthStatus:
        """Check server health.

        Returns:
            HealthStatus; unreachable servers report healthy=False.
        """
        ...
