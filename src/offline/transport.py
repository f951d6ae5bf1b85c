"""Submission seam between the sync engine and the server.

The engine only needs ``submit_intake``; HttpClient implements it over
HTTP, tests implement it with fakes.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from src.offline.models import OutboxBinary


@dataclass
class IntakeSubmitResult:
    """Server acknowledgement of a submitted intake."""

    shipment_id: str
    tracking_code: str
    duplicate: bool = False

    @classmethod
    def from_api(cls, data: dict) -> "IntakeSubmitResult":
        """Construct from API JSON, tolerating extra fields."""
        return cls(
            shipment_id=str(data["shipmentId"]),
            tracking_code=str(data["trackingCode"]),
            duplicate=bool(data.get("duplicate", False)),
        )


class IntakeTransport(Protocol):
    """Anything that can deliver one queued intake to the server."""

    async def submit_intake(
        self,
        client_event_id: str,
        payload: dict,
        photos: Sequence[OutboxBinary],
        signature: OutboxBinary | None,
    ) -> IntakeSubmitResult:
        """Submit one intake as a single multipart request.

        Raises:
            Exception: Any failure; the engine records the message verbatim.
        """
        ...
