"""In-memory fakes for providers, storage and the intake transport."""

import asyncio
import time

from src.cli.protocol import CargoPulseClientError
from src.services.blob_storage import BlobStorageError, LocalBlobStorage
from src.services.whatsapp_client import WhatsAppSendResult
from src.offline.transport import IntakeSubmitResult

TEST_ORG_ID = "org-kingston"
TEST_USER_ID = "driver-1"
AUTH_HEADERS = {"X-User-Id": TEST_USER_ID}


def intake_form(**overrides) -> dict:
    """A valid camelCase intake as a field device would send it."""
    form = {
        "customerName": "Andre Brown",
        "phone": "+447900000001",
        "destination": "Kingston, Jamaica",
        "serviceType": "door_to_door",
        "cargoType": "barrel",
        "quantity": 3,
        "notes": "Blue barrels by the gate",
        "occurredAtISO": "2026-03-02T09:15:00.000Z",
    }
    form.update(overrides)
    return form


class FakeWhatsAppProvider:
    """Records sends instead of calling Twilio.

    ``delay`` blocks each send like a slow provider round trip.
    """

    def __init__(
        self,
        configured: bool = True,
        fail_with: Exception | None = None,
        delay: float = 0.0,
    ):
        self.configured = configured
        self.fail_with = fail_with
        self.delay = delay
        self.sent: list[tuple[str, str]] = []

    def is_configured(self) -> bool:
        return self.configured

    def send(self, to_e164: str, body: str) -> WhatsAppSendResult:
        if self.delay:
            time.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((to_e164, body))
        return WhatsAppSendResult(
            provider_message_id=f"SM{len(self.sent):04d}", status="queued"
        )


class FailingBlobStorage(LocalBlobStorage):
    """Local storage that fails once ``fail_after`` blobs were written."""

    def __init__(self, base_dir, fail_after: int = 0):
        super().__init__(base_dir, signing_secret="test-signing-secret")
        self.fail_after = fail_after
        self.writes = 0

    def put(self, path: str, data: bytes, content_type: str) -> str:
        if self.writes >= self.fail_after:
            raise BlobStorageError("bucket unavailable")
        self.writes += 1
        return super().put(path, data, content_type)


class FakeIntakeTransport:
    """Scriptable IntakeTransport.

    Event ids in ``fail_ids`` raise; ``delay`` keeps a submission in
    flight long enough to observe concurrency.
    """

    def __init__(self, fail_ids=(), delay: float = 0.0):
        self.fail_ids = set(fail_ids)
        self.delay = delay
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0
        self._results: dict[str, IntakeSubmitResult] = {}

    async def submit_intake(self, client_event_id, payload, photos, signature):
        self.calls.append(client_event_id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if client_event_id in self.fail_ids:
                raise CargoPulseClientError("Invalid form data", status_code=400)
            if client_event_id in self._results:
                previous = self._results[client_event_id]
                return IntakeSubmitResult(
                    previous.shipment_id, previous.tracking_code, duplicate=True
                )
            n = len(self._results) + 1
            result = IntakeSubmitResult(
                shipment_id=f"shipment-{n}", tracking_code=f"SHP-TEST{n:02d}"
            )
            self._results[client_event_id] = result
            return result
        finally:
            self.active -= 1
