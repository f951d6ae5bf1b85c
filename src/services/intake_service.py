"""Idempotent ingestion of offline field intakes.

Processing order for a first-seen client event id:

1. Claim the ledger row (committed, the concurrency gate).
2. Upsert the customer by (org_id, phone).
3. Create the shipment and its initial collected event.
4. Store photos, then the signature, recording an asset row for each.
5. Best-effort collected notification.
6. Mark the ledger row processed.

Each step commits before the next starts, so a failure leaves behind
only what completed, and the ledger records where it stopped. A failed
asset upload keeps the shipment; the caller receives its id alongside
the error, and a retry of the same event is answered as a duplicate.
"""

import logging
import time
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.db.models import AssetKind, Customer, Shipment, ShipmentStatus
from src.errors import CargoPulseError
from src.services.blob_storage import BlobStorage, extension_for
from src.services.customer_service import CustomerService
from src.services.idempotency import IdempotencyLedger, LedgerOutcome
from src.services.intake_normalizer import build_cargo_meta
from src.services.intake_payload import IntakePayload
from src.services.notification_dispatcher import notify_status
from src.services.shipment_service import ShipmentService
from src.services.whatsapp_client import WhatsAppProvider

logger = logging.getLogger(__name__)

MAX_TRACKING_CODE_ATTEMPTS = 5


@dataclass
class UploadedBinary:
    """A binary part received with an intake."""

    filename: str
    content_type: str
    data: bytes


@dataclass
class IntakeResult:
    """Outcome returned to the field device."""

    shipment_id: str
    tracking_code: str
    duplicate: bool = False

    def to_response(self) -> dict:
        body = {
            "ok": True,
            "shipmentId": self.shipment_id,
            "trackingCode": self.tracking_code,
        }
        if self.duplicate:
            body["duplicate"] = True
        return body


class AssetUploadError(CargoPulseError):
    """An asset failed after the shipment was created.

    Carries the shipment identifiers so the caller can still report them.
    """

    @classmethod
    def for_shipment(
        cls, shipment_id: str, tracking_code: str, reason: str
    ) -> "AssetUploadError":
        base = CargoPulseError.from_code("E-3001", details=reason)
        return cls(
            code=base.code,
            message=base.message,
            remediation=base.remediation,
            is_retryable=base.is_retryable,
            status_code=base.status_code,
            details={"shipmentId": shipment_id, "trackingCode": tracking_code},
        )

    def to_response(self) -> dict:
        body = super().to_response()
        body["shipmentId"] = self.details.get("shipmentId")
        body["trackingCode"] = self.details.get("trackingCode")
        return body


class IntakeService:
    """Reconcile one offline intake submission against the server state."""

    def __init__(
        self,
        db: Session,
        storage: BlobStorage,
        provider: WhatsAppProvider | None,
    ) -> None:
        self.db = db
        self.storage = storage
        self.provider = provider
        self.customers = CustomerService(db)
        self.shipments = ShipmentService(db)

    def ingest(
        self,
        org_id: str,
        user_id: str,
        client_event_id: str,
        payload: IntakePayload,
        raw_payload: dict | None = None,
        photos: list[UploadedBinary] | None = None,
        signature: UploadedBinary | None = None,
    ) -> IntakeResult:
        """Process an intake exactly once per (org_id, client_event_id).

        Args:
            org_id: Caller's organization.
            user_id: Caller, recorded as creator of events and assets.
            client_event_id: Device-generated idempotency key.
            payload: Normalized, validated intake.
            raw_payload: Payload exactly as received, kept on the ledger.
            photos: Pickup photos in capture order.
            signature: Optional pickup signature.

        Returns:
            The created shipment, or the recorded one with duplicate=True.

        Raises:
            CargoPulseError: E-4005 while another request holds the event,
                E-4002 or E-4001 when the shipment cannot be created.
            AssetUploadError: When an asset fails after shipment creation.
        """
        ledger = IdempotencyLedger(self.db, org_id)
        if not ledger.claim(client_event_id, raw_payload or payload.to_wire()):
            replay = self._resolve_duplicate(ledger, client_event_id)
            if replay is not None:
                return replay

        try:
            customer = self._upsert_customer(org_id, payload)
            shipment = self._create_shipment(
                ledger, client_event_id, org_id, user_id, customer, payload
            )
        except Exception as e:
            self.db.rollback()
            if not _lost_claim(e):
                ledger.record_failure(client_event_id, _error_text(e))
            logger.error("Intake %s failed before shipment creation: %s", client_event_id, e)
            if isinstance(e, CargoPulseError):
                raise
            if isinstance(e, SQLAlchemyError):
                raise CargoPulseError.from_code("E-4001", details=_error_text(e)) from e
            raise

        shipment_id = shipment.id
        tracking_code = shipment.tracking_code

        try:
            self._store_assets(org_id, user_id, shipment_id, photos or [], signature)
        except Exception as e:
            self.db.rollback()
            reason = _error_text(e) or "asset_upload_failed"
            ledger.record_failure(client_event_id, reason, shipment_id, tracking_code)
            logger.warning(
                "Intake %s created %s but asset upload failed: %s",
                client_event_id,
                tracking_code,
                reason,
            )
            raise AssetUploadError.for_shipment(shipment_id, tracking_code, reason) from e

        self._notify_collected(shipment_id, org_id)

        ledger.mark_processed(client_event_id, shipment_id, tracking_code)
        logger.info("Intake %s created shipment %s", client_event_id, tracking_code)
        return IntakeResult(shipment_id=shipment_id, tracking_code=tracking_code)

    def _resolve_duplicate(
        self, ledger: IdempotencyLedger, client_event_id: str
    ) -> IntakeResult | None:
        """Answer a duplicate claim; None means the event was reclaimed."""
        entry = ledger.get(client_event_id)
        if entry is not None and entry.outcome is LedgerOutcome.completed:
            logger.info(
                "Intake %s is a replay of shipment %s", client_event_id, entry.tracking_code
            )
            return IntakeResult(
                shipment_id=entry.shipment_id,
                tracking_code=entry.tracking_code or "",
                duplicate=True,
            )
        if (
            entry is not None
            and entry.outcome is LedgerOutcome.retryable
            and ledger.reclaim(client_event_id)
        ):
            return None
        raise CargoPulseError.from_code("E-4005", client_event_id=client_event_id)

    def _upsert_customer(self, org_id: str, payload: IntakePayload) -> Customer:
        try:
            customer = self.customers.upsert_by_phone(
                org_id, phone=payload.phone, name=payload.customer_name
            )
            self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent insert of the same phone.
            self.db.rollback()
            customer = self.customers.upsert_by_phone(
                org_id, phone=payload.phone, name=payload.customer_name
            )
            self.db.commit()
        return customer

    def _create_shipment(
        self,
        ledger: IdempotencyLedger,
        client_event_id: str,
        org_id: str,
        user_id: str,
        customer: Customer,
        payload: IntakePayload,
    ) -> Shipment:
        customer_id = customer.id
        cargo_meta = build_cargo_meta(payload)
        for attempt in range(1, MAX_TRACKING_CODE_ATTEMPTS + 1):
            try:
                shipment = self.shipments.create_shipment(
                    org_id=org_id,
                    customer_id=customer_id,
                    destination=payload.destination,
                    service_type=payload.service_type,
                    cargo_type=payload.cargo_type,
                    cargo_meta=cargo_meta,
                    occurred_at=payload.occurred_at_iso,
                    note=payload.notes,
                    created_by=user_id,
                )
                if not ledger.attach_shipment(
                    client_event_id, shipment.id, shipment.tracking_code
                ):
                    self.db.rollback()
                    raise CargoPulseError.from_code(
                        "E-4005", client_event_id=client_event_id
                    )
                self.db.commit()
                return shipment
            except IntegrityError:
                self.db.rollback()
                logger.warning(
                    "Tracking code collision on attempt %d/%d",
                    attempt,
                    MAX_TRACKING_CODE_ATTEMPTS,
                )
        raise CargoPulseError.from_code("E-4002", attempts=MAX_TRACKING_CODE_ATTEMPTS)

    def _store_assets(
        self,
        org_id: str,
        user_id: str,
        shipment_id: str,
        photos: list[UploadedBinary],
        signature: UploadedBinary | None,
    ) -> None:
        uploads: list[tuple[UploadedBinary, AssetKind]] = [
            (photo, AssetKind.pickup_photo) for photo in photos
        ]
        if signature is not None:
            uploads.append((signature, AssetKind.pickup_signature))

        for index, (binary, kind) in enumerate(uploads):
            content_type = binary.content_type or "image/jpeg"
            path = (
                f"org/{org_id}/shipments/{shipment_id}/intake/"
                f"{int(time.time() * 1000)}-{index}.{extension_for(content_type)}"
            )
            self.storage.put(path, binary.data, content_type)
            self.shipments.add_asset(org_id, shipment_id, kind, path, created_by=user_id)
            self.db.commit()

    def _notify_collected(self, shipment_id: str, org_id: str) -> None:
        try:
            shipment = self.shipments.get_shipment(org_id, shipment_id)
            notify_status(self.db, self.provider, shipment, ShipmentStatus.collected.value)
        except Exception:
            self.db.rollback()
            logger.warning(
                "Collected notification failed for shipment %s", shipment_id, exc_info=True
            )


def _lost_claim(error: Exception) -> bool:
    return isinstance(error, CargoPulseError) and error.code == "E-4005"


def _error_text(error: Exception) -> str:
    if isinstance(error, CargoPulseError):
        return error.message
    return str(error)
