"""Shipment creation, status timeline and proof of delivery.

``assert_status_transition`` is the single place the delivered rule is
enforced: delivered is terminal, and it is reachable only through proof
of delivery capture. Every status-changing path goes through it.

Methods do NOT call db.commit(); the caller commits, then dispatches
notifications (the dispatcher commits its own log rows).
"""

import logging
import secrets
import time

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from src.db.models import (
    AssetKind,
    ProofOfDelivery,
    Shipment,
    ShipmentAsset,
    ShipmentEvent,
    ShipmentStatus,
    utc_now_iso,
)
from src.errors import CargoPulseError
from src.errors.domain import NotFoundError
from src.services.blob_storage import BlobStorage, extension_for

logger = logging.getLogger(__name__)

TRACKING_CODE_PREFIX = "SHP"
TRACKING_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
TRACKING_CODE_LENGTH = 6

STATUS_ORDER: tuple[str, ...] = tuple(s.value for s in ShipmentStatus)

DEFAULT_EVENT_NOTES: dict[str, str] = {
    ShipmentStatus.arrived_destination.value: "Arrived at destination",
    ShipmentStatus.collected_by_customer.value: "Collected by customer",
}


def generate_tracking_code(prefix: str = TRACKING_CODE_PREFIX) -> str:
    """Return a short human-friendly code such as SHP-7KQ2MX.

    The alphabet omits 0/O and 1/I so codes survive being read aloud.
    """
    suffix = "".join(
        secrets.choice(TRACKING_CODE_ALPHABET) for _ in range(TRACKING_CODE_LENGTH)
    )
    return f"{prefix}-{suffix}"


def assert_status_transition(
    current: str | None, new: str, via_pod: bool = False, tracking_code: str = ""
) -> None:
    """Reject status changes the lifecycle does not allow.

    Raises:
        CargoPulseError: E-2002 for an unknown status, E-2003 when the
            shipment is already delivered, E-2004 when delivered is
            requested outside proof of delivery capture.
    """
    if new not in STATUS_ORDER:
        raise CargoPulseError.from_code("E-2002", status=new)
    if current == ShipmentStatus.delivered.value:
        raise CargoPulseError.from_code("E-2003", tracking_code=tracking_code or "")
    if new == ShipmentStatus.delivered.value and not via_pod:
        raise CargoPulseError.from_code("E-2004")


class ShipmentService:
    """Shipment persistence operations scoped to an organization."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_shipment(self, org_id: str, shipment_id: str) -> Shipment:
        """Return a shipment with its customer, events and assets loaded.

        Raises:
            NotFoundError: If the shipment does not exist in the organization.
        """
        shipment = self.db.scalars(
            select(Shipment)
            .where(Shipment.id == shipment_id, Shipment.org_id == org_id)
            .options(
                selectinload(Shipment.customer),
                selectinload(Shipment.events),
                selectinload(Shipment.assets),
            )
        ).first()
        if shipment is None:
            raise NotFoundError("Shipment", shipment_id)
        return shipment

    def get_proof_of_delivery(self, shipment_id: str) -> ProofOfDelivery | None:
        return self.db.get(ProofOfDelivery, shipment_id)

    def create_shipment(
        self,
        org_id: str,
        customer_id: str,
        destination: str,
        service_type: str,
        cargo_type: str,
        cargo_meta: dict,
        occurred_at: str,
        note: str | None = None,
        created_by: str | None = None,
        tracking_code: str | None = None,
    ) -> Shipment:
        """Create a collected shipment with its initial timeline event.

        A tracking-code collision surfaces as IntegrityError on flush; the
        caller rolls back and retries with a fresh code.
        """
        shipment = Shipment(
            org_id=org_id,
            customer_id=customer_id,
            tracking_code=tracking_code or generate_tracking_code(),
            destination=destination,
            service_type=service_type,
            cargo_type=cargo_type,
            current_status=ShipmentStatus.collected.value,
            last_event_at=occurred_at,
        )
        shipment.cargo_meta_dict = cargo_meta
        self.db.add(shipment)
        self.db.flush()

        self.db.add(
            ShipmentEvent(
                org_id=org_id,
                shipment_id=shipment.id,
                status=ShipmentStatus.collected.value,
                note=note or "Collected (field intake)",
                occurred_at=occurred_at,
                created_by=created_by,
            )
        )
        self.db.flush()
        return shipment

    def add_asset(
        self,
        org_id: str,
        shipment_id: str,
        kind: AssetKind,
        path: str,
        created_by: str | None = None,
    ) -> ShipmentAsset:
        """Record a stored blob against a shipment."""
        asset = ShipmentAsset(
            org_id=org_id,
            shipment_id=shipment_id,
            kind=kind.value,
            path=path,
            created_by=created_by,
        )
        self.db.add(asset)
        self.db.flush()
        return asset

    def add_status_event(
        self,
        org_id: str,
        shipment_id: str,
        status: str,
        note: str | None = None,
        created_by: str | None = None,
    ) -> ShipmentEvent:
        """Append a status event and move the shipment to that status.

        Raises:
            NotFoundError: If the shipment does not exist.
            CargoPulseError: If the transition is not allowed.
        """
        shipment = self.get_shipment(org_id, shipment_id)
        assert_status_transition(
            shipment.current_status, status, tracking_code=shipment.tracking_code
        )
        occurred_at = utc_now_iso()
        event = ShipmentEvent(
            org_id=org_id,
            shipment_id=shipment.id,
            status=status,
            note=note if note is not None else DEFAULT_EVENT_NOTES.get(status, ""),
            occurred_at=occurred_at,
            created_by=created_by,
        )
        self.db.add(event)
        shipment.current_status = status
        shipment.last_event_at = occurred_at
        self.db.flush()
        logger.info("Shipment %s moved to %s", shipment.tracking_code, status)
        return event

    def record_proof_of_delivery(
        self,
        org_id: str,
        shipment_id: str,
        receiver_name: str,
        photo: bytes,
        content_type: str,
        storage: BlobStorage,
        created_by: str | None = None,
    ) -> ProofOfDelivery:
        """Store the POD photo and mark the shipment delivered.

        Raises:
            NotFoundError: If the shipment does not exist.
            CargoPulseError: E-2003 if it is already delivered, E-3001 if
                the photo cannot be stored.
        """
        shipment = self.get_shipment(org_id, shipment_id)
        assert_status_transition(
            shipment.current_status,
            ShipmentStatus.delivered.value,
            via_pod=True,
            tracking_code=shipment.tracking_code,
        )

        path = (
            f"org/{org_id}/shipments/{shipment_id}/pod/"
            f"{int(time.time() * 1000)}.{extension_for(content_type)}"
        )
        try:
            storage.put(path, photo, content_type or "image/jpeg")
        except Exception as e:
            raise CargoPulseError.from_code("E-3001", details=str(e)) from e

        delivered_at = utc_now_iso()
        pod = self.db.get(ProofOfDelivery, shipment_id)
        if pod is None:
            pod = ProofOfDelivery(shipment_id=shipment_id, org_id=org_id)
            self.db.add(pod)
        pod.photo_path = path
        pod.receiver_name = receiver_name
        pod.delivered_at = delivered_at
        pod.created_by = created_by

        self.add_asset(org_id, shipment_id, AssetKind.pod_photo, path, created_by)
        self.db.add(
            ShipmentEvent(
                org_id=org_id,
                shipment_id=shipment_id,
                status=ShipmentStatus.delivered.value,
                note=f"POD captured ({receiver_name})",
                occurred_at=delivered_at,
                created_by=created_by,
            )
        )
        shipment.current_status = ShipmentStatus.delivered.value
        shipment.last_event_at = delivered_at
        self.db.flush()
        logger.info("Shipment %s delivered to %s", shipment.tracking_code, receiver_name)
        return pod
