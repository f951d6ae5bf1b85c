"""API routes for shipment detail, status events and proof of delivery.

All endpoints use the /api/v1/shipments prefix and are scoped to the
caller's organization.
"""

import logging

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from src.api.dependencies import (
    CallerIdentity,
    get_blob_storage,
    get_whatsapp_provider,
    require_org_member,
)
from src.api.schemas import (
    ProofOfDeliveryCreateResponse,
    ProofOfDeliveryResponse,
    ShipmentAssetResponse,
    ShipmentDetailResponse,
    ShipmentEventResponse,
    StatusEventCreate,
    StatusEventResponse,
)
from src.db.connection import get_db
from src.db.models import ShipmentStatus
from src.errors import CargoPulseError
from src.services.blob_storage import BlobStorage
from src.services.notification_dispatcher import notify_status
from src.services.shipment_service import ShipmentService
from src.services.whatsapp_client import WhatsAppProvider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shipments", tags=["shipments"])


def _get_service(db: Session = Depends(get_db)) -> ShipmentService:
    """Dependency injector for ShipmentService."""
    return ShipmentService(db)


def _signed_url(storage: BlobStorage, path: str) -> str | None:
    try:
        return storage.signed_url(path)
    except Exception:
        logger.warning("Could not sign URL for %s", path, exc_info=True)
        return None


def _notify_best_effort(
    db: Session,
    provider: WhatsAppProvider,
    service: ShipmentService,
    org_id: str,
    shipment_id: str,
    status: str,
    note: str | None = None,
) -> str | None:
    """Send the status notification; failures are logged, never raised."""
    try:
        shipment = service.get_shipment(org_id, shipment_id)
        log_row = notify_status(db, provider, shipment, status, note=note)
        return log_row.id if log_row is not None else None
    except Exception:
        db.rollback()
        logger.warning(
            "%s notification failed for shipment %s", status, shipment_id, exc_info=True
        )
        return None


@router.get("/{shipment_id}", response_model=ShipmentDetailResponse)
def get_shipment(
    shipment_id: str,
    caller: CallerIdentity = Depends(require_org_member),
    service: ShipmentService = Depends(_get_service),
    storage: BlobStorage = Depends(get_blob_storage),
) -> ShipmentDetailResponse:
    """Get a shipment with its customer, timeline, assets and POD.

    Asset and POD URLs are signed and expire after an hour.

    Raises:
        NotFoundError: 404 if the shipment is not in the caller's organization.
    """
    shipment = service.get_shipment(caller.org_id, shipment_id)

    response = ShipmentDetailResponse.model_validate(shipment)
    response.events = sorted(
        (ShipmentEventResponse.model_validate(e) for e in shipment.events),
        key=lambda e: e.occurred_at,
        reverse=True,
    )
    response.assets = [
        ShipmentAssetResponse(
            id=a.id,
            kind=a.kind,
            path=a.path,
            created_at=a.created_at,
            url=_signed_url(storage, a.path),
        )
        for a in shipment.assets
    ]
    pod = service.get_proof_of_delivery(shipment.id)
    if pod is not None:
        response.pod = ProofOfDeliveryResponse(
            receiver_name=pod.receiver_name,
            photo_path=pod.photo_path,
            delivered_at=pod.delivered_at,
            photo_url=_signed_url(storage, pod.photo_path),
        )
    return response


@router.post("/{shipment_id}/events", response_model=StatusEventResponse)
def add_status_event(
    shipment_id: str,
    data: StatusEventCreate,
    caller: CallerIdentity = Depends(require_org_member),
    service: ShipmentService = Depends(_get_service),
    db: Session = Depends(get_db),
    provider: WhatsAppProvider = Depends(get_whatsapp_provider),
) -> StatusEventResponse:
    """Append a status event; delivered is rejected (use POD capture).

    Raises:
        NotFoundError: 404 if the shipment does not exist.
        CargoPulseError: E-2002/E-2003/E-2004 for disallowed transitions.
    """
    event = service.add_status_event(
        caller.org_id,
        shipment_id,
        data.status.strip(),
        note=data.note,
        created_by=caller.user_id,
    )
    db.commit()
    event_response = ShipmentEventResponse.model_validate(event)

    message_log_id = None
    if data.notify:
        message_log_id = _notify_best_effort(
            db, provider, service, caller.org_id, shipment_id, event_response.status,
            note=event_response.note,
        )

    return StatusEventResponse(
        shipment_id=shipment_id,
        current_status=event_response.status,
        event=event_response,
        message_log_id=message_log_id,
    )


@router.post("/{shipment_id}/pod", response_model=ProofOfDeliveryCreateResponse)
async def capture_proof_of_delivery(
    shipment_id: str,
    receiver_name: str = Form(default=""),
    file: UploadFile | None = File(default=None),
    caller: CallerIdentity = Depends(require_org_member),
    service: ShipmentService = Depends(_get_service),
    db: Session = Depends(get_db),
    storage: BlobStorage = Depends(get_blob_storage),
    provider: WhatsAppProvider = Depends(get_whatsapp_provider),
) -> ProofOfDeliveryCreateResponse:
    """Capture proof of delivery: the only path to delivered.

    Form fields: ``receiver_name`` and ``file`` (the POD photo).

    Raises:
        NotFoundError: 404 if the shipment does not exist.
        CargoPulseError: E-1004 for missing fields, E-2003 if already
            delivered, E-3001 if the photo cannot be stored.
    """
    receiver_name = receiver_name.strip()
    if not receiver_name:
        raise CargoPulseError.from_code("E-1004", field="receiver_name")
    if file is None:
        raise CargoPulseError.from_code("E-1004", field="file")

    photo = await file.read()
    return await run_in_threadpool(
        _complete_proof_of_delivery,
        caller,
        shipment_id,
        receiver_name,
        photo,
        file.content_type or "image/jpeg",
        service,
        db,
        storage,
        provider,
    )


def _complete_proof_of_delivery(
    caller: CallerIdentity,
    shipment_id: str,
    receiver_name: str,
    photo: bytes,
    content_type: str,
    service: ShipmentService,
    db: Session,
    storage: BlobStorage,
    provider: WhatsAppProvider,
) -> ProofOfDeliveryCreateResponse:
    pod = service.record_proof_of_delivery(
        caller.org_id,
        shipment_id,
        receiver_name=receiver_name,
        photo=photo,
        content_type=content_type,
        storage=storage,
        created_by=caller.user_id,
    )
    path = pod.photo_path
    db.commit()

    message_log_id = _notify_best_effort(
        db, provider, service, caller.org_id, shipment_id, ShipmentStatus.delivered.value
    )
    return ProofOfDeliveryCreateResponse(
        shipment_id=shipment_id, path=path, message_log_id=message_log_id
    )
