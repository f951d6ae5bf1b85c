"""API route for offline field intake sync.

Field devices replay queued collections here as multipart requests. The
endpoint is idempotent per client event id; see IntakeService for the
reconciliation steps.
"""

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException

from src.api.dependencies import (
    CallerIdentity,
    get_blob_storage,
    get_caller_identity,
    get_whatsapp_provider,
)
from src.db.connection import get_db
from src.errors import CargoPulseError
from src.services.blob_storage import BlobStorage
from src.services.intake_normalizer import normalize_intake, require_valid_intake
from src.services.intake_service import IntakeService, UploadedBinary
from src.services.membership import get_org_id_for_user
from src.services.whatsapp_client import WhatsAppProvider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/field", tags=["field"])


async def _read_binary(part: UploadFile) -> UploadedBinary:
    return UploadedBinary(
        filename=part.filename or "upload",
        content_type=part.content_type or "image/jpeg",
        data=await part.read(),
    )


async def _parse_payload(value: object) -> dict:
    """Decode the payload form field into a JSON object.

    Raises:
        CargoPulseError: E-1002 when the field is missing, not JSON, or
            not an object.
    """
    if isinstance(value, UploadFile):
        value = (await value.read()).decode("utf-8", errors="replace")
    if not isinstance(value, str) or not value.strip():
        raise CargoPulseError.from_code("E-1002")
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        raise CargoPulseError.from_code("E-1002") from None
    if not isinstance(parsed, dict):
        raise CargoPulseError.from_code("E-1002")
    return parsed


@router.post("/intake")
async def submit_intake(
    request: Request,
    caller: CallerIdentity = Depends(get_caller_identity),
    db: Session = Depends(get_db),
    storage: BlobStorage = Depends(get_blob_storage),
    provider: WhatsAppProvider = Depends(get_whatsapp_provider),
) -> JSONResponse:
    """Accept one queued intake from a field device.

    Form fields: ``clientEventId`` (required), ``payload`` (JSON object,
    required), ``photos`` (zero or more files), ``signature`` (optional
    file).

    Returns:
        ``{ok, shipmentId, trackingCode}``, plus ``duplicate: true`` when
        the client event id was already processed.
    """
    try:
        form = await request.form()
    except MultiPartException as e:
        raise CargoPulseError.from_code("E-1001", details=e.message) from None
    except StarletteHTTPException as e:
        # Starlette reports multipart parse errors as a 400 inside an app
        raise CargoPulseError.from_code("E-1001", details=str(e.detail)) from None

    raw_payload = await _parse_payload(form.get("payload"))

    client_event_id = form.get("clientEventId")
    client_event_id = client_event_id.strip() if isinstance(client_event_id, str) else ""
    if not client_event_id:
        raise CargoPulseError.from_code("E-1003")

    payload = require_valid_intake(normalize_intake(raw_payload))

    org_id = await run_in_threadpool(get_org_id_for_user, db, caller.user_id)
    if not org_id:
        raise CargoPulseError.from_code("E-5002")

    photos = [
        await _read_binary(part)
        for part in form.getlist("photos")
        if isinstance(part, UploadFile)
    ]
    signature_part = form.get("signature")
    signature = (
        await _read_binary(signature_part)
        if isinstance(signature_part, UploadFile)
        else None
    )

    # Sync session, blob writes and the provider send run off the event loop
    service = IntakeService(db, storage=storage, provider=provider)
    result = await run_in_threadpool(
        service.ingest,
        org_id=org_id,
        user_id=caller.user_id,
        client_event_id=client_event_id,
        payload=payload,
        raw_payload=raw_payload,
        photos=photos,
        signature=signature,
    )
    return JSONResponse(content=result.to_response())
