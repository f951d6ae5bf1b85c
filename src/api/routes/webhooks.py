"""Provider status callbacks.

Twilio posts message status updates here as form data. The request is
authenticated by a shared secret in the query string.
"""

import hmac
import logging
import os

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from src.db.connection import get_db
from src.errors import CargoPulseError
from src.services.notification_dispatcher import apply_provider_status

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _form_str(form, key: str) -> str | None:
    value = form.get(key)
    if not isinstance(value, str):
        return None
    return value.strip() or None


def _check_secret(provided: str | None) -> None:
    expected = os.environ.get("TWILIO_WEBHOOK_SECRET", "").strip()
    if not expected or not provided or not hmac.compare_digest(provided, expected):
        raise CargoPulseError.from_code("E-5003")


@router.post("/whatsapp/status")
async def whatsapp_status_callback(
    request: Request,
    secret: str | None = None,
    db: Session = Depends(get_db),
) -> dict:
    """Apply a delivery status update to the matching message logs.

    Form fields: ``MessageSid``, ``MessageStatus`` and, for failures,
    ``ErrorCode``/``ErrorMessage``. Unknown sids are acknowledged so the
    provider does not retry.
    """
    _check_secret(secret)

    form = await request.form()
    sid = _form_str(form, "MessageSid")
    status = _form_str(form, "MessageStatus")
    if not sid or not status:
        return {"ok": True, "updated": 0}

    updated = apply_provider_status(
        db,
        provider_message_id=sid,
        status=status,
        error_code=_form_str(form, "ErrorCode"),
        error_message=_form_str(form, "ErrorMessage"),
    )
    db.commit()
    return {"ok": True, "updated": updated}
