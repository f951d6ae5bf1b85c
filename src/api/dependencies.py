"""Shared FastAPI dependencies: caller identity, organization and providers.

Blob storage and the WhatsApp provider are resolved through dependencies
so tests can swap them with ``app.dependency_overrides``.
"""

from dataclasses import dataclass
from functools import lru_cache

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from src.db.connection import get_db
from src.errors import CargoPulseError
from src.services.blob_storage import BlobStorage, build_blob_storage
from src.services.membership import get_org_id_for_user
from src.services.whatsapp_client import WhatsAppProvider, build_whatsapp_provider


@dataclass
class CallerIdentity:
    """Authenticated caller and, once resolved, their organization."""

    user_id: str
    org_id: str | None = None


def get_caller_identity(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
) -> CallerIdentity:
    """Resolve the calling user from the X-User-Id header.

    Raises:
        CargoPulseError: E-5001 when the header is missing or blank.
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise CargoPulseError.from_code("E-5001")
    return CallerIdentity(user_id=user_id)


def require_org_member(
    caller: CallerIdentity = Depends(get_caller_identity),
    db: Session = Depends(get_db),
) -> CallerIdentity:
    """Resolve the caller's organization.

    Raises:
        CargoPulseError: E-5002 when the caller belongs to no organization.
    """
    org_id = get_org_id_for_user(db, caller.user_id)
    if not org_id:
        raise CargoPulseError.from_code("E-5002")
    return CallerIdentity(user_id=caller.user_id, org_id=org_id)


@lru_cache(maxsize=1)
def _default_blob_storage() -> BlobStorage:
    return build_blob_storage()


def get_blob_storage() -> BlobStorage:
    """Return the process-wide blob storage backend."""
    return _default_blob_storage()


def get_whatsapp_provider() -> WhatsAppProvider:
    """Return the WhatsApp provider configured from the environment."""
    return build_whatsapp_provider()
