"""Signed download endpoint for locally stored blobs.

URLs are minted by LocalBlobStorage.signed_url and carry their own
authorization (expiry plus HMAC signature), so the route is exempt from
API-key auth. S3 deployments hand out presigned URLs instead.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from src.api.dependencies import get_blob_storage
from src.services.blob_storage import (
    BlobStorage,
    BlobStorageError,
    LocalBlobStorage,
    verify_signature,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/blobs", tags=["blobs"])


@router.get("/{path:path}")
def download_blob(
    path: str,
    expires: int = Query(...),
    sig: str = Query(..., min_length=1),
    storage: BlobStorage = Depends(get_blob_storage),
) -> Response:
    """Serve a blob when its signature is valid and unexpired.

    Raises:
        HTTPException: 404 when local storage is not in use, 403 for a bad
            or expired signature, 404 when the blob is missing.
    """
    if not isinstance(storage, LocalBlobStorage):
        raise HTTPException(status_code=404, detail="Not found")

    if not verify_signature(storage.signing_secret, path, expires, sig):
        logger.warning("Rejected blob download with invalid signature: %s", path)
        raise HTTPException(status_code=403, detail="Invalid or expired signature")

    try:
        data, content_type = storage.get(path)
    except (FileNotFoundError, BlobStorageError):
        raise HTTPException(status_code=404, detail="Not found") from None

    return Response(
        content=data,
        media_type=content_type,
        headers={"Cache-Control": "private, max-age=300"},
    )
