"""Blob storage backends for shipment assets.

Provides a pluggable storage interface so intake photos, signatures and
POD images are not tied to an ephemeral local filesystem in containerized
deployments. Paths are storage keys of the form
``org/{org_id}/shipments/{shipment_id}/...`` and are identical across
backends.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import mimetypes
import os
import time
from pathlib import Path
from typing import Protocol
from urllib.parse import quote, urlencode

logger = logging.getLogger(__name__)

DEFAULT_SIGNED_URL_TTL_SECONDS = 3600


class BlobStorageError(Exception):
    """Raised when a blob cannot be written or read."""


class BlobStorage(Protocol):
    """Storage contract used by intake and POD capture."""

    def put(self, path: str, data: bytes, content_type: str) -> str:
        """Persist bytes under path (overwriting) and return the path."""

    def get(self, path: str) -> tuple[bytes, str]:
        """Return (bytes, content_type) for a stored blob."""

    def exists(self, path: str) -> bool:
        """Return True when the referenced blob exists."""

    def signed_url(
        self, path: str, expires_in: int = DEFAULT_SIGNED_URL_TTL_SECONDS
    ) -> str:
        """Return a time-limited URL that serves the blob without auth."""


def extension_for(content_type: str | None) -> str:
    """Map an upload content type to a file extension (jpg by default)."""
    ct = (content_type or "").lower()
    if "png" in ct:
        return "png"
    if "webp" in ct:
        return "webp"
    return "jpg"


def _validate_path(path: str) -> str:
    normalized = path.strip().lstrip("/")
    parts = normalized.split("/")
    if not normalized or any(part in {"", ".", ".."} for part in parts):
        raise BlobStorageError(f"Invalid blob path: {path!r}")
    return normalized


def sign_path(secret: str, path: str, expires: int) -> str:
    """Compute the HMAC-SHA256 signature for a path and expiry."""
    message = f"{path}:{expires}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_signature(
    secret: str, path: str, expires: int, signature: str, now: float | None = None
) -> bool:
    """Return True when signature matches path/expires and has not expired."""
    current = time.time() if now is None else now
    if expires < current:
        return False
    expected = sign_path(secret, path, expires)
    return hmac.compare_digest(expected, signature)


class LocalBlobStorage:
    """Filesystem-backed blob storage with HMAC-signed download URLs."""

    def __init__(
        self,
        base_dir: str | Path,
        signing_secret: str,
        public_base_url: str = "",
    ) -> None:
        self.base_dir = Path(base_dir)
        self.signing_secret = signing_secret
        self.public_base_url = public_base_url.rstrip("/")

    def _file_path(self, path: str) -> Path:
        return self.base_dir / _validate_path(path)

    def put(self, path: str, data: bytes, content_type: str) -> str:
        target = self._file_path(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise BlobStorageError(f"Failed to write blob {path}: {exc}") from exc
        return _validate_path(path)

    def get(self, path: str) -> tuple[bytes, str]:
        target = self._file_path(path)
        if not target.is_file():
            raise FileNotFoundError(path)
        content_type = mimetypes.guess_type(target.name)[0] or "application/octet-stream"
        return target.read_bytes(), content_type

    def exists(self, path: str) -> bool:
        try:
            return self._file_path(path).is_file()
        except BlobStorageError:
            return False

    def signed_url(
        self, path: str, expires_in: int = DEFAULT_SIGNED_URL_TTL_SECONDS
    ) -> str:
        key = _validate_path(path)
        expires = int(time.time()) + expires_in
        query = urlencode(
            {"expires": expires, "sig": sign_path(self.signing_secret, key, expires)}
        )
        return f"{self.public_base_url}/api/v1/blobs/{quote(key)}?{query}"


class S3BlobStorage:
    """S3-backed blob storage with presigned download URLs."""

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        region_name: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.region_name = region_name
        self.endpoint_url = endpoint_url
        self._client = None

    def _get_client(self):
        if self._client is not None:
            return self._client
        try:
            import boto3
        except ImportError as exc:
            raise RuntimeError(
                "BLOB_STORAGE_BACKEND=s3 requires boto3. "
                "Install cargopulse[s3] or switch BLOB_STORAGE_BACKEND=local."
            ) from exc
        self._client = boto3.client(
            "s3",
            region_name=self.region_name,
            endpoint_url=self.endpoint_url,
        )
        return self._client

    def _key(self, path: str) -> str:
        key = _validate_path(path)
        if self.prefix:
            return f"{self.prefix}/{key}"
        return key

    def put(self, path: str, data: bytes, content_type: str) -> str:
        try:
            self._get_client().put_object(
                Bucket=self.bucket,
                Key=self._key(path),
                Body=data,
                ContentType=content_type,
            )
        except RuntimeError:
            raise
        except Exception as exc:
            raise BlobStorageError(f"Failed to write blob {path}: {exc}") from exc
        return _validate_path(path)

    def get(self, path: str) -> tuple[bytes, str]:
        response = self._get_client().get_object(Bucket=self.bucket, Key=self._key(path))
        return response["Body"].read(), response.get("ContentType", "application/octet-stream")

    def exists(self, path: str) -> bool:
        try:
            self._get_client().head_object(Bucket=self.bucket, Key=self._key(path))
            return True
        except Exception:
            return False

    def signed_url(
        self, path: str, expires_in: int = DEFAULT_SIGNED_URL_TTL_SECONDS
    ) -> str:
        return self._get_client().generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": self._key(path)},
            ExpiresIn=expires_in,
        )


def get_signing_secret() -> str:
    """Return the secret used to sign local blob URLs."""
    secret = os.environ.get("BLOB_SIGNING_SECRET", "").strip()
    if not secret:
        logger.warning(
            "BLOB_SIGNING_SECRET is not set; using a development secret. "
            "Signed asset URLs are forgeable until it is configured."
        )
        secret = "cargopulse-dev-signing-secret"
    return secret


def build_blob_storage(local_blob_dir: str | Path | None = None) -> BlobStorage:
    """Build blob storage backend from environment configuration."""
    backend = os.environ.get("BLOB_STORAGE_BACKEND", "local").strip().lower()
    if backend in {"", "local"}:
        if local_blob_dir is None:
            configured = os.environ.get("BLOB_STORAGE_DIR", "").strip()
            if configured:
                local_blob_dir = configured
            else:
                from src.utils.paths import get_blob_dir
                local_blob_dir = get_blob_dir()
        return LocalBlobStorage(
            local_blob_dir,
            signing_secret=get_signing_secret(),
            public_base_url=os.environ.get("APP_URL", "").strip(),
        )
    if backend == "s3":
        bucket = os.environ.get("BLOB_STORAGE_S3_BUCKET", "").strip()
        if not bucket:
            raise RuntimeError(
                "BLOB_STORAGE_BACKEND=s3 requires BLOB_STORAGE_S3_BUCKET."
            )
        prefix = os.environ.get("BLOB_STORAGE_S3_PREFIX", "")
        region = os.environ.get("BLOB_STORAGE_S3_REGION", "").strip() or None
        endpoint = os.environ.get("BLOB_STORAGE_S3_ENDPOINT", "").strip() or None
        return S3BlobStorage(
            bucket=bucket,
            prefix=prefix,
            region_name=region,
            endpoint_url=endpoint,
        )
    raise RuntimeError(
        f"Unsupported BLOB_STORAGE_BACKEND={backend!r}. Use 'local' or 's3'."
    )
