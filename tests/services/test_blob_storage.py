"""Tests for blob storage backends and URL signing."""

import time
from urllib.parse import parse_qs, urlparse

import pytest

from src.services.blob_storage import (
    BlobStorageError,
    LocalBlobStorage,
    S3BlobStorage,
    build_blob_storage,
    extension_for,
    sign_path,
    verify_signature,
)


@pytest.fixture
def storage(tmp_path) -> LocalBlobStorage:
    return LocalBlobStorage(tmp_path, signing_secret="s3cret", public_base_url="https://cp.test/")


class TestLocalBlobStorage:
    """Filesystem backend."""

    def test_put_get_roundtrip(self, storage: LocalBlobStorage):
        path = storage.put("org/o1/shipments/s1/intake/1-0.png", b"png", "image/png")
        assert path == "org/o1/shipments/s1/intake/1-0.png"
        assert storage.exists(path)
        assert storage.get(path) == (b"png", "image/png")

    def test_put_overwrites(self, storage: LocalBlobStorage):
        storage.put("org/o1/a.jpg", b"one", "image/jpeg")
        storage.put("org/o1/a.jpg", b"two", "image/jpeg")
        assert storage.get("org/o1/a.jpg")[0] == b"two"

    def test_leading_slash_normalized(self, storage: LocalBlobStorage):
        assert storage.put("/org/o1/a.jpg", b"x", "image/jpeg") == "org/o1/a.jpg"

    @pytest.mark.parametrize("path", ["../escape.jpg", "org/../../x", "org//a.jpg", ""])
    def test_traversal_rejected(self, storage: LocalBlobStorage, path: str):
        with pytest.raises(BlobStorageError):
            storage.put(path, b"x", "image/jpeg")
        assert storage.exists(path) is False

    def test_missing_blob(self, storage: LocalBlobStorage):
        with pytest.raises(FileNotFoundError):
            storage.get("org/o1/none.jpg")

    def test_signed_url_verifies(self, storage: LocalBlobStorage):
        url = urlparse(storage.signed_url("org/o1/a b.jpg", expires_in=60))
        query = parse_qs(url.query)

        assert url.netloc == "cp.test"
        assert url.path == "/api/v1/blobs/org/o1/a%20b.jpg"
        assert verify_signature(
            "s3cret", "org/o1/a b.jpg", int(query["expires"][0]), query["sig"][0]
        )


class TestSignatures:
    """HMAC path signatures."""

    def test_expired_signature_invalid(self):
        expires = int(time.time()) - 1
        assert not verify_signature("k", "p", expires, sign_path("k", "p", expires))

    def test_wrong_secret_invalid(self):
        expires = int(time.time()) + 60
        assert not verify_signature("k", "p", expires, sign_path("other", "p", expires))

    def test_now_override(self):
        sig = sign_path("k", "p", 100)
        assert verify_signature("k", "p", 100, sig, now=99)
        assert not verify_signature("k", "p", 100, sig, now=101)


@pytest.mark.parametrize(
    ("content_type", "ext"),
    [("image/png", "png"), ("image/webp", "webp"), ("image/jpeg", "jpg"), (None, "jpg")],
)
def test_extension_for(content_type, ext):
    assert extension_for(content_type) == ext


class TestBuildBlobStorage:
    """Backend selection from the environment."""

    def test_local_dir_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("BLOB_STORAGE_DIR", str(tmp_path / "blobs"))
        monkeypatch.setenv("BLOB_SIGNING_SECRET", "configured")
        storage = build_blob_storage()
        assert isinstance(storage, LocalBlobStorage)
        assert storage.base_dir == tmp_path / "blobs"
        assert storage.signing_secret == "configured"

    def test_s3_requires_bucket(self, monkeypatch):
        monkeypatch.setenv("BLOB_STORAGE_BACKEND", "s3")
        with pytest.raises(RuntimeError, match="BLOB_STORAGE_S3_BUCKET"):
            build_blob_storage()

    def test_s3_prefix_applied_to_keys(self, monkeypatch):
        monkeypatch.setenv("BLOB_STORAGE_BACKEND", "s3")
        monkeypatch.setenv("BLOB_STORAGE_S3_BUCKET", "cargo")
        monkeypatch.setenv("BLOB_STORAGE_S3_PREFIX", "/uploads/")
        storage = build_blob_storage()
        assert isinstance(storage, S3BlobStorage)
        assert storage._key("org/o1/a.jpg") == "uploads/org/o1/a.jpg"

    def test_unknown_backend(self, monkeypatch):
        monkeypatch.setenv("BLOB_STORAGE_BACKEND", "ftp")
        with pytest.raises(RuntimeError, match="Unsupported"):
            build_blob_storage()
