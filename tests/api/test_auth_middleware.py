"""Tests for the optional shared API key gate, key strength and health checks."""

import pytest
from fastapi.testclient import TestClient

from src.api.middleware.auth import should_authenticate, validate_api_key_strength
from tests.helpers.fakes import AUTH_HEADERS

API_KEY = "k" * 32 + "-field-devices"


def test_api_auth_disabled_by_default(client: TestClient, org_member):
    response = client.get("/api/v1/shipments/missing", headers=AUTH_HEADERS)
    assert response.status_code == 404


def test_api_auth_enforced_when_key_is_set(client: TestClient, org_member, monkeypatch):
    monkeypatch.setenv("CARGOPULSE_API_KEY", API_KEY)

    response = client.get("/api/v1/shipments/missing", headers=AUTH_HEADERS)
    assert response.status_code == 401

    response = client.get(
        "/api/v1/shipments/missing", headers={**AUTH_HEADERS, "X-API-Key": "wrong"}
    )
    assert response.status_code == 401

    response = client.get(
        "/api/v1/shipments/missing", headers={**AUTH_HEADERS, "X-API-Key": API_KEY}
    )
    assert response.status_code == 404


def test_health_blobs_and_webhooks_are_public(client: TestClient, monkeypatch):
    monkeypatch.setenv("CARGOPULSE_API_KEY", API_KEY)

    assert client.get("/health").status_code == 200
    assert client.get("/readyz").status_code in {200, 503}
    assert client.get("/api/v1/blobs/org/x.jpg?expires=1&sig=abc").status_code == 403
    webhook = client.post("/api/v1/webhooks/whatsapp/status")
    assert webhook.json()["error_code"] == "E-5003"


@pytest.mark.parametrize(
    ("path", "protected"),
    [
        ("/api/v1/field/intake", True),
        ("/api/v1/shipments/abc", True),
        ("/api/v1/blobs/org/a.jpg", False),
        ("/api/v1/webhooks/whatsapp/status", False),
        ("/health", False),
        ("/docs", False),
    ],
)
def test_should_authenticate(path: str, protected: bool):
    assert should_authenticate(path) is protected


class TestApiKeyStrength:
    """Tests for API key minimum length validation."""

    def test_short_api_key_rejected_at_startup(self, monkeypatch):
        """Keys shorter than 32 characters raise ValueError."""
        monkeypatch.setenv("CARGOPULSE_API_KEY", "too-short")
        with pytest.raises(ValueError, match="too short"):
            validate_api_key_strength()

    def test_valid_length_api_key_accepted(self, monkeypatch):
        """Keys of 32+ characters pass validation."""
        monkeypatch.setenv("CARGOPULSE_API_KEY", "a" * 32)
        validate_api_key_strength()  # Should not raise

    def test_empty_api_key_skips_validation(self):
        """Unset key (auth disabled) passes validation."""
        validate_api_key_strength()  # Should not raise


class TestHealth:
    """Liveness and readiness endpoints."""

    def test_health_reports_version_and_uptime(self, client: TestClient):
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert "version" in data
        assert data["uptime_seconds"] >= 0

    def test_readyz_degraded_without_signing_secret(self, client: TestClient, monkeypatch):
        monkeypatch.delenv("BLOB_SIGNING_SECRET", raising=False)
        response = client.get("/readyz")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "degraded"
        assert data["checks"]["database"]["status"] == "ok"
        assert data["checks"]["whatsapp"]["status"] == "log_only"

    def test_readyz_ready_when_configured(self, client: TestClient, monkeypatch):
        monkeypatch.setenv("BLOB_SIGNING_SECRET", "s" * 40)
        data = client.get("/readyz").json()
        assert data["status"] == "ready"
        assert data["checks"]["blob_signing_secret"]["status"] == "ok"
