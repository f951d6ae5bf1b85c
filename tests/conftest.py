"""Root-level pytest fixtures for all tests.

Points CARGOPULSE_HOME at a throwaway directory before any ``src`` module
is imported, so the server engine, blob directory and default outbox
never touch a real user data dir.
"""

import os
import tempfile

import pytest

_TEST_HOME = tempfile.mkdtemp(prefix="cargopulse-tests-")
os.environ["CARGOPULSE_HOME"] = _TEST_HOME
os.environ.pop("DATABASE_URL", None)
os.environ.pop("CARGOPULSE_DB_PATH", None)
os.environ.pop("CARGOPULSE_API_KEY", None)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests that run the client against the in-process API"
    )


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep provider credentials from the developer's shell out of tests."""
    for name in (
        "CARGOPULSE_API_KEY",
        "TWILIO_ACCOUNT_SID",
        "TWILIO_AUTH_TOKEN",
        "TWILIO_WHATSAPP_FROM",
        "TWILIO_WEBHOOK_SECRET",
        "APP_URL",
        "BLOB_STORAGE_BACKEND",
        "BLOB_STORAGE_DIR",
    ):
        monkeypatch.delenv(name, raising=False)
