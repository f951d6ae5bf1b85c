"""Pytest fixtures for API tests.

Provides a test client over an in-memory database, local blob storage
in a temp dir, a recording WhatsApp provider and seeded organization data.
"""

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from src.api.dependencies import get_blob_storage, get_whatsapp_provider
from src.api.main import app
from src.db.connection import get_db
from src.db.models import Base, MessageTemplate, OrgMember
from src.services.blob_storage import LocalBlobStorage
from tests.helpers.fakes import TEST_ORG_ID, TEST_USER_ID, FakeWhatsAppProvider


@pytest.fixture
def test_db() -> Generator[Session, None, None]:
    """Create an in-memory SQLite database for testing.

    Creates all tables, yields a session, and cleans up after test.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def blob_storage(tmp_path) -> LocalBlobStorage:
    """Local blob storage rooted in a temp dir."""
    return LocalBlobStorage(tmp_path / "blobs", signing_secret="test-signing-secret")


@pytest.fixture
def whatsapp() -> FakeWhatsAppProvider:
    """Configured provider that records every send."""
    return FakeWhatsAppProvider()


@pytest.fixture
def client(
    test_db: Session, blob_storage: LocalBlobStorage, whatsapp: FakeWhatsAppProvider
) -> Generator[TestClient, None, None]:
    """Create a TestClient with overridden database, storage and provider.

    Yields:
        TestClient configured for testing.
    """

    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_blob_storage] = lambda: blob_storage
    app.dependency_overrides[get_whatsapp_provider] = lambda: whatsapp
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def org_member(test_db: Session) -> OrgMember:
    """The default test user as a member of the test organization."""
    member = OrgMember(org_id=TEST_ORG_ID, user_id=TEST_USER_ID, role="driver")
    test_db.add(member)
    test_db.commit()
    return member


@pytest.fixture
def status_templates(test_db: Session) -> dict[str, MessageTemplate]:
    """Enabled collected/loaded/delivered templates for the test organization."""
    bodies = {
        "collected": "Hi {{name}}, we collected your cargo. Tracking code {{code}}.",
        "loaded": "Hi {{customer_name}}, {{tracking_code}} is loaded. {{note}}",
        "delivered": "{{tracking_code}} was delivered in {{destination}}.",
    }
    templates = {}
    for status, body in bodies.items():
        template = MessageTemplate(
            org_id=TEST_ORG_ID, status=status, name=status.title(), body=body
        )
        test_db.add(template)
        templates[status] = template
    test_db.commit()
    return templates


@pytest.fixture
def slow_provider(
    test_db: Session, blob_storage: LocalBlobStorage
) -> Generator[FakeWhatsAppProvider, None, None]:
    """Wire the app to a provider whose sends block for one second.

    For tests that drive the app through httpx's ASGITransport, which
    lets two requests overlap on one event loop.
    """
    provider = FakeWhatsAppProvider(delay=1.0)

    def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_blob_storage] = lambda: blob_storage
    app.dependency_overrides[get_whatsapp_provider] = lambda: provider
    yield provider
    app.dependency_overrides.clear()
