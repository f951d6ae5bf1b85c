"""Fixtures for service-layer tests: an in-memory database session."""

from collections.abc import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from src.db.models import Base, Customer, OrgMember, Shipment
from src.services.shipment_service import ShipmentService
from tests.helpers.fakes import TEST_ORG_ID, TEST_USER_ID


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    """Fresh in-memory SQLite session with all tables created."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def member(db_session: Session) -> OrgMember:
    row = OrgMember(org_id=TEST_ORG_ID, user_id=TEST_USER_ID)
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture
def shipment(db_session: Session) -> Shipment:
    """A collected shipment whose customer has an E.164 phone."""
    customer = Customer(org_id=TEST_ORG_ID, name="Keisha Grant", phone="+447900000003")
    db_session.add(customer)
    db_session.flush()
    created = ShipmentService(db_session).create_shipment(
        org_id=TEST_ORG_ID,
        customer_id=customer.id,
        destination="Mandeville",
        service_type="depot",
        cargo_type="general",
        cargo_meta={},
        occurred_at="2024-05-01T10:00:00+00:00",
        tracking_code="SHP-KEY234",
    )
    db_session.commit()
    return created
