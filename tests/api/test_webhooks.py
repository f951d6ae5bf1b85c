"""Tests for the WhatsApp status callback."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from src.db.models import Customer, MessageLog, Shipment
from tests.helpers.fakes import TEST_ORG_ID

CALLBACK_URL = "/api/v1/webhooks/whatsapp/status"
SECRET = "hook-secret-123"


@pytest.fixture
def message_log(test_db: Session) -> MessageLog:
    customer = Customer(org_id=TEST_ORG_ID, name="Dwayne Hall", phone="+18765550100")
    test_db.add(customer)
    test_db.flush()
    shipment = Shipment(
        org_id=TEST_ORG_ID,
        customer_id=customer.id,
        tracking_code="SHP-WHK234",
        destination="Ocho Rios",
    )
    test_db.add(shipment)
    test_db.flush()
    row = MessageLog(
        org_id=TEST_ORG_ID,
        shipment_id=shipment.id,
        to_phone=customer.phone,
        provider="twilio_whatsapp",
        provider_message_id="SM123",
        send_status="queued",
        body="Your cargo was loaded",
        status="loaded",
    )
    test_db.add(row)
    test_db.commit()
    return row


@pytest.fixture(autouse=True)
def _webhook_secret(monkeypatch):
    monkeypatch.setenv("TWILIO_WEBHOOK_SECRET", SECRET)


class TestStatusCallback:
    """POST /api/v1/webhooks/whatsapp/status."""

    def test_delivered_updates_log(
        self, client: TestClient, test_db: Session, message_log: MessageLog
    ):
        response = client.post(
            f"{CALLBACK_URL}?secret={SECRET}",
            data={"MessageSid": "SM123", "MessageStatus": "delivered"},
        )
        assert response.status_code == 200
        assert response.json() == {"ok": True, "updated": 1}

        test_db.refresh(message_log)
        assert message_log.send_status == "delivered"
        assert message_log.error is None

    def test_failure_records_error(
        self, client: TestClient, test_db: Session, message_log: MessageLog
    ):
        client.post(
            f"{CALLBACK_URL}?secret={SECRET}",
            data={
                "MessageSid": "SM123",
                "MessageStatus": "undelivered",
                "ErrorCode": "63016",
                "ErrorMessage": "Outside the allowed window",
            },
        )
        test_db.refresh(message_log)
        assert message_log.send_status == "undelivered"
        assert message_log.error == "63016 Outside the allowed window"

    def test_unknown_sid_acknowledged(self, client: TestClient, message_log: MessageLog):
        response = client.post(
            f"{CALLBACK_URL}?secret={SECRET}",
            data={"MessageSid": "SM999", "MessageStatus": "read"},
        )
        assert response.json() == {"ok": True, "updated": 0}

    def test_missing_fields_acknowledged(self, client: TestClient):
        response = client.post(f"{CALLBACK_URL}?secret={SECRET}", data={})
        assert response.json() == {"ok": True, "updated": 0}

    def test_wrong_secret_rejected(self, client: TestClient, message_log: MessageLog):
        response = client.post(
            f"{CALLBACK_URL}?secret=nope",
            data={"MessageSid": "SM123", "MessageStatus": "delivered"},
        )
        assert response.status_code == 401
        assert response.json()["error_code"] == "E-5003"

    def test_unconfigured_secret_rejects_everything(self, client: TestClient, monkeypatch):
        monkeypatch.delenv("TWILIO_WEBHOOK_SECRET")
        response = client.post(CALLBACK_URL, data={"MessageSid": "SM1"})
        assert response.status_code == 401
