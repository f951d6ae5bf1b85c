"""Tests for idempotent intake ingestion and the ledger behind it."""

import re

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from src.db.models import ClientSyncEvent, Customer, Shipment, ShipmentAsset
from src.errors import CargoPulseError
from src.services import shipment_service
from src.services.blob_storage import LocalBlobStorage
from src.services.idempotency import IdempotencyLedger, LedgerOutcome
from src.services.intake_normalizer import normalize_intake
from src.services.intake_service import (
    MAX_TRACKING_CODE_ATTEMPTS,
    AssetUploadError,
    IntakeService,
    UploadedBinary,
)
from tests.helpers.fakes import (
    TEST_ORG_ID,
    TEST_USER_ID,
    FailingBlobStorage,
    FakeWhatsAppProvider,
    intake_form,
)

TRACKING_CODE = re.compile(r"^SHP-[A-Z2-9]{6}$")


def _count(db: Session, model) -> int:
    return db.scalar(select(func.count()).select_from(model))


def _photo(n: int = 0) -> UploadedBinary:
    return UploadedBinary(filename=f"p{n}.jpg", content_type="image/jpeg", data=b"jpeg%d" % n)


@pytest.fixture
def storage(tmp_path) -> LocalBlobStorage:
    return LocalBlobStorage(tmp_path / "blobs", signing_secret="test-signing-secret")


@pytest.fixture
def service(db_session: Session, storage: LocalBlobStorage) -> IntakeService:
    return IntakeService(db_session, storage, FakeWhatsAppProvider())


def _ingest(svc: IntakeService, event_id: str = "evt-1", **kwargs):
    return svc.ingest(
        TEST_ORG_ID, TEST_USER_ID, event_id, normalize_intake(intake_form()), **kwargs
    )


class TestLedger:
    """Claim semantics of the idempotency ledger."""

    def test_second_claim_loses(self, db_session: Session):
        ledger = IdempotencyLedger(db_session, TEST_ORG_ID)
        assert ledger.claim("evt-1", {"a": 1}) is True
        assert ledger.claim("evt-1", {"a": 1}) is False
        assert ledger.get("evt-1").outcome is LedgerOutcome.in_progress

    def test_claims_are_scoped_per_org(self, db_session: Session):
        assert IdempotencyLedger(db_session, "org-a").claim("evt-1", None)
        assert IdempotencyLedger(db_session, "org-b").claim("evt-1", None)

    def test_failure_then_reclaim_once(self, db_session: Session):
        ledger = IdempotencyLedger(db_session, TEST_ORG_ID)
        ledger.claim("evt-1", "{}")
        ledger.record_failure("evt-1", "password=hunter2 rejected")

        entry = ledger.get("evt-1")
        assert entry.outcome is LedgerOutcome.retryable
        assert "hunter2" not in entry.error

        assert ledger.reclaim("evt-1") is True
        assert ledger.reclaim("evt-1") is False
        assert ledger.get("evt-1").outcome is LedgerOutcome.in_progress

    def test_failure_with_shipment_is_completed(self, db_session: Session):
        ledger = IdempotencyLedger(db_session, TEST_ORG_ID)
        ledger.claim("evt-1", None)
        ledger.record_failure("evt-1", "upload failed", "ship-1", "SHP-ABC234")
        assert ledger.get("evt-1").outcome is LedgerOutcome.completed
        assert ledger.reclaim("evt-1") is False

    def test_fresh_claim_is_not_reclaimable(self, db_session: Session):
        ledger = IdempotencyLedger(db_session, TEST_ORG_ID)
        ledger.claim("evt-1", None)
        assert ledger.get("evt-1").lease_expired is False
        assert ledger.reclaim("evt-1") is False

    def test_abandoned_claim_reclaimed_once_after_lease(self, db_session: Session):
        ledger = IdempotencyLedger(db_session, TEST_ORG_ID)
        ledger.claim("evt-1", None)
        row = db_session.get(ClientSyncEvent, {"org_id": TEST_ORG_ID, "client_event_id": "evt-1"})
        row.claimed_at = "2020-01-01T00:00:00+00:00"
        db_session.commit()

        assert ledger.get("evt-1").outcome is LedgerOutcome.retryable
        assert ledger.reclaim("evt-1") is True
        assert ledger.reclaim("evt-1") is False
        assert ledger.get("evt-1").outcome is LedgerOutcome.in_progress

    def test_legacy_row_without_lease_uses_created_at(self, db_session: Session):
        db_session.add(
            ClientSyncEvent(
                org_id=TEST_ORG_ID,
                client_event_id="evt-old",
                created_at="2020-01-01T00:00:00+00:00",
                claimed_at=None,
            )
        )
        db_session.commit()
        assert IdempotencyLedger(db_session, TEST_ORG_ID).reclaim("evt-old") is True

    def test_shipment_attached_once(self, db_session: Session):
        ledger = IdempotencyLedger(db_session, TEST_ORG_ID)
        ledger.claim("evt-1", None)
        assert ledger.attach_shipment("evt-1", "ship-1", "SHP-ABC234") is True
        db_session.commit()
        assert ledger.attach_shipment("evt-1", "ship-2", "SHP-ABC235") is False
        db_session.rollback()

        entry = ledger.get("evt-1")
        assert entry.shipment_id == "ship-1"
        assert entry.outcome is LedgerOutcome.completed

    def test_get_unknown(self, db_session: Session):
        assert IdempotencyLedger(db_session, TEST_ORG_ID).get("nope") is None


class TestIngest:
    """First submission and replays."""

    def test_creates_customer_shipment_and_assets(
        self, service: IntakeService, db_session: Session, storage: LocalBlobStorage
    ):
        result = _ingest(
            service,
            photos=[_photo(0), _photo(1)],
            signature=UploadedBinary("sig.png", "image/png", b"png"),
        )

        assert TRACKING_CODE.match(result.tracking_code)
        assert result.duplicate is False
        shipment = db_session.get(Shipment, result.shipment_id)
        assert shipment.current_status == "collected"
        assert shipment.cargo_meta_dict["quantity"] == 3
        assert shipment.events[0].note == "Blue barrels by the gate"

        kinds = sorted(a.kind for a in shipment.assets)
        assert kinds == ["pickup_photo", "pickup_photo", "pickup_signature"]
        for asset in shipment.assets:
            assert asset.path.startswith(f"org/{TEST_ORG_ID}/shipments/{shipment.id}/intake/")
            assert storage.exists(asset.path)

        entry = IdempotencyLedger(db_session, TEST_ORG_ID).get("evt-1")
        assert entry.processed_at is not None
        assert entry.tracking_code == result.tracking_code

    def test_replay_is_duplicate(self, service: IntakeService, db_session: Session):
        first = _ingest(service)
        second = _ingest(service)

        assert second.duplicate is True
        assert second.shipment_id == first.shipment_id
        assert second.to_response()["duplicate"] is True
        assert _count(db_session, Shipment) == 1

    def test_repeat_phone_reuses_customer(self, service: IntakeService, db_session: Session):
        _ingest(service, "evt-1")
        service.ingest(
            TEST_ORG_ID, TEST_USER_ID, "evt-2",
            normalize_intake(intake_form(customerName="Andre B.")),
        )
        assert _count(db_session, Customer) == 1
        assert db_session.scalars(select(Customer)).one().name == "Andre B."

    def test_in_progress_claim_rejected(self, service: IntakeService, db_session: Session):
        IdempotencyLedger(db_session, TEST_ORG_ID).claim("evt-1", None)
        with pytest.raises(CargoPulseError) as exc_info:
            _ingest(service)
        assert exc_info.value.code == "E-4005"
        assert exc_info.value.status_code == 409


class TestFailures:
    """Partial failures and recovery."""

    def test_failure_before_shipment_is_reclaimable(
        self, service: IntakeService, db_session: Session, storage, monkeypatch
    ):
        def boom(**kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(service.shipments, "create_shipment", boom)
        with pytest.raises(RuntimeError, match="disk full"):
            _ingest(service)
        assert IdempotencyLedger(db_session, TEST_ORG_ID).get("evt-1").error == "disk full"
        assert _count(db_session, Shipment) == 0

        retry = IntakeService(db_session, storage, None)
        result = _ingest(retry)
        assert result.duplicate is False
        assert _count(db_session, Shipment) == 1
        assert IdempotencyLedger(db_session, TEST_ORG_ID).get("evt-1").error is None

    def test_asset_failure_keeps_shipment(self, db_session: Session, tmp_path):
        svc = IntakeService(db_session, FailingBlobStorage(tmp_path, fail_after=1), None)

        with pytest.raises(AssetUploadError) as exc_info:
            _ingest(svc, photos=[_photo(0), _photo(1)])

        error = exc_info.value
        assert error.code == "E-3001"
        body = error.to_response()
        assert body["shipmentId"] == error.details["shipmentId"]
        assert TRACKING_CODE.match(body["trackingCode"])
        assert "bucket unavailable" in body["error"]
        assert _count(db_session, ShipmentAsset) == 1

        replay = _ingest(svc, photos=[_photo(0), _photo(1)])
        assert replay.duplicate is True
        assert replay.shipment_id == body["shipmentId"]
        assert _count(db_session, Shipment) == 1

    def test_tracking_code_exhaustion(
        self, service: IntakeService, db_session: Session, shipment: Shipment, monkeypatch
    ):
        monkeypatch.setattr(shipment_service, "generate_tracking_code", lambda: "SHP-KEY234")

        with pytest.raises(CargoPulseError) as exc_info:
            _ingest(service)

        assert exc_info.value.code == "E-4002"
        assert str(MAX_TRACKING_CODE_ATTEMPTS) in exc_info.value.message
        row = db_session.get(ClientSyncEvent, {"org_id": TEST_ORG_ID, "client_event_id": "evt-1"})
        assert row.error is not None
        assert row.shipment_id is None

    def test_notification_failure_does_not_fail_intake(
        self, db_session: Session, storage, monkeypatch
    ):
        from src.services import intake_service

        def explode(*args, **kwargs):
            raise RuntimeError("template store down")

        monkeypatch.setattr(intake_service, "notify_status", explode)
        result = _ingest(IntakeService(db_session, storage, FakeWhatsAppProvider()))
        assert TRACKING_CODE.match(result.tracking_code)
        assert IdempotencyLedger(db_session, TEST_ORG_ID).get("evt-1").processed_at
