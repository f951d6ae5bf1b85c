"""Idempotency ledger for offline client submissions.

The ``client_sync_events`` primary key (org_id, client_event_id) is the
only concurrency gate for intake processing. A request claims its event
id by inserting a ledger row; a uniqueness violation means another
request already claimed it, and that request's recorded outcome is the
answer. There is deliberately no read-then-write check.

Ledger writes are committed immediately so the claim is visible to a
concurrent retry before any side effect happens. A claim that never
reached an outcome (the process died mid-request) holds a lease of
CLAIM_LEASE_SECONDS; after that a retry may take it over.
"""

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

from sqlalchemy import and_, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.db.models import ClientSyncEvent, utc_now_iso
from src.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)

INTAKE_CREATE_KIND = "intake_create"
CLAIM_LEASE_SECONDS = 300


class LedgerOutcome(str, Enum):
    """How a duplicate claim should be answered."""

    completed = "completed"  # Shipment recorded: replay the result
    in_progress = "in_progress"  # Another request is still working on it
    retryable = "retryable"  # Failed or abandoned before creating anything: may be reclaimed


@dataclass
class LedgerEntry:
    """Snapshot of a ledger row as seen by a duplicate request."""

    client_event_id: str
    shipment_id: str | None
    tracking_code: str | None
    error: str | None
    processed_at: str | None
    claimed_at: str | None = None
    lease_expired: bool = False

    @property
    def outcome(self) -> LedgerOutcome:
        if self.shipment_id:
            return LedgerOutcome.completed
        if self.error or self.lease_expired:
            return LedgerOutcome.retryable
        return LedgerOutcome.in_progress


class IdempotencyLedger:
    """Claim, annotate and complete ledger rows for one organization."""

    def __init__(
        self, db: Session, org_id: str, lease_seconds: int = CLAIM_LEASE_SECONDS
    ) -> None:
        self.db = db
        self.org_id = org_id
        self.lease_seconds = lease_seconds

    def _lease_cutoff(self) -> str:
        return (datetime.now(UTC) - timedelta(seconds=self.lease_seconds)).isoformat()

    def claim(
        self,
        client_event_id: str,
        payload: dict | str | None,
        kind: str = INTAKE_CREATE_KIND,
    ) -> bool:
        """Insert the ledger row for client_event_id.

        Returns:
            True when this request owns the event, False when the id was
            already claimed.
        """
        raw_payload = payload if isinstance(payload, str) or payload is None else json.dumps(payload)
        self.db.add(
            ClientSyncEvent(
                org_id=self.org_id,
                client_event_id=client_event_id,
                kind=kind,
                payload=raw_payload,
            )
        )
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info("Client event %s already claimed", client_event_id)
            return False
        return True

    def get(self, client_event_id: str) -> LedgerEntry | None:
        """Return the current ledger snapshot for client_event_id."""
        row = self.db.get(
            ClientSyncEvent,
            {"org_id": self.org_id, "client_event_id": client_event_id},
            populate_existing=True,
        )
        if row is None:
            return None
        claimed_at = row.claimed_at or row.created_at
        return LedgerEntry(
            client_event_id=row.client_event_id,
            shipment_id=row.shipment_id,
            tracking_code=row.tracking_code,
            error=row.error,
            processed_at=row.processed_at,
            claimed_at=claimed_at,
            lease_expired=(
                row.processed_at is None and claimed_at < self._lease_cutoff()
            ),
        )

    def reclaim(self, client_event_id: str) -> bool:
        """Take over an event whose earlier attempt ended before any shipment.

        That is an attempt that recorded an error, or one that never
        recorded an outcome and whose lease has expired. A compare-and-set
        clears the error and restarts the lease, so exactly one of several
        concurrent retries wins.
        """
        claimed_at = func.coalesce(ClientSyncEvent.claimed_at, ClientSyncEvent.created_at)
        result = self.db.execute(
            update(ClientSyncEvent)
            .where(
                ClientSyncEvent.org_id == self.org_id,
                ClientSyncEvent.client_event_id == client_event_id,
                ClientSyncEvent.shipment_id.is_(None),
                or_(
                    ClientSyncEvent.error.is_not(None),
                    and_(
                        ClientSyncEvent.processed_at.is_(None),
                        claimed_at < self._lease_cutoff(),
                    ),
                ),
            )
            .values(error=None, processed_at=None, claimed_at=utc_now_iso())
        )
        self.db.commit()
        won = result.rowcount == 1
        if won:
            logger.info("Reclaimed client event %s after an unfinished attempt", client_event_id)
        return won

    def record_failure(
        self,
        client_event_id: str,
        error: str,
        shipment_id: str | None = None,
        tracking_code: str | None = None,
    ) -> None:
        """Annotate the ledger row with an error (and any shipment created)."""
        values: dict = {
            "processed_at": utc_now_iso(),
            "error": sanitize_error_message(error) or "unknown_error",
        }
        if shipment_id is not None:
            values["shipment_id"] = shipment_id
            values["tracking_code"] = tracking_code
        self.db.execute(
            update(ClientSyncEvent)
            .where(
                ClientSyncEvent.org_id == self.org_id,
                ClientSyncEvent.client_event_id == client_event_id,
            )
            .values(**values)
        )
        self.db.commit()

    def mark_processed(
        self, client_event_id: str, shipment_id: str, tracking_code: str
    ) -> None:
        """Record the successful outcome and clear any error."""
        self.db.execute(
            update(ClientSyncEvent)
            .where(
                ClientSyncEvent.org_id == self.org_id,
                ClientSyncEvent.client_event_id == client_event_id,
            )
            .values(
                processed_at=utc_now_iso(),
                shipment_id=shipment_id,
                tracking_code=tracking_code,
                error=None,
            )
        )
        self.db.commit()

    def attach_shipment(
        self, client_event_id: str, shipment_id: str, tracking_code: str
    ) -> bool:
        """Record the shipment in the caller's open transaction.

        Committed together with the shipment, so a retry after a crash
        replays it instead of creating a second one.

        Returns:
            False when another attempt already recorded a shipment.
        """
        result = self.db.execute(
            update(ClientSyncEvent)
            .where(
                ClientSyncEvent.org_id == self.org_id,
                ClientSyncEvent.client_event_id == client_event_id,
                ClientSyncEvent.shipment_id.is_(None),
            )
            .values(shipment_id=shipment_id, tracking_code=tracking_code)
        )
        return result.rowcount == 1
