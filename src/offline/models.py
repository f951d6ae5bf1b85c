"""On-device outbox data model.

Two layers live here:

- SQLAlchemy tables (``outbox_items`` / ``outbox_binaries``) on their own
  declarative base, so the device database never shares metadata with
  the server schema.
- Plain dataclasses (``OutboxItem`` and friends) that the store returns
  and the sync engine works with. Callers never see ORM rows.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import ForeignKey, Index, Integer, LargeBinary, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

INTAKE_CREATE_KIND = "intake_create"

PHOTO_ROLE = "photo"
SIGNATURE_ROLE = "signature"


def utc_now_iso() -> str:
    """Return current UTC time as ISO8601 string."""
    return datetime.now(UTC).isoformat()


class OutboxStatus(str, Enum):
    """Lifecycle of a queued submission; synced is terminal."""

    pending = "pending"
    syncing = "syncing"
    synced = "synced"
    failed = "failed"


class OutboxBase(DeclarativeBase):
    """Declarative base for the on-device outbox database."""

    pass


class OutboxRecord(OutboxBase):
    """A queued submission, keyed by its client event id."""

    __tablename__ = "outbox_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OutboxStatus.pending.value
    )
    created_at: Mapped[str] = mapped_column(String(50), nullable=False)
    updated_at: Mapped[str] = mapped_column(String(50), nullable=False, default=utc_now_iso)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    server: Mapped[str | None] = mapped_column(Text, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    binaries: Mapped[list[OutboxBinaryRecord]] = relationship(
        back_populates="item",
        cascade="all, delete-orphan",
        order_by="OutboxBinaryRecord.position",
    )

    __table_args__ = (
        Index("idx_outbox_items_status", "status"),
        Index("idx_outbox_items_created_at", "created_at"),
    )


class OutboxBinaryRecord(OutboxBase):
    """A photo or signature stored alongside its outbox item."""

    __tablename__ = "outbox_binaries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("outbox_items.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(100), nullable=False)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    item: Mapped[OutboxRecord] = relationship(back_populates="binaries")


@dataclass
class OutboxBinary:
    """A captured image queued for upload."""

    filename: str
    content_type: str
    data: bytes

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "content_type": self.content_type,
            "size": len(self.data),
        }


@dataclass
class ServerResult:
    """Identifiers the server returned for a synced submission."""

    shipment_id: str
    tracking_code: str

    def to_dict(self) -> dict:
        return {"shipmentId": self.shipment_id, "trackingCode": self.tracking_code}

    @classmethod
    def from_dict(cls, data: dict) -> ServerResult:
        return cls(
            shipment_id=str(data.get("shipmentId") or ""),
            tracking_code=str(data.get("trackingCode") or ""),
        )


@dataclass
class OutboxItem:
    """One queued field intake.

    ``id`` is the client event id: generated once when the intake is
    saved and reused for every submission attempt.
    """

    id: str
    kind: str
    status: OutboxStatus
    created_at: str
    payload: dict
    photos: list[OutboxBinary] = field(default_factory=list)
    signature: OutboxBinary | None = None
    server: ServerResult | None = None
    error: str | None = None

    @classmethod
    def new(
        cls,
        payload: dict,
        photos: Sequence[OutboxBinary] = (),
        signature: OutboxBinary | None = None,
        kind: str = INTAKE_CREATE_KIND,
    ) -> OutboxItem:
        """Create a pending item with a fresh client event id."""
        return cls(
            id=str(uuid.uuid4()),
            kind=kind,
            status=OutboxStatus.pending,
            created_at=utc_now_iso(),
            payload=dict(payload),
            photos=list(photos),
            signature=signature,
        )

    @property
    def tracking_code(self) -> str | None:
        return self.server.tracking_code if self.server else None

    def to_dict(self) -> dict:
        """Serialize to the persisted record shape (binaries summarized)."""
        return {
            "id": self.id,
            "kind": self.kind,
            "status": self.status.value,
            "created_at": self.created_at,
            "payload": self.payload,
            "photos": [p.to_dict() for p in self.photos],
            "signature": self.signature.to_dict() if self.signature else None,
            "server": self.server.to_dict() if self.server else None,
            "error": self.error,
        }


def record_to_item(record: OutboxRecord) -> OutboxItem:
    """Convert an ORM row (binaries loaded) to an OutboxItem."""
    photos = [
        OutboxBinary(filename=b.filename, content_type=b.content_type, data=b.data)
        for b in record.binaries
        if b.role == PHOTO_ROLE
    ]
    signature = next(
        (
            OutboxBinary(filename=b.filename, content_type=b.content_type, data=b.data)
            for b in record.binaries
            if b.role == SIGNATURE_ROLE
        ),
        None,
    )
    return OutboxItem(
        id=record.id,
        kind=record.kind,
        status=OutboxStatus(record.status),
        created_at=record.created_at,
        payload=json.loads(record.payload),
        photos=photos,
        signature=signature,
        server=ServerResult.from_dict(json.loads(record.server)) if record.server else None,
        error=record.error,
    )


def build_binary_records(item: OutboxItem) -> list[OutboxBinaryRecord]:
    """Build binary rows for an item's photos and signature."""
    records = [
        OutboxBinaryRecord(
            role=PHOTO_ROLE,
            position=index,
            filename=photo.filename,
            content_type=photo.content_type,
            data=photo.data,
        )
        for index, photo in enumerate(item.photos)
    ]
    if item.signature is not None:
        records.append(
            OutboxBinaryRecord(
                role=SIGNATURE_ROLE,
                position=len(records),
                filename=item.signature.filename,
                content_type=item.signature.content_type,
                data=item.signature.data,
            )
        )
    return records
