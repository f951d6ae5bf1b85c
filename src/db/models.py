"""SQLAlchemy ORM models for the CargoPulse server database.

This module defines the organization, customer, shipment, idempotency
ledger and messaging models. Uses SQLAlchemy 2.0 style with Mapped and
mapped_column.
"""

import json
from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


def generate_uuid() -> str:
    """Generate a UUID4 string for primary keys."""
    return str(uuid4())


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return datetime.now(UTC).isoformat()


# Enums matching the database schema constraints


class ShipmentStatus(str, Enum):
    """Shipment lifecycle statuses, in operational order.

    Lifecycle: received -> collected -> loaded -> departed_uk
               -> arrived_destination -> collected_by_customer | out_for_delivery
               -> delivered (terminal, POD only)
    """

    received = "received"
    collected = "collected"
    loaded = "loaded"
    departed_uk = "departed_uk"
    arrived_destination = "arrived_destination"
    collected_by_customer = "collected_by_customer"
    out_for_delivery = "out_for_delivery"
    delivered = "delivered"


class ServiceType(str, Enum):
    """How the cargo reaches the depot."""

    depot = "depot"
    door_to_door = "door_to_door"


class CargoType(str, Enum):
    """Cargo categories recorded at intake."""

    general = "general"
    barrel = "barrel"
    box = "box"
    crate = "crate"
    pallet = "pallet"
    vehicle = "vehicle"
    machinery = "machinery"
    mixed = "mixed"
    other = "other"


class AssetKind(str, Enum):
    """Kinds of binary assets attached to a shipment."""

    pickup_photo = "pickup_photo"
    pickup_signature = "pickup_signature"
    pod_photo = "pod_photo"


class MessageProvider(str, Enum):
    """Where a notification went: a real provider or the log only."""

    twilio_whatsapp = "twilio_whatsapp"
    log = "log"


class SendStatus(str, Enum):
    """Provider-side delivery states tracked on a message log row."""

    logged = "logged"
    queued = "queued"
    sent = "sent"
    delivered = "delivered"
    read = "read"
    failed = "failed"
    undelivered = "undelivered"


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Models


class OrgMember(Base):
    """Membership of a user in an organization.

    Attributes:
        org_id: Organization identifier.
        user_id: Identity-provider user identifier.
        role: Free-form role name (admin, staff, driver).
        created_at: ISO8601 timestamp of membership creation.
    """

    __tablename__ = "org_members"

    org_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="staff")
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    __table_args__ = (Index("idx_org_members_user_id", "user_id"),)

    def __repr__(self) -> str:
        return f"<OrgMember(org_id={self.org_id!r}, user_id={self.user_id!r})>"


class Customer(Base):
    """Customer record, unique per phone within an organization.

    Attributes:
        id: UUID primary key
        org_id: Owning organization
        name: Display name, refreshed on every intake for the phone
        phone: Phone number as entered in the field
        created_at: ISO8601 timestamp of creation
        updated_at: ISO8601 timestamp of last update
    """

    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    org_id: Mapped[str] = mapped_column(String(36), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str] = mapped_column(String(30), nullable=False)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    shipments: Mapped[list["Shipment"]] = relationship(
        "Shipment", back_populates="customer"
    )

    __table_args__ = (
        UniqueConstraint("org_id", "phone", name="uq_customers_org_phone"),
    )

    def __repr__(self) -> str:
        return f"<Customer(id={self.id!r}, name={self.name!r})>"


class Shipment(Base):
    """Tracked consignment.

    Attributes:
        id: UUID primary key
        org_id: Owning organization
        customer_id: Foreign key to the customer
        tracking_code: Human-facing code, SHP-XXXXXX, unique per org
        destination: Free-text destination
        service_type: depot or door_to_door
        cargo_type: Cargo category
        cargo_meta: JSON text of cargo-type-specific details
        current_status: Latest lifecycle status
        last_event_at: ISO8601 timestamp of the latest status event
        created_at: ISO8601 timestamp of creation
        updated_at: ISO8601 timestamp of last update
    """

    __tablename__ = "shipments"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    org_id: Mapped[str] = mapped_column(String(36), nullable=False)
    customer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("customers.id"), nullable=False
    )
    tracking_code: Mapped[str] = mapped_column(String(20), nullable=False)
    destination: Mapped[str] = mapped_column(String(200), nullable=False)
    service_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ServiceType.depot.value
    )
    cargo_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CargoType.general.value
    )
    cargo_meta: Mapped[str | None] = mapped_column(Text, nullable=True)
    current_status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=ShipmentStatus.received.value
    )
    last_event_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    customer: Mapped["Customer"] = relationship("Customer", back_populates="shipments")
    events: Mapped[list["ShipmentEvent"]] = relationship(
        "ShipmentEvent",
        back_populates="shipment",
        cascade="all, delete-orphan",
        order_by="ShipmentEvent.occurred_at",
    )
    assets: Mapped[list["ShipmentAsset"]] = relationship(
        "ShipmentAsset", back_populates="shipment", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint(
            "org_id", "tracking_code", name="uq_shipments_org_tracking_code"
        ),
        Index("idx_shipments_org_status", "org_id", "current_status"),
        Index("idx_shipments_customer_id", "customer_id"),
    )

    @property
    def cargo_meta_dict(self) -> dict:
        """Parse the cargo_meta JSON column into a dict."""
        if not self.cargo_meta:
            return {}
        return json.loads(self.cargo_meta)

    @cargo_meta_dict.setter
    def cargo_meta_dict(self, value: dict) -> None:
        """Serialize a dict into the cargo_meta JSON column."""
        self.cargo_meta = json.dumps(value) if value is not None else None

    def __repr__(self) -> str:
        return (
            f"<Shipment(id={self.id!r}, tracking_code={self.tracking_code!r}, "
            f"status={self.current_status!r})>"
        )


class ShipmentEvent(Base):
    """Timeline entry recording a status change on a shipment."""

    __tablename__ = "shipment_events"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    org_id: Mapped[str] = mapped_column(String(36), nullable=False)
    shipment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("shipments.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    shipment: Mapped["Shipment"] = relationship("Shipment", back_populates="events")

    __table_args__ = (
        Index("idx_shipment_events_shipment_id", "shipment_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<ShipmentEvent(shipment_id={self.shipment_id!r}, "
            f"status={self.status!r})>"
        )


class ShipmentAsset(Base):
    """Binary asset (photo or signature) stored in the blob store.

    Attributes:
        kind: pickup_photo, pickup_signature or pod_photo.
        path: Blob storage key, org/{org}/shipments/{shipment}/...
        created_by: User who uploaded the asset.
    """

    __tablename__ = "shipment_assets"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    org_id: Mapped[str] = mapped_column(String(36), nullable=False)
    shipment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("shipments.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    path: Mapped[str] = mapped_column(String(500), nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    shipment: Mapped["Shipment"] = relationship("Shipment", back_populates="assets")

    __table_args__ = (
        Index("idx_shipment_assets_shipment_id", "shipment_id"),
    )

    def __repr__(self) -> str:
        return f"<ShipmentAsset(kind={self.kind!r}, path={self.path!r})>"


class ClientSyncEvent(Base):
    """Idempotency ledger entry for an offline client submission.

    The composite primary key is the only dedup gate: the first insert
    for (org_id, client_event_id) wins, every later one fails with an
    integrity error and is answered from the recorded outcome.

    Attributes:
        org_id: Organization the caller belongs to.
        client_event_id: UUID generated on the device.
        kind: Submission kind (intake_create).
        payload: Raw JSON payload as received.
        shipment_id: Shipment created for the event, once known.
        tracking_code: Tracking code of that shipment.
        error: Failure message when processing stopped early.
        processed_at: ISO8601 timestamp when processing finished.
        claimed_at: ISO8601 start of the current attempt's lease.
        created_at: ISO8601 timestamp of the first claim.
    """

    __tablename__ = "client_sync_events"

    org_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    client_event_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    kind: Mapped[str] = mapped_column(
        String(30), nullable=False, default="intake_create"
    )
    payload: Mapped[str | None] = mapped_column(Text, nullable=True)
    shipment_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    tracking_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    claimed_at: Mapped[str | None] = mapped_column(
        String(50), nullable=True, default=utc_now_iso
    )
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    def __repr__(self) -> str:
        return (
            f"<ClientSyncEvent(client_event_id={self.client_event_id!r}, "
            f"shipment_id={self.shipment_id!r}, error={self.error!r})>"
        )


class MessageTemplate(Base):
    """Per-organization WhatsApp template for a shipment status."""

    __tablename__ = "message_templates"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    org_id: Mapped[str] = mapped_column(String(36), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    __table_args__ = (
        Index("idx_message_templates_org_status", "org_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<MessageTemplate(status={self.status!r}, enabled={self.enabled!r})>"
        )


class MessageLog(Base):
    """Audit row for every customer notification attempt.

    A row is written before the provider is called. The partial unique
    index on delivered rows means a shipment is told it was delivered at
    most once.

    Attributes:
        provider: twilio_whatsapp when a real send was attempted, else log.
        send_status: logged, queued, sent, delivered, read, failed, undelivered.
        provider_message_id: Provider SID used to match status callbacks.
        body: Rendered message text.
        status: Shipment status the message announces.
        error: Sanitized provider error, if any.
    """

    __tablename__ = "message_logs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    org_id: Mapped[str] = mapped_column(String(36), nullable=False)
    shipment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("shipments.id", ondelete="CASCADE"), nullable=False
    )
    template_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    to_phone: Mapped[str] = mapped_column(String(30), nullable=False)
    provider: Mapped[str] = mapped_column(
        String(30), nullable=False, default=MessageProvider.log.value
    )
    provider_message_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True
    )
    send_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SendStatus.logged.value
    )
    body: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    __table_args__ = (
        Index(
            "uq_message_logs_delivered_once",
            "org_id",
            "shipment_id",
            "status",
            unique=True,
            sqlite_where=text("status = 'delivered'"),
            postgresql_where=text("status = 'delivered'"),
        ),
        Index("idx_message_logs_provider_message_id", "provider_message_id"),
        Index("idx_message_logs_shipment_id", "shipment_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<MessageLog(shipment_id={self.shipment_id!r}, status={self.status!r}, "
            f"send_status={self.send_status!r})>"
        )


class ProofOfDelivery(Base):
    """Proof of delivery captured at hand-over, one per shipment."""

    __tablename__ = "proof_of_delivery"

    shipment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("shipments.id", ondelete="CASCADE"), primary_key=True
    )
    org_id: Mapped[str] = mapped_column(String(36), nullable=False)
    photo_path: Mapped[str] = mapped_column(String(500), nullable=False)
    receiver_name: Mapped[str] = mapped_column(String(200), nullable=False)
    delivered_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ProofOfDelivery(shipment_id={self.shipment_id!r}, "
            f"receiver={self.receiver_name!r})>"
        )
