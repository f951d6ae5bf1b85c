"""Database module for CargoPulse server state and persistence."""

from src.db.connection import (
    SessionLocal,
    engine,
    get_db,
    init_db,
)
from src.db.models import (
    ClientSyncEvent,
    Customer,
    MessageLog,
    MessageTemplate,
    OrgMember,
    ProofOfDelivery,
    Shipment,
    ShipmentAsset,
    ShipmentEvent,
    ShipmentStatus,
)

__all__ = [
    # Models
    "OrgMember",
    "Customer",
    "Shipment",
    "ShipmentEvent",
    "ShipmentAsset",
    "ClientSyncEvent",
    "MessageTemplate",
    "MessageLog",
    "ProofOfDelivery",
    # Enums
    "ShipmentStatus",
    # Connection
    "engine",
    "SessionLocal",
    "get_db",
    "init_db",
]
