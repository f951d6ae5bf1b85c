"""Service layer for CargoPulse.

Provides field intake ingestion, shipment lifecycle and customer
notification operations.
"""

from src.services.customer_service import CustomerService
from src.services.idempotency import IdempotencyLedger, LedgerOutcome
from src.services.intake_service import AssetUploadError, IntakeResult, IntakeService
from src.services.notification_dispatcher import (
    NotificationDispatcher,
    apply_provider_status,
    notify_status,
)
from src.services.shipment_service import ShipmentService, assert_status_transition

__all__ = [
    "AssetUploadError",
    "CustomerService",
    "IdempotencyLedger",
    "IntakeResult",
    "IntakeService",
    "LedgerOutcome",
    "NotificationDispatcher",
    "ShipmentService",
    "apply_provider_status",
    "assert_status_transition",
    "notify_status",
]
