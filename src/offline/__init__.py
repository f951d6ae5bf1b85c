"""Offline field-intake outbox: durable queue and sync engine.

Intakes recorded without connectivity are queued on the device and
replayed against the server, which deduplicates them by client event id.
"""

from src.offline.connectivity import ConnectivityMonitor
from src.offline.models import (
    INTAKE_CREATE_KIND,
    OutboxBinary,
    OutboxItem,
    OutboxStatus,
    ServerResult,
)
from src.offline.outbox import OutboxStore
from src.offline.sync_engine import (
    AutoSyncTrigger,
    ListRefresher,
    SyncEngine,
    TriggerState,
)
from src.offline.transport import IntakeSubmitResult, IntakeTransport

__all__ = [
    "AutoSyncTrigger",
    "ConnectivityMonitor",
    "INTAKE_CREATE_KIND",
    "IntakeSubmitResult",
    "IntakeTransport",
    "ListRefresher",
    "OutboxBinary",
    "OutboxItem",
    "OutboxStatus",
    "OutboxStore",
    "ServerResult",
    "SyncEngine",
    "TriggerState",
]
