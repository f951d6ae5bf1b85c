"""Factories that turn loaded config into clients, stores and engines.

CLI commands never construct HttpClient, OutboxStore or SyncEngine
directly, so tests can patch one place.
"""

from src.cli.config import CargoPulseConfig, resolve_api_key
from src.cli.http_client import HttpClient
from src.offline.outbox import OutboxStore
from src.offline.sync_engine import SyncEngine


def get_client(config: CargoPulseConfig, base_url: str | None = None) -> HttpClient:
    """Create the HTTP client for the configured server.

    Args:
        config: Loaded config (server URL, device user id, timeout).
        base_url: Override for the server URL.

    Returns:
        An HttpClient; use it as an async context manager.
    """
    return HttpClient(
        base_url=base_url or config.server.url,
        user_id=config.device.user_id,
        api_key=resolve_api_key(config),
        timeout=config.server.timeout_seconds,
    )


def get_outbox_store(config: CargoPulseConfig) -> OutboxStore:
    """Open the device outbox at the configured path (or the default)."""
    return OutboxStore(config.device.outbox_path)


def get_sync_engine(
    config: CargoPulseConfig,
    store: OutboxStore,
    client: HttpClient,
    online: bool = False,
) -> SyncEngine:
    """Build a sync engine with the configured timings."""
    return SyncEngine(
        store,
        client,
        online=online,
        auto_sync_delay=config.sync.auto_sync_delay_seconds,
        reload_debounce=config.sync.reload_debounce_seconds,
    )
