"""CargoPulse CLI: field intake outbox and server management.

Usage:
    cargopulse serve                 Start the API server
    cargopulse intake add ...        Record a collection (queued offline)
    cargopulse outbox list           Show queued intakes
    cargopulse outbox sync           Submit pending and failed intakes
    cargopulse outbox watch          Sync automatically when online
"""

import asyncio
import logging
import mimetypes
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Optional, TypeVar

import typer
from rich.console import Console

from src.cli.config import (
    CONFIG_SEARCH_PATHS,
    CargoPulseConfig,
    clear_api_key,
    load_config,
    load_config_or_default,
    store_api_key,
)
from src.cli.factory import get_client, get_outbox_store, get_sync_engine
from src.cli.output import format_counts, format_outbox_table, format_sync_results
from src.errors import CargoPulseError, format_error
from src.offline.connectivity import ConnectivityMonitor
from src.offline.models import OutboxBinary, OutboxItem
from src.offline.sync_engine import SyncEngine

_log = logging.getLogger(__name__)

T = TypeVar("T")

app = typer.Typer(
    name="cargopulse",
    help="CargoPulse field intake and shipment tracking",
    no_args_is_help=True,
)
config_app = typer.Typer(help="Configuration management")
intake_app = typer.Typer(help="Record field intakes")
outbox_app = typer.Typer(help="Manage the on-device outbox")

app.add_typer(config_app, name="config")
app.add_typer(intake_app, name="intake")
app.add_typer(outbox_app, name="outbox")

console = Console()

# --- Global state ---
_config_path: str | None = None


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to cargopulse.yaml config file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """CargoPulse: offline-first field intake."""
    global _config_path
    _config_path = config
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s:%(name)s:%(message)s",
    )


def _load() -> CargoPulseConfig:
    try:
        return load_config_or_default(config_path=_config_path)
    except FileNotFoundError as e:
        console.print(f"[red]Config file not found:[/red] {e}")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)


async def _with_engine(
    cfg: CargoPulseConfig,
    fn: Callable[[SyncEngine], Awaitable[T]],
    check_online: bool = True,
) -> T:
    """Open store and client, build an engine, run fn, clean up.

    The engine starts online only if the server answers its health check.
    """
    store = get_outbox_store(cfg)
    client = get_client(cfg)
    async with store, client:
        online = await client.is_reachable() if check_online else False
        engine = get_sync_engine(cfg, store, client, online=online)
        try:
            await engine.recover_interrupted()
            return await fn(engine)
        finally:
            await engine.close()


def _read_binary(path: Path) -> OutboxBinary:
    if not path.is_file():
        console.print(f"[red]File not found:[/red] {path}")
        raise typer.Exit(1)
    content_type = mimetypes.guess_type(path.name)[0] or "image/jpeg"
    return OutboxBinary(filename=path.name, content_type=content_type, data=path.read_bytes())


# --- Version ---


@app.command()
def version():
    """Show CargoPulse version."""
    from importlib.metadata import version as pkg_version
    try:
        v = pkg_version("cargopulse")
    except Exception:
        v = "unknown"
    console.print(f"[bold]CargoPulse[/bold] v{v}")


# --- Server ---


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Start the CargoPulse API server."""
    import uvicorn

    cfg = _load()
    final_host = host or cfg.daemon.host
    final_port = port or cfg.daemon.port
    console.print(f"[bold]Starting CargoPulse API on {final_host}:{final_port}[/bold]")
    uvicorn.run(
        "src.api.main:app",
        host=final_host,
        port=final_port,
        workers=None if reload else cfg.daemon.workers,
        log_level=cfg.daemon.log_level,
        reload=reload,
    )


# --- Config commands ---


@config_app.command("show")
def config_show():
    """Display resolved configuration (secrets masked)."""
    try:
        file_cfg = load_config(config_path=_config_path)
    except FileNotFoundError as e:
        console.print(f"[red]Config file not found:[/red] {e}")
        raise typer.Exit(1)
    if file_cfg is None:
        console.print("[yellow]No config file found; using defaults.[/yellow]")
        console.print(f"Searched: {', '.join(CONFIG_SEARCH_PATHS)}")
    cfg = _load()

    key = cfg.server.api_key
    console.print("[bold]Server:[/bold]")
    console.print(f"  url: {cfg.server.url}")
    console.print(f"  api_key: {'***' + key[-4:] if len(key) > 4 else ('***' if key else '(none)')}")
    console.print(f"  timeout: {cfg.server.timeout_seconds}s")

    console.print("\n[bold]Device:[/bold]")
    console.print(f"  user_id: {cfg.device.user_id or '(not set)'}")
    console.print(f"  outbox: {get_outbox_store(cfg).db_path}")

    console.print("\n[bold]Sync:[/bold]")
    console.print(f"  auto_sync_delay: {cfg.sync.auto_sync_delay_seconds}s")
    console.print(f"  poll_interval: {cfg.sync.poll_interval_seconds}s")


@config_app.command("set-api-key")
def config_set_api_key(
    api_key: str = typer.Option(
        ..., "--api-key", prompt=True, hide_input=True, help="Server API key"
    ),
):
    """Store the server API key in the OS keychain."""
    store_api_key(api_key.strip())
    console.print("[green]API key stored in keychain.[/green]")


@config_app.command("clear-api-key")
def config_clear_api_key():
    """Remove the server API key from the OS keychain."""
    if clear_api_key():
        console.print("[green]API key removed.[/green]")
    else:
        console.print("[yellow]No API key was stored.[/yellow]")


# --- Intake commands ---


@intake_app.command("add")
def intake_add(
    customer_name: str = typer.Option(..., "--customer-name", "-n", help="Customer name"),
    phone: str = typer.Option(..., "--phone", "-p", help="Customer phone"),
    destination: str = typer.Option(..., "--destination", "-d", help="Destination"),
    service_type: str = typer.Option("depot", "--service-type", help="depot or door_to_door"),
    cargo_type: str = typer.Option("general", "--cargo-type", help="Cargo type"),
    notes: Optional[str] = typer.Option(None, "--notes", help="Collection note"),
    pickup_address: Optional[str] = typer.Option(None, "--pickup-address"),
    pickup_contact_phone: Optional[str] = typer.Option(None, "--pickup-contact-phone"),
    quantity: Optional[int] = typer.Option(None, "--quantity", help="Barrel/box count"),
    weight_kg: Optional[float] = typer.Option(None, "--weight-kg"),
    length_cm: Optional[float] = typer.Option(None, "--length-cm"),
    width_cm: Optional[float] = typer.Option(None, "--width-cm"),
    height_cm: Optional[float] = typer.Option(None, "--height-cm"),
    forklift_required: Optional[bool] = typer.Option(None, "--forklift/--no-forklift"),
    handling_notes: Optional[str] = typer.Option(None, "--handling-notes"),
    vehicle_make: Optional[str] = typer.Option(None, "--vehicle-make"),
    vehicle_model: Optional[str] = typer.Option(None, "--vehicle-model"),
    vehicle_year: Optional[str] = typer.Option(None, "--vehicle-year"),
    vehicle_vin: Optional[str] = typer.Option(None, "--vehicle-vin"),
    vehicle_reg: Optional[str] = typer.Option(None, "--vehicle-reg"),
    keys_received: Optional[bool] = typer.Option(None, "--keys-received/--no-keys"),
    photo: list[Path] = typer.Option([], "--photo", help="Pickup photo (repeatable)"),
    signature: Optional[Path] = typer.Option(None, "--signature", help="Signature image"),
    offline: bool = typer.Option(False, "--offline", help="Queue without trying to sync"),
):
    """Record a collection in the outbox and sync it if the server is reachable."""
    cfg = _load()
    form = {
        "customerName": customer_name,
        "phone": phone,
        "destination": destination,
        "serviceType": service_type,
        "cargoType": cargo_type,
        "notes": notes,
        "pickupAddress": pickup_address,
        "pickupContactPhone": pickup_contact_phone,
        "quantity": quantity,
        "weightKg": weight_kg,
        "lengthCm": length_cm,
        "widthCm": width_cm,
        "heightCm": height_cm,
        "forkliftRequired": forklift_required,
        "handlingNotes": handling_notes,
        "vehicleMake": vehicle_make,
        "vehicleModel": vehicle_model,
        "vehicleYear": vehicle_year,
        "vehicleVin": vehicle_vin,
        "vehicleReg": vehicle_reg,
        "keysReceived": keys_received,
    }
    photos = [_read_binary(p) for p in photo]
    signature_binary = _read_binary(signature) if signature else None

    async def _run(engine: SyncEngine) -> OutboxItem:
        return await engine.save_intake(form, photos, signature_binary)

    try:
        item = asyncio.run(_with_engine(cfg, _run, check_online=not offline))
    except CargoPulseError as e:
        console.print(f"[red]{format_error(e)}[/red]")
        raise typer.Exit(1)

    if item.tracking_code:
        console.print(f"[green]Synced[/green] as {item.tracking_code} ({item.id})")
    elif item.error:
        console.print(f"[red]Sync failed:[/red] {item.error}")
        console.print(f"Saved to outbox as {item.id}; retry with 'cargopulse outbox sync'.")
    else:
        console.print(f"[yellow]Saved to outbox[/yellow] as {item.id}. Sync when online.")


# --- Outbox commands ---


@outbox_app.command("list")
def outbox_list(
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Filter by status"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List queued intakes, newest first."""
    cfg = _load()

    async def _run() -> list[OutboxItem]:
        async with get_outbox_store(cfg) as store:
            return await store.list()

    items = asyncio.run(_run())
    if status:
        items = [i for i in items if i.status.value == status]
    console.print(format_outbox_table(items, as_json=json_output))


@outbox_app.command("sync")
def outbox_sync(
    item_id: Optional[str] = typer.Argument(None, help="Sync only this item"),
    pending_only: bool = typer.Option(
        False, "--pending-only", help="Skip items that previously failed"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Submit queued intakes to the server."""
    cfg = _load()

    async def _run(engine: SyncEngine) -> list[OutboxItem] | None:
        if not engine.online:
            return None
        if item_id:
            item = await engine.sync_one(item_id)
            return [item] if item is not None else []
        return await engine.sync_all(include_failed=not pending_only)

    results = asyncio.run(_with_engine(cfg, _run))
    if results is None:
        console.print(f"[red]Server unreachable at {cfg.server.url}.[/red] Items stay queued.")
        raise typer.Exit(1)
    if item_id and not results:
        console.print(f"[red]No outbox item {item_id}.[/red]")
        raise typer.Exit(1)
    console.print(format_sync_results(results, as_json=json_output))
    if any(item.status.value == "failed" for item in results):
        raise typer.Exit(1)


@outbox_app.command("delete")
def outbox_delete(
    item_id: str = typer.Argument(help="Outbox item ID"),
):
    """Remove one item from the outbox."""
    cfg = _load()

    async def _run() -> bool:
        async with get_outbox_store(cfg) as store:
            return await store.delete(item_id)

    if asyncio.run(_run()):
        console.print(f"[yellow]Deleted {item_id}.[/yellow]")
    else:
        console.print(f"[red]No outbox item {item_id}.[/red]")
        raise typer.Exit(1)


@outbox_app.command("purge-synced")
def outbox_purge_synced():
    """Remove every synced item from the outbox."""
    cfg = _load()

    async def _run(engine: SyncEngine) -> int:
        return await engine.purge_synced()

    removed = asyncio.run(_with_engine(cfg, _run, check_online=False))
    console.print(f"Removed {removed} synced item(s).")


@outbox_app.command("watch")
def outbox_watch():
    """Poll connectivity and sync automatically until interrupted."""
    cfg = _load()

    async def _run(engine: SyncEngine) -> None:
        engine.refresher.add_listener(
            lambda items: console.print(
                format_counts(
                    {
                        s: sum(1 for i in items if i.status.value == s)
                        for s in ("pending", "syncing", "failed", "synced")
                    }
                )
            )
        )
        monitor = ConnectivityMonitor(
            engine.transport.is_reachable, engine, cfg.sync.poll_interval_seconds
        )
        console.print(f"Watching outbox; server {cfg.server.url}. Ctrl-C to stop.")
        engine.request_refresh()
        try:
            await monitor.run()
        finally:
            await monitor.stop()

    try:
        asyncio.run(_with_engine(cfg, _run, check_online=False))
    except KeyboardInterrupt:
        console.print("Stopped.")
