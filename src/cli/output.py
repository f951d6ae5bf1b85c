"""CLI output formatters for Rich tables and JSON.

Provides human-readable Rich table output (default) and machine-parseable
JSON output (--json flag). All formatting goes through these functions
so the CLI commands stay clean.
"""

import json

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from src.offline.models import OutboxItem

console = Console()

# Status color map
STATUS_COLORS = {
    "pending": "yellow",
    "syncing": "blue",
    "synced": "green",
    "failed": "red",
}


def _render(renderable) -> str:
    with console.capture() as capture:
        console.print(renderable)
    return capture.get()


def format_status(status: str) -> str:
    color = STATUS_COLORS.get(status, "white")
    return f"[{color}]{status}[/{color}]"


def format_outbox_table(items: list[OutboxItem], as_json: bool = False) -> str:
    """Format outbox items as a Rich table or JSON.

    Args:
        items: Items to display, newest first.
        as_json: If True, return JSON string instead of Rich table.

    Returns:
        Formatted string output.
    """
    if as_json:
        return json.dumps([item.to_dict() for item in items], indent=2)

    if not items:
        return "Outbox is empty."

    table = Table(title="Outbox", show_lines=True)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Customer")
    table.add_column("Destination")
    table.add_column("Status")
    table.add_column("Files", justify="right")
    table.add_column("Tracking", style="green")
    table.add_column("Created")
    table.add_column("Error", style="red")

    for item in items:
        files = len(item.photos) + (1 if item.signature else 0)
        table.add_row(
            item.id[:8],
            escape(str(item.payload.get("customerName", ""))),
            escape(str(item.payload.get("destination", ""))),
            format_status(item.status.value),
            str(files),
            item.tracking_code or "-",
            item.created_at[:19],
            escape(item.error or ""),
        )

    return _render(table)


def format_counts(counts: dict[str, int]) -> str:
    """One-line summary such as 'pending 2 · failed 1 · synced 4'."""
    parts = [
        f"{format_status(status)} {count}" for status, count in counts.items() if count
    ]
    return " · ".join(parts) if parts else "Outbox is empty."


def format_sync_results(results: list[OutboxItem], as_json: bool = False) -> str:
    """Summarize a sync pass, one line per processed item."""
    if as_json:
        return json.dumps([item.to_dict() for item in results], indent=2)
    if not results:
        return "Nothing to sync."
    lines = []
    for item in results:
        if item.tracking_code:
            detail = item.tracking_code
        else:
            detail = escape(item.error or "")
        lines.append(f"{item.id[:8]}  {format_status(item.status.value)}  {detail}")
    synced = sum(1 for item in results if item.status.value == "synced")
    lines.append(f"Processed {len(results)} item(s), {synced} synced.")
    return "\n".join(lines)
