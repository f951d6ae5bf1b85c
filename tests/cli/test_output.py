"""Tests for CLI output formatters."""

import json
from dataclasses import replace

from src.cli.output import (
    format_counts,
    format_outbox_table,
    format_status,
    format_sync_results,
)
from src.offline.models import OutboxBinary, OutboxItem, OutboxStatus, ServerResult
from tests.helpers.fakes import intake_form


def _item(**changes) -> OutboxItem:
    item = OutboxItem.new(
        intake_form(), photos=[OutboxBinary("a.jpg", "image/jpeg", b"x")]
    )
    return replace(item, **changes)


class TestOutboxTable:
    """Tests for format_outbox_table."""

    def test_empty(self):
        assert format_outbox_table([]) == "Outbox is empty."

    def test_table_lists_items(self):
        synced = _item(status=OutboxStatus.synced, server=ServerResult("s-1", "SHP-ABC234"))
        failed = _item(status=OutboxStatus.failed, error="Invalid form data")
        output = format_outbox_table([synced, failed])

        assert "Andre Brown" in output
        assert "SHP-ABC234" in output
        assert "Invalid form data" in output
        assert synced.id[:8] in output

    def test_json_output(self):
        item = _item()
        data = json.loads(format_outbox_table([item], as_json=True))
        assert data[0]["id"] == item.id
        assert data[0]["status"] == "pending"
        assert data[0]["photos"][0]["size"] == 1


class TestSummaries:
    """Tests for counts and sync result summaries."""

    def test_status_markup(self):
        assert format_status("failed") == "[red]failed[/red]"
        assert format_status("odd") == "[white]odd[/white]"

    def test_counts_skip_zero(self):
        output = format_counts({"pending": 2, "syncing": 0, "synced": 0, "failed": 1})
        assert output == "[yellow]pending[/yellow] 2 · [red]failed[/red] 1"

    def test_counts_empty(self):
        assert format_counts({"pending": 0}) == "Outbox is empty."

    def test_sync_results(self):
        synced = _item(status=OutboxStatus.synced, server=ServerResult("s-1", "SHP-ABC234"))
        failed = _item(status=OutboxStatus.failed, error="No organization membership")
        output = format_sync_results([synced, failed])

        assert "SHP-ABC234" in output
        assert "No organization membership" in output
        assert output.endswith("Processed 2 item(s), 1 synced.")

    def test_nothing_to_sync(self):
        assert format_sync_results([]) == "Nothing to sync."
