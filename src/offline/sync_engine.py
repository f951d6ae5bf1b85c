"""Outbox sync engine for the field client.

Per-item state machine::

    pending --submit--> syncing --ok--> synced (terminal)
                           \\--error--> failed --retry--> syncing

Scheduling is single-threaded asyncio. Instead of locks the engine keeps
explicit busy markers: a set of item ids with a submission in flight
(single-flight per item) and a flag for the running batch. A batch
processes items strictly one after another.

Coming back online arms an AutoSyncTrigger that, after a short delay,
runs one batch over pending items only (failed items wait for a manual
retry). The trigger fires at most once per online transition.

List reloads go through ListRefresher: a newer reload supersedes the one
in flight, and a result that resolves after being superseded is discarded.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from enum import Enum
from typing import Any

from src.offline.models import (
    INTAKE_CREATE_KIND,
    OutboxBinary,
    OutboxItem,
    OutboxStatus,
    ServerResult,
)
from src.offline.outbox import OutboxStore
from src.offline.transport import IntakeTransport
from src.services.intake_normalizer import normalize_intake, require_valid_intake

logger = logging.getLogger(__name__)

DEFAULT_AUTO_SYNC_DELAY_SECONDS = 0.4
DEFAULT_RELOAD_DEBOUNCE_SECONDS = 0.25

ListListener = Callable[[list[OutboxItem]], None]


class TriggerState(str, Enum):
    """States of the auto-sync trigger."""

    idle = "idle"
    armed = "armed"
    firing = "firing"


class AutoSyncTrigger:
    """Fire an action once, after a delay, per arming.

    ``arm()`` moves idle to armed and starts the delay timer. When the
    timer expires the trigger moves to firing, runs the action, then goes
    back to idle. ``disarm()`` cancels an armed timer. Arming while armed
    or firing is a no-op, which is what prevents sync storms on flapping
    connectivity.
    """

    def __init__(
        self,
        action: Callable[[], Awaitable[Any]],
        delay: float = DEFAULT_AUTO_SYNC_DELAY_SECONDS,
    ) -> None:
        self._action = action
        self.delay = delay
        self._state = TriggerState.idle
        self._timer: asyncio.Task | None = None
        self.fire_count = 0

    @property
    def state(self) -> TriggerState:
        return self._state

    def arm(self) -> bool:
        """Arm the trigger. Returns False if it was not idle.

        Must be called from a running event loop.
        """
        if self._state is not TriggerState.idle:
            return False
        self._state = TriggerState.armed
        self._timer = asyncio.get_running_loop().create_task(self._fire_after_delay())
        return True

    def disarm(self) -> None:
        """Cancel a pending fire. A firing action is left to complete."""
        if self._state is not TriggerState.armed:
            return
        self._state = TriggerState.idle
        if self._timer is not None:
            self._timer.cancel()

    def on_connectivity_change(self, online: bool) -> None:
        if online:
            self.arm()
        else:
            self.disarm()

    async def _fire_after_delay(self) -> None:
        await asyncio.sleep(self.delay)
        if self._state is not TriggerState.armed:
            return
        self._state = TriggerState.firing
        self.fire_count += 1
        try:
            await self._action()
        except Exception:
            logger.exception("Auto-sync action failed")
        finally:
            self._state = TriggerState.idle

    async def wait(self) -> None:
        """Wait for the current timer (and its action) to finish."""
        if self._timer is not None and not self._timer.done():
            await asyncio.wait({self._timer})


class ListRefresher:
    """Debounced list reload where the most recent request wins.

    A superseded reload still waiting out its debounce is cancelled. One
    that already started reading the store runs to completion and its
    result is discarded, so a database read is never torn down midway.
    """

    def __init__(
        self,
        loader: Callable[[], Awaitable[list[OutboxItem]]],
        debounce: float = DEFAULT_RELOAD_DEBOUNCE_SECONDS,
    ) -> None:
        self._loader = loader
        self.debounce = debounce
        self._generation = 0
        self._task: asyncio.Task | None = None
        self._loading: set[asyncio.Task] = set()
        self._listeners: list[ListListener] = []
        self.latest: list[OutboxItem] | None = None
        self.cancelled = 0
        self.discarded = 0

    def add_listener(self, listener: ListListener) -> None:
        self._listeners.append(listener)

    def request(self) -> asyncio.Task:
        """Schedule a reload, superseding the one in flight."""
        self._generation += 1
        previous = self._task
        if previous is not None and not previous.done() and previous not in self._loading:
            previous.cancel()
            self.cancelled += 1
        self._task = asyncio.get_running_loop().create_task(self._run(self._generation))
        return self._task

    async def _run(self, generation: int) -> None:
        if self.debounce > 0:
            await asyncio.sleep(self.debounce)
        task = asyncio.current_task()
        self._loading.add(task)
        try:
            items = await self._loader()
        finally:
            self._loading.discard(task)
        if generation != self._generation:
            self.discarded += 1
            logger.debug("Discarding superseded outbox reload %d", generation)
            return
        self.latest = items
        for listener in self._listeners:
            listener(items)

    async def wait(self) -> None:
        """Wait until the latest requested reload settles."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})

    async def refresh(self) -> list[OutboxItem]:
        """Request a reload and return its result."""
        self.request()
        await self.wait()
        return self.latest or []

    async def close(self) -> None:
        """Cancel a debouncing reload and let running reads finish."""
        if self._task is not None and not self._task.done() and self._task not in self._loading:
            self._task.cancel()
        pending = {t for t in (self._task, *self._loading) if t is not None and not t.done()}
        if pending:
            await asyncio.wait(pending)


class SyncEngine:
    """Drive queued intakes from the outbox to the server exactly once.

    Example:
        engine = SyncEngine(store, client)
        item = await engine.save_intake(form)      # queued as pending
        engine.set_online(True)                    # arms auto-sync
        await engine.auto_trigger.wait()           # item is now synced
    """

    def __init__(
        self,
        store: OutboxStore,
        transport: IntakeTransport,
        *,
        online: bool = False,
        kind: str = INTAKE_CREATE_KIND,
        auto_sync_delay: float = DEFAULT_AUTO_SYNC_DELAY_SECONDS,
        reload_debounce: float = DEFAULT_RELOAD_DEBOUNCE_SECONDS,
    ) -> None:
        self.store = store
        self.transport = transport
        self.kind = kind
        self._online = online
        self._in_flight: set[str] = set()
        self._batch_running = False
        self.auto_trigger = AutoSyncTrigger(self._auto_sync, delay=auto_sync_delay)
        self.refresher = ListRefresher(lambda: self.store.list(self.kind), reload_debounce)

    @property
    def online(self) -> bool:
        return self._online

    @property
    def batch_running(self) -> bool:
        return self._batch_running

    def is_in_flight(self, item_id: str) -> bool:
        return item_id in self._in_flight

    def set_online(self, online: bool) -> None:
        """Record a connectivity change.

        An offline to online transition arms the auto-sync trigger and
        reloads the list. Must be called from a running event loop.
        """
        was_online = self._online
        self._online = online
        if online and not was_online:
            logger.info("Connectivity restored; arming auto-sync")
            self.request_refresh()
            self.auto_trigger.on_connectivity_change(True)
        elif not online and was_online:
            logger.info("Connectivity lost")
            self.auto_trigger.on_connectivity_change(False)

    def request_refresh(self) -> None:
        self.refresher.request()

    async def refresh(self) -> list[OutboxItem]:
        return await self.refresher.refresh()

    async def recover_interrupted(self) -> int:
        """Return items left in syncing by a previous run to pending.

        A crash mid-submission leaves the item in syncing with nothing in
        flight. Resubmitting is safe: the server deduplicates by id.
        """
        recovered = 0
        for item in await self.store.list(self.kind):
            if item.status is OutboxStatus.syncing and item.id not in self._in_flight:
                await self.store.patch(item.id, status=OutboxStatus.pending)
                recovered += 1
        if recovered:
            logger.info("Recovered %d interrupted outbox item(s)", recovered)
        return recovered

    async def save_intake(
        self,
        raw_form: Mapping[str, Any],
        photos: Sequence[OutboxBinary] = (),
        signature: OutboxBinary | None = None,
    ) -> OutboxItem:
        """Validate and queue an intake; submit immediately when online.

        Raises:
            CargoPulseError: E-2001 when the form fails validation. Nothing
                is queued in that case.
        """
        payload = require_valid_intake(normalize_intake(raw_form))
        item = OutboxItem.new(payload.to_wire(), photos, signature, kind=self.kind)
        await self.store.put(item)
        logger.info("Queued intake %s for %s", item.id, payload.destination)
        self.request_refresh()
        if self._online:
            synced = await self.sync_one(item.id)
            if synced is not None:
                return synced
        return item

    async def sync_one(self, item_id: str) -> OutboxItem | None:
        """Submit one item.

        Returns the item unchanged when offline, already synced, or already
        in flight; otherwise the item in its new synced or failed state.
        Submission failures are recorded on the item, never raised.
        """
        if item_id in self._in_flight:
            logger.debug("Sync of %s already in flight", item_id)
            return await self.store.get(item_id)

        # Claimed before the read so a finished concurrent sync is observed.
        self._in_flight.add(item_id)
        try:
            item = await self.store.get(item_id)
            if item is None:
                return None
            if not self._online or item.status is OutboxStatus.synced:
                return item

            await self.store.patch(item_id, status=OutboxStatus.syncing, error=None)
            self.request_refresh()
            try:
                result = await self.transport.submit_intake(
                    client_event_id=item.id,
                    payload=item.payload,
                    photos=item.photos,
                    signature=item.signature,
                )
            except Exception as e:
                message = str(e) or "Request failed"
                logger.warning("Sync of %s failed: %s", item_id, message)
                updated = await self.store.patch(
                    item_id, status=OutboxStatus.failed, error=message
                )
            else:
                logger.info(
                    "Synced %s as %s%s",
                    item_id,
                    result.tracking_code,
                    " (duplicate)" if result.duplicate else "",
                )
                updated = await self.store.patch(
                    item_id,
                    status=OutboxStatus.synced,
                    server=ServerResult(
                        shipment_id=result.shipment_id,
                        tracking_code=result.tracking_code,
                    ),
                    error=None,
                )
            self.request_refresh()
            return updated
        finally:
            self._in_flight.discard(item_id)

    async def sync_all(self, include_failed: bool = True) -> list[OutboxItem]:
        """Submit pending (and optionally failed) items one at a time.

        Returns an empty list when offline or when a batch is already
        running. Any batch disarms the auto-sync trigger.
        """
        if not self._online or self._batch_running:
            return []
        self._batch_running = True
        try:
            self.auto_trigger.disarm()
            wanted = {OutboxStatus.pending}
            if include_failed:
                wanted.add(OutboxStatus.failed)
            targets = [i for i in await self.store.list(self.kind) if i.status in wanted]

            results: list[OutboxItem] = []
            for target in targets:
                updated = await self.sync_one(target.id)
                if updated is not None:
                    results.append(updated)
            if targets:
                logger.info("Outbox sync processed %d item(s)", len(targets))
            return results
        finally:
            self._batch_running = False

    async def _auto_sync(self) -> None:
        await self.sync_all(include_failed=False)

    async def delete(self, item_id: str) -> bool:
        """Remove an item. Items with a submission in flight are kept."""
        if item_id in self._in_flight:
            return False
        deleted = await self.store.delete(item_id)
        if deleted:
            self.request_refresh()
        return deleted

    async def purge_synced(self) -> int:
        """Delete every synced item. Returns the number removed."""
        removed = 0
        for item in await self.store.list(self.kind):
            if item.status is OutboxStatus.synced and await self.store.delete(item.id):
                removed += 1
        if removed:
            self.request_refresh()
        return removed

    async def counts(self) -> dict[str, int]:
        """Return the number of items per status."""
        totals = {status.value: 0 for status in OutboxStatus}
        for item in await self.store.list(self.kind):
            totals[item.status.value] += 1
        return totals

    async def close(self) -> None:
        """Stop timers and pending reloads."""
        self.auto_trigger.disarm()
        await self.auto_trigger.wait()
        await self.refresher.close()
