"""Connectivity polling for the field client.

A headless device has no browser online/offline events, so reachability
is checked against the server health endpoint and every change is fed to
the sync engine.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from src.offline.sync_engine import SyncEngine

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0


class ConnectivityMonitor:
    """Poll a reachability check and report transitions to the engine.

    Args:
        check: Async callable returning True when the server is reachable.
            Exceptions count as unreachable.
        engine: Engine whose online state is kept current.
        interval: Seconds between checks.
    """

    def __init__(
        self,
        check: Callable[[], Awaitable[bool]],
        engine: SyncEngine,
        interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self._check = check
        self._engine = engine
        self.interval = interval
        self._task: asyncio.Task | None = None

    async def check_once(self) -> bool:
        """Check once and update the engine. Returns the observed state."""
        try:
            online = bool(await self._check())
        except Exception as exc:
            logger.debug("Connectivity check failed: %s", exc)
            online = False
        if online != self._engine.online:
            self._engine.set_online(online)
        return online

    async def run(self) -> None:
        """Check forever at the configured interval."""
        while True:
            await self.check_once()
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.wait({self._task})
        self._task = None
