"""Durable on-device outbox backed by SQLite (aiosqlite).

The store exposes a narrow async contract: put, get, list, patch and
delete. Writes to the same item are serialized through a per-id
asyncio.Lock so a patch never interleaves with a put of the same entry
(locks are held weakly and go away when idle);
the database transaction makes each write atomic. Write failures
propagate to the caller, nothing is dropped silently.

Example:
    async with OutboxStore(tmp_path / "outbox.db") as store:
        await store.put(OutboxItem.new(payload.to_wire()))
        items = await store.list("intake_create")
"""

import asyncio
import json
import logging
import os
import weakref
from dataclasses import replace
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import selectinload

from src.offline.models import (
    OutboxBase,
    OutboxItem,
    OutboxRecord,
    OutboxStatus,
    build_binary_records,
    record_to_item,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

_PATCHABLE_FIELDS = frozenset({"status", "payload", "photos", "signature", "server", "error"})


class OutboxStore:
    """Async keyed store for queued submissions."""

    def __init__(self, db_path: str | Path | None = None) -> None:
        if db_path is None:
            from src.utils.paths import get_outbox_db_path

            db_path = get_outbox_db_path()
        self.db_path = Path(db_path)
        self._engine: AsyncEngine = create_async_engine(
            f"sqlite+aiosqlite:///{self.db_path}",
            echo=os.environ.get("SQL_ECHO", "").lower() == "true",
        )
        self._sessions = async_sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        # Entries vanish once no writer holds or awaits the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._initialized = False

    async def __aenter__(self) -> "OutboxStore":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def init(self) -> None:
        """Create the outbox tables. Safe to call multiple times."""
        if self._initialized:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._engine.begin() as conn:
            await conn.run_sync(OutboxBase.metadata.create_all)
        self._initialized = True
        logger.debug("Outbox store ready at %s", self.db_path)

    async def close(self) -> None:
        """Dispose of the engine and its connection pool."""
        await self._engine.dispose()

    def _lock_for(self, item_id: str) -> asyncio.Lock:
        return self._locks.setdefault(item_id, asyncio.Lock())

    async def _load(self, session: AsyncSession, item_id: str) -> OutboxRecord | None:
        result = await session.execute(
            select(OutboxRecord)
            .where(OutboxRecord.id == item_id)
            .options(selectinload(OutboxRecord.binaries))
        )
        return result.scalars().first()

    async def _write(self, item: OutboxItem, include_binaries: bool = True) -> None:
        async with self._sessions() as session:
            async with session.begin():
                record = await self._load(session, item.id)
                if record is None:
                    record = OutboxRecord(id=item.id)
                    session.add(record)
                    include_binaries = True
                record.kind = item.kind
                record.status = item.status.value
                record.created_at = item.created_at
                record.updated_at = utc_now_iso()
                record.payload = json.dumps(item.payload)
                record.server = json.dumps(item.server.to_dict()) if item.server else None
                record.error = item.error
                if include_binaries:
                    record.binaries = build_binary_records(item)

    async def put(self, item: OutboxItem) -> None:
        """Insert or replace an item by id."""
        await self.init()
        async with self._lock_for(item.id):
            await self._write(item)

    async def get(self, item_id: str) -> OutboxItem | None:
        """Return the item, or None when it does not exist."""
        await self.init()
        async with self._sessions() as session:
            record = await self._load(session, item_id)
            return record_to_item(record) if record is not None else None

    async def list(self, kind: str | None = None) -> list[OutboxItem]:
        """Return all items, newest first, optionally filtered by kind."""
        await self.init()
        stmt = (
            select(OutboxRecord)
            .options(selectinload(OutboxRecord.binaries))
            .order_by(OutboxRecord.created_at.desc())
        )
        if kind is not None:
            stmt = stmt.where(OutboxRecord.kind == kind)
        async with self._sessions() as session:
            result = await session.execute(stmt)
            return [record_to_item(r) for r in result.scalars().all()]

    async def patch(self, item_id: str, **fields: object) -> OutboxItem | None:
        """Merge fields into an existing item.

        Returns:
            The updated item, or None (and no write) if it does not exist.

        Raises:
            TypeError: If a field is not patchable (id, kind, created_at).
        """
        unknown = set(fields) - _PATCHABLE_FIELDS
        if unknown:
            raise TypeError(f"Cannot patch outbox fields: {sorted(unknown)}")
        if "status" in fields:
            fields["status"] = OutboxStatus(fields["status"])

        await self.init()
        async with self._lock_for(item_id):
            current = await self.get(item_id)
            if current is None:
                return None
            updated = replace(current, **fields)
            await self._write(
                updated, include_binaries="photos" in fields or "signature" in fields
            )
            return updated

    async def delete(self, item_id: str) -> bool:
        """Delete an item and its binaries. Returns False if absent."""
        await self.init()
        async with self._lock_for(item_id):
            async with self._sessions() as session:
                async with session.begin():
                    record = await self._load(session, item_id)
                    if record is None:
                        return False
                    await session.delete(record)
        return True
