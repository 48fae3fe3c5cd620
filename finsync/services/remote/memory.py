"""
In-Memory Remote Data Service

A process-local stand-in for the managed backend. It behaves like the
real thing where the sync store can tell the difference:
- ids are assigned by the "server" when a row has none
- every write is broadcast to the open channels of the same table/owner
- failures and channel drops can be injected

Used by the tests and by the dashboard's offline demo mode.
"""

import asyncio
from collections import defaultdict, deque
from typing import Any, Optional
from uuid import UUID, uuid4

import structlog

from finsync.models.audit import AuditEvent
from finsync.models.sync import ChangeEvent, ChangeKind
from finsync.services.remote.interface import (
    AuditStorageInterface,
    ChangeChannel,
    ChannelDroppedError,
    RecordNotFoundError,
    RemoteDataService,
    RemoteServiceError,
)


logger = structlog.get_logger(__name__)

_CLOSED = object()

OPERATIONS = ("fetch_all", "fetch_one", "open_channel", "insert", "update", "delete")


class MemoryChangeChannel(ChangeChannel):
    """Channel fed by InMemoryDataService.publish()."""

    def __init__(self, service: "InMemoryDataService", table: str, owner_id: str):
        self.table = table
        self.owner_id = owner_id
        self._service = service
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, event: ChangeEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def fail(self, error: Exception) -> None:
        if not self._closed:
            self._queue.put_nowait(error)

    async def events(self):
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            if isinstance(item, Exception):
                self._closed = True
                self._service._forget(self)
                raise item
            yield item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        self._service._forget(self)


class InMemoryDataService(RemoteDataService):
    """
    Dict-of-dicts backend keyed by table, then record id.

    Rows are copied on the way in and out so callers never share
    state with the backend.
    """

    def __init__(self):
        self._tables: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._channels: list[MemoryChangeChannel] = []
        self._failures: dict[str, deque[Exception]] = defaultdict(deque)

    # -------------------------------------------------------------------------
    # Test and demo helpers
    # -------------------------------------------------------------------------

    def seed(self, table: str, rows: list[dict[str, Any]]) -> None:
        """Load rows without broadcasting anything."""
        for row in rows:
            stored = dict(row)
            stored.setdefault("id", str(uuid4()))
            self._tables[table][str(stored["id"])] = stored

    def rows(self, table: str) -> list[dict[str, Any]]:
        return [dict(row) for row in self._tables[table].values()]

    def fail_next(self, operation: str, error: Optional[Exception] = None) -> None:
        """Make the next call to `operation` raise `error`."""
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown operation: {operation}")
        self._failures[operation].append(
            error or RemoteServiceError(f"Injected {operation} failure")
        )

    def drop_channels(self, table: Optional[str] = None, reason: str = "connection lost") -> int:
        """Drop every open channel (of `table`, if given). Returns how many."""
        dropped = 0
        for channel in list(self._channels):
            if table is None or channel.table == table:
                channel.fail(ChannelDroppedError(reason))
                dropped += 1
        return dropped

    @property
    def open_channel_count(self) -> int:
        return len(self._channels)

    def publish(
        self,
        table: str,
        kind: ChangeKind,
        row: dict[str, Any],
        correlation_ref: Optional[str] = None,
    ) -> None:
        """Broadcast a change to the channels watching this table and owner."""
        owner_id = row.get("user_id")
        event = ChangeEvent(kind=kind, record=dict(row), correlation_ref=correlation_ref)
        for channel in list(self._channels):
            if channel.table != table:
                continue
            if owner_id is not None and channel.owner_id != owner_id:
                continue
            channel.deliver(event)

    # -------------------------------------------------------------------------
    # RemoteDataService
    # -------------------------------------------------------------------------

    def _check_failure(self, operation: str) -> None:
        if self._failures[operation]:
            raise self._failures[operation].popleft()

    def _forget(self, channel: MemoryChangeChannel) -> None:
        if channel in self._channels:
            self._channels.remove(channel)

    async def fetch_all(
        self,
        table: str,
        owner_id: str,
        order_by: str,
        descending: bool = True,
    ) -> list[dict[str, Any]]:
        await asyncio.sleep(0)
        self._check_failure("fetch_all")
        rows = [
            dict(row) for row in self._tables[table].values()
            if row.get("user_id") == owner_id
        ]
        rows.sort(
            key=lambda r: (r.get(order_by) is None, r.get(order_by) or ""),
            reverse=descending,
        )
        return rows

    async def fetch_one(self, table: str, record_id: str) -> Optional[dict[str, Any]]:
        await asyncio.sleep(0)
        self._check_failure("fetch_one")
        row = self._tables[table].get(record_id)
        return dict(row) if row is not None else None

    async def open_channel(self, table: str, owner_id: str) -> ChangeChannel:
        await asyncio.sleep(0)
        self._check_failure("open_channel")
        channel = MemoryChangeChannel(self, table, owner_id)
        self._channels.append(channel)
        logger.debug("channel_opened", table=table, owner_id=owner_id)
        return channel

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        await asyncio.sleep(0)
        self._check_failure("insert")
        stored = dict(row)
        if not stored.get("id"):
            stored["id"] = str(uuid4())
        record_id = str(stored["id"])
        if record_id in self._tables[table]:
            raise RemoteServiceError(f"Duplicate id in {table}: {record_id}")
        self._tables[table][record_id] = stored
        self.publish(table, ChangeKind.INSERT, stored)
        return dict(stored)

    async def update(
        self,
        table: str,
        record_id: str,
        patch: dict[str, Any],
    ) -> dict[str, Any]:
        await asyncio.sleep(0)
        self._check_failure("update")
        existing = self._tables[table].get(record_id)
        if existing is None:
            raise RecordNotFoundError(f"{table} row not found: {record_id}")
        merged = {**existing, **patch, "id": record_id}
        self._tables[table][record_id] = merged
        self.publish(table, ChangeKind.UPDATE, merged)
        return dict(merged)

    async def delete(self, table: str, record_id: str) -> None:
        await asyncio.sleep(0)
        self._check_failure("delete")
        existing = self._tables[table].pop(record_id, None)
        if existing is not None:
            self.publish(
                table,
                ChangeKind.DELETE,
                {"id": record_id, "user_id": existing.get("user_id")},
            )


class InMemoryAuditStorage(AuditStorageInterface):
    """Audit log kept in a list. Append-only, like the real one."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        related = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(related, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self._events, key=lambda e: e.timestamp, reverse=True)[:limit]
