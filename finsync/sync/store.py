"""
Synced Collection Store

Keeps a local copy of one owner's rows in step with the backend.
Three things feed it:
1. A bulk load (initialize)
2. A live change channel (subscribe)
3. Optimistic local edits (apply_optimistic / resolve_optimistic)

DESIGN DECISION: The collection is a mapping from id to record, split in two:
- committed: what the backend has told us (fetch results and events)
- pending: local edits the backend hasn't echoed back yet
snapshot() overlays pending on committed and sorts the result every
time, so ordering never depends on the order events arrived in.

MERGE RULES (idempotent; converge regardless of delivery order):
- insert/update: upsert by id; an update for an unknown id inserts it
- delete: remove by id; deleting an unknown id is a no-op
- an event carrying a pending mutation's correlation ref settles it,
  even when the server assigned a different id than the local one

LOCAL IDS: an optimistic insert gets a temporary id until the backend
assigns one. Once the server id is known (from the write's result or
from the echo) the temporary id becomes an alias for it, so edits made
against the temporary id reach the real row.

KNOWN RACE: an update that arrives after a delete of the same id
resurrects the record. We accept this rather than keep tombstones.

CONCURRENCY: every read-modify-write of the collection runs inside one
lock and never awaits, so handlers cannot interleave, even when a
caller reaches in from another thread. The only suspension points are
the backend calls.
"""

import asyncio
import threading
from typing import Callable, Optional
from uuid import UUID, uuid4

import structlog
from pydantic import ValidationError

from finsync.config import get_settings
from finsync.models.records import SyncedRecord, Transaction
from finsync.models.sync import (
    ChangeEvent,
    ChangeKind,
    MutationHandle,
    MutationKind,
    MutationOutcome,
    OptimisticMutation,
    PendingMutation,
    StoreState,
)
from finsync.services.remote.interface import RemoteDataService
from finsync.sync.errors import (
    ChannelError,
    FetchError,
    MutationRejectedError,
    NotAuthenticatedError,
    StoreClosedError,
    SyncError,
    UnknownRecordError,
)
from finsync.sync.subscription import Subscription


logger = structlog.get_logger(__name__)

ChannelErrorCallback = Callable[[ChannelError], None]


class SyncedCollectionStore:
    """
    Local, continuously-updated view of a remote-owned collection.

    One store mirrors one table for one owner. Construct it with the
    backend it should talk to and hand the instance to whoever needs
    to read it; there is no global store.
    """

    def __init__(
        self,
        service: RemoteDataService,
        record_type: type[SyncedRecord] = Transaction,
        table: Optional[str] = None,
        order_by: Optional[str] = None,
        descending: Optional[bool] = None,
        on_channel_error: Optional[ChannelErrorCallback] = None,
        temp_id_prefix: Optional[str] = None,
    ):
        self._service = service
        self._record_type = record_type
        self.table = table or record_type.table_name
        self.order_by = order_by or record_type.order_by
        self.descending = record_type.order_descending if descending is None else descending
        self._on_channel_error = on_channel_error
        self._temp_id_prefix = temp_id_prefix or get_settings().sync.temp_id_prefix

        self._mutex = threading.RLock()
        self._committed: dict[str, SyncedRecord] = {}
        self._pending: dict[UUID, PendingMutation] = {}
        self._aliases: dict[str, str] = {}
        self._state = StoreState.UNINITIALIZED
        self._owner_id: Optional[str] = None
        self._subscription: Optional[Subscription] = None
        self._generation = 0
        self._log = logger.bind(table=self.table)

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def owner_id(self) -> Optional[str]:
        return self._owner_id

    @property
    def record_type(self) -> type[SyncedRecord]:
        return self._record_type

    @property
    def subscription(self) -> Optional[Subscription]:
        return self._subscription

    @property
    def pending(self) -> tuple[PendingMutation, ...]:
        """Copies of the mutations still awaiting their echo, oldest first."""
        with self._mutex:
            return tuple(p.model_copy(deep=True) for p in self._pending.values())

    def snapshot(self) -> tuple[SyncedRecord, ...]:
        """
        Current collection, sorted by the store's ordering.

        Never blocks on I/O. Records are frozen, and the tuple is new on
        every call, so readers cannot disturb the store.
        """
        with self._mutex:
            if self._state == StoreState.TORN_DOWN:
                return ()
            view = self._view()
        return self._ordered(view.values())

    def get(self, record_id: str) -> Optional[SyncedRecord]:
        with self._mutex:
            if self._state == StoreState.TORN_DOWN:
                return None
            return self._view().get(record_id)

    def resolve_id(self, record_id: str) -> str:
        """Server id for a temporary insert id, once known; otherwise `record_id`."""
        with self._mutex:
            return self._aliases.get(record_id, record_id)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self, owner_id: Optional[str]) -> tuple[SyncedRecord, ...]:
        """
        Load every record of `owner_id` and replace the collection with them.

        Pending mutations the backend already accepted are dropped, since
        the fetch includes them; unresolved ones stay overlaid.

        Raises:
            NotAuthenticatedError: If no owner id is available
            FetchError: If the load fails (the old collection is kept)
            StoreClosedError: If the store was torn down
        """
        with self._mutex:
            self._ensure_open()
            if not owner_id:
                raise NotAuthenticatedError(f"No signed-in user to load {self.table} for")
            self._state = StoreState.LOADING

        try:
            rows = await self._service.fetch_all(
                self.table,
                owner_id,
                order_by=self.order_by,
                descending=self.descending,
            )
        except Exception as e:
            with self._mutex:
                if self._state != StoreState.TORN_DOWN:
                    self._state = StoreState.STALE
            self._log.warning("fetch_failed", owner_id=owner_id, error=str(e))
            raise FetchError(f"Failed to load {self.table}: {e}") from e

        with self._mutex:
            # Torn down while the fetch was in flight
            self._ensure_open()

            records: dict[str, SyncedRecord] = {}
            for row in rows:
                record = self._parse(row)
                if record is None or record.user_id != owner_id:
                    continue
                records.setdefault(record.id, record)

            if owner_id != self._owner_id:
                self._pending.clear()
                self._aliases.clear()
            else:
                echoed = {r.client_ref for r in records.values() if r.client_ref}
                self._pending = {
                    ref: p for ref, p in self._pending.items()
                    if not p.remote_accepted and str(ref) not in echoed
                }

            self._committed = records
            self._owner_id = owner_id
            self._state = StoreState.LIVE

        self._log.info("store_loaded", owner_id=owner_id, record_count=len(records))
        return self.snapshot()

    async def subscribe(self, owner_id: Optional[str] = None) -> Subscription:
        """
        Open a change channel and start applying its events.

        Defaults to the owner passed to initialize(). Replaces any
        existing subscription, including one installed by a concurrent
        subscribe() while this one was opening its channel. Dropped
        channels are reported through
        `on_channel_error` and Subscription.wait(); nothing reconnects
        automatically.

        Raises:
            NotAuthenticatedError: If no owner id is available
            ChannelError: If the channel cannot be opened
            StoreClosedError: If the store was torn down
        """
        with self._mutex:
            self._ensure_open()
            owner = owner_id or self._owner_id
            if not owner:
                raise NotAuthenticatedError(f"No signed-in user to watch {self.table} for")

        await self.unsubscribe()

        try:
            channel = await self._service.open_channel(self.table, owner)
        except Exception as e:
            with self._mutex:
                if self._state != StoreState.TORN_DOWN:
                    self._state = StoreState.STALE
            self._log.warning("channel_open_failed", owner_id=owner, error=str(e))
            raise ChannelError(f"Could not listen for {self.table} changes: {e}") from e

        previous = None
        with self._mutex:
            closed = self._state == StoreState.TORN_DOWN
            if not closed:
                self._generation += 1
                subscription = Subscription(self.table, owner, channel, self._generation)
                previous = self._subscription
                self._subscription = subscription
                if self._owner_id is None:
                    self._owner_id = owner

        if closed:
            await channel.close()
            raise StoreClosedError(f"Store for {self.table} was torn down")

        subscription.attach(asyncio.create_task(
            self._consume(subscription),
            name=f"finsync-{self.table}-channel",
        ))
        if previous is not None:
            await previous.cancel()
            self._log.info("channel_replaced", owner_id=previous.owner_id)
        self._log.info("channel_opened", owner_id=owner)
        return subscription

    async def unsubscribe(self) -> None:
        """
        Stop applying events and release the channel.

        Safe to call repeatedly, and when never subscribed.
        """
        with self._mutex:
            subscription = self._subscription
            self._subscription = None
            self._generation += 1

        if subscription is None:
            return
        await subscription.cancel()
        self._log.info("channel_closed", owner_id=subscription.owner_id)

    async def teardown(self) -> None:
        """
        End the store: unsubscribe and clear everything. Idempotent.

        TORN_DOWN is terminal.
        """
        with self._mutex:
            if self._state == StoreState.TORN_DOWN:
                return
            self._state = StoreState.TORN_DOWN
            self._generation += 1
            self._committed.clear()
            self._pending.clear()
            self._aliases.clear()

        await self.unsubscribe()
        self._log.info("store_torn_down", owner_id=self._owner_id)

    # -------------------------------------------------------------------------
    # Change events
    # -------------------------------------------------------------------------

    async def _consume(self, subscription: Subscription) -> None:
        try:
            async for event in subscription.channel.events():
                with self._mutex:
                    if not self._is_current(subscription):
                        self._log.debug("event_dropped", kind=event.kind.value, record_id=event.record_id)
                        continue
                    self._merge(event)
        except Exception as e:
            self._channel_failed(subscription, e)
        else:
            if not subscription.cancelled:
                self._channel_failed(subscription, None)

    def _is_current(self, subscription: Subscription) -> bool:
        return (
            self._state != StoreState.TORN_DOWN
            and self._subscription is subscription
            and subscription.generation == self._generation
        )

    def _channel_failed(self, subscription: Subscription, cause: Optional[Exception]) -> None:
        reason = str(cause) if cause else "channel closed by backend"
        error = ChannelError(f"{self.table} change channel dropped: {reason}")
        if cause is not None:
            error.__cause__ = cause

        with self._mutex:
            if not self._is_current(subscription):
                return
            self._state = StoreState.STALE
            subscription.mark_failed(error)

        self._log.warning("channel_dropped", owner_id=subscription.owner_id, error=reason)
        if self._on_channel_error is not None:
            self._on_channel_error(error)

    def apply_event(self, event: ChangeEvent) -> bool:
        """
        Merge one change event into the collection.

        The channel consumer calls this for every delivered event; it is
        public so backends without channels can push changes directly.
        Returns False if the event was dropped.
        """
        with self._mutex:
            if self._state == StoreState.TORN_DOWN:
                return False
            return self._merge(event)

    def _merge(self, event: ChangeEvent) -> bool:
        record_id = event.record_id
        if record_id is None:
            self._log.warning("event_malformed", kind=event.kind.value, reason="missing id")
            return False

        owner = event.record.get("user_id")
        if owner and self._owner_id and owner != self._owner_id:
            self._log.warning("event_foreign_owner", kind=event.kind.value, record_id=record_id)
            return False

        if event.kind == ChangeKind.DELETE:
            self._committed.pop(record_id, None)
            self._settle(event, record_id)
            self._log.debug("event_applied", kind=event.kind.value, record_id=record_id)
            return True

        record = self._parse(event.record)
        if record is None:
            return False

        for settled in self._settle(event, record.id):
            # Server assigned its own id; forget the local one
            if settled.kind == MutationKind.INSERT and settled.record_id != record.id:
                self._committed.pop(settled.record_id, None)
                self._alias(settled.record_id, record.id)

        self._committed[record.id] = record
        self._log.debug("event_applied", kind=event.kind.value, record_id=record.id)
        return True

    def _settle(self, event: ChangeEvent, record_id: str) -> list[PendingMutation]:
        """Remove the pending mutations this event confirms or supersedes."""
        reference = event.reference
        matched = None
        if reference is not None:
            for ref, pending in self._pending.items():
                if str(ref) == reference or (
                    pending.kind == MutationKind.INSERT and pending.record_id == reference
                ):
                    matched = ref
                    break

        settled = []
        for ref, pending in list(self._pending.items()):
            if ref == matched:
                settled.append(self._pending.pop(ref))
                # Anything queued after our echo is still in flight
                if event.kind != ChangeKind.DELETE:
                    break
                continue
            same_record = pending.record_id == record_id
            if event.kind == ChangeKind.DELETE:
                hit = same_record
            else:
                hit = same_record and pending.kind != MutationKind.DELETE
            if hit:
                settled.append(self._pending.pop(ref))
        return settled

    # -------------------------------------------------------------------------
    # Optimistic mutations
    # -------------------------------------------------------------------------

    def apply_optimistic(self, mutation: OptimisticMutation) -> MutationHandle:
        """
        Apply a local edit now, before the backend confirms it.

        The edit is visible to snapshot() as soon as this returns. Issue
        the real write from `handle.payload`, then report the outcome
        with resolve_optimistic().

        Raises:
            UnknownRecordError: Update or delete of a record we don't have
            NotAuthenticatedError: Insert with no owner to attribute it to
            StoreClosedError: If the store was torn down
            pydantic.ValidationError: If the edit produces an invalid record
        """
        ref = uuid4()
        with self._mutex:
            self._ensure_open()
            view = self._view()

            if mutation.kind == MutationKind.INSERT:
                values = dict(mutation.values)
                values.setdefault("user_id", self._owner_id)
                if not values["user_id"]:
                    raise NotAuthenticatedError(f"No signed-in user to add {self.table} for")
                values["client_ref"] = str(ref)
                payload = dict(values)
                record_id = str(values.get("id") or f"{self._temp_id_prefix}{ref}")
                if record_id in view:
                    raise SyncError(f"{self.table} already has a record {record_id}")
                values["id"] = record_id
                record = self._record_type.model_validate(values)
                pending = PendingMutation(
                    ref=ref,
                    kind=mutation.kind,
                    record_id=record_id,
                    values=record.model_dump(),
                )

            else:
                record_id = self._aliases.get(mutation.record_id, mutation.record_id)
                current = view.get(record_id)
                if current is None:
                    raise UnknownRecordError(f"{self.table} has no record {record_id}")
                if mutation.kind == MutationKind.UPDATE:
                    patch = {k: v for k, v in mutation.values.items() if k != "id"}
                    patch["client_ref"] = str(ref)
                    current.replace(patch)
                    payload = dict(patch)
                else:
                    patch = {}
                    payload = {}
                pending = PendingMutation(
                    ref=ref,
                    kind=mutation.kind,
                    record_id=record_id,
                    values=patch,
                )

            self._pending[ref] = pending

        self._log.debug("optimistic_applied", kind=mutation.kind.value, record_id=record_id, ref=str(ref))
        return MutationHandle(ref=ref, kind=mutation.kind, record_id=record_id, payload=payload)

    async def resolve_optimistic(self, handle: MutationHandle, outcome: MutationOutcome) -> None:
        """
        Report how the remote write behind `handle` went.

        On success the edit stays overlaid until the channel echo settles
        it. A successful insert whose outcome carries the server row is
        re-keyed to the server id right away. On failure the local edit
        is undone. A speculative insert disappears. An update or delete
        is reverted by re-reading the record from the backend.
        MutationRejectedError is then raised.
        """
        if outcome.success:
            with self._mutex:
                pending = self._pending.get(handle.ref)
                if pending is not None:
                    pending.remote_accepted = True
                server_id = (outcome.record or {}).get("id")
                if handle.kind == MutationKind.INSERT and server_id not in (None, ""):
                    self._alias(handle.record_id, str(server_id))
            self._log.debug("optimistic_accepted", kind=handle.kind.value, record_id=handle.record_id)
            return

        with self._mutex:
            self._pending.pop(handle.ref, None)

        if handle.kind != MutationKind.INSERT:
            await self._refresh(handle.record_id)

        self._log.warning(
            "optimistic_rolled_back",
            kind=handle.kind.value,
            record_id=handle.record_id,
            error=outcome.error_message,
        )
        raise MutationRejectedError(
            f"{handle.kind.value} of {self.table} {handle.record_id} rejected: "
            f"{outcome.error_message or 'unknown error'}",
            ref=handle.ref,
            record_id=handle.record_id,
        )

    async def _refresh(self, record_id: str) -> None:
        """Replace one committed record with the backend's current copy."""
        try:
            row = await self._service.fetch_one(self.table, record_id)
        except Exception as e:
            # Keep what we have; the committed copy predates the edit anyway
            self._log.warning("refresh_failed", record_id=record_id, error=str(e))
            return

        with self._mutex:
            if self._state == StoreState.TORN_DOWN:
                return
            if row is None:
                self._committed.pop(record_id, None)
                return
            record = self._parse(row)
            if record is not None:
                self._committed[record.id] = record

    # -------------------------------------------------------------------------
    # Internals (call with the lock held)
    # -------------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._state == StoreState.TORN_DOWN:
            raise StoreClosedError(f"Store for {self.table} was torn down")

    def _ordered(self, records) -> tuple[SyncedRecord, ...]:
        # Ties always break by ascending id, and records missing the
        # ordering field always go last, whichever the direction
        by_id = sorted(records, key=lambda r: r.id)
        present = [r for r in by_id if getattr(r, self.order_by, None) is not None]
        missing = [r for r in by_id if getattr(r, self.order_by, None) is None]
        present.sort(key=lambda r: getattr(r, self.order_by), reverse=self.descending)
        return tuple(present + missing)

    def _alias(self, local_id: str, server_id: str) -> None:
        """Point a temporary insert id at the id the server assigned."""
        if local_id == server_id:
            return
        self._aliases[local_id] = server_id
        for pending in self._pending.values():
            if pending.record_id != local_id:
                continue
            pending.record_id = server_id
            if pending.kind == MutationKind.INSERT:
                pending.values = {**pending.values, "id": server_id}

    def _parse(self, row: dict) -> Optional[SyncedRecord]:
        try:
            return self._record_type.model_validate(row)
        except ValidationError as e:
            self._log.warning("row_rejected", record_id=row.get("id"), errors=e.error_count())
            return None

    def _view(self) -> dict[str, SyncedRecord]:
        view = dict(self._committed)
        for pending in self._pending.values():
            if pending.kind == MutationKind.INSERT:
                view[pending.record_id] = self._record_type.model_validate(pending.values)
            elif pending.kind == MutationKind.UPDATE:
                base = view.get(pending.record_id)
                if base is None:
                    continue
                try:
                    view[pending.record_id] = base.replace(pending.values)
                except ValidationError:
                    self._log.warning("pending_update_skipped", record_id=pending.record_id)
            else:
                view.pop(pending.record_id, None)
        return view
