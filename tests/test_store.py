"""
Tests for SyncedCollectionStore.

Covers the merge rules, optimistic mutations and reconciliation, the
lifecycle state machine, and channel handling, all against the
in-memory backend.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from finsync.models import (
    ChangeEvent,
    ChangeKind,
    Goal,
    MutationKind,
    MutationOutcome,
    OptimisticMutation,
    StoreState,
    Transaction,
)
from finsync.sync import (
    ChannelError,
    FetchError,
    MutationRejectedError,
    NotAuthenticatedError,
    StoreClosedError,
    SyncedCollectionStore,
    SyncError,
    UnknownRecordError,
)

from helpers import OWNER, drain, eventually, goal_row, ids, transaction_row


def insert_event(row, correlation_ref=None) -> ChangeEvent:
    return ChangeEvent(kind=ChangeKind.INSERT, record=row, correlation_ref=correlation_ref)


def update_event(row, correlation_ref=None) -> ChangeEvent:
    return ChangeEvent(kind=ChangeKind.UPDATE, record=row, correlation_ref=correlation_ref)


def delete_event(record_id, owner=OWNER) -> ChangeEvent:
    return ChangeEvent(kind=ChangeKind.DELETE, record={"id": record_id, "user_id": owner})


def new_transaction(amount="20", **extra):
    row = transaction_row("unused", amount=amount, **extra)
    del row["id"]
    return row


class TestInitialize:
    """Bulk load and the state transitions around it."""

    async def test_loads_single_record(self, service, store):
        """initialize("u1") with one remote row yields exactly that row."""
        service.seed("transactions", [transaction_row("t1", amount="100", type="income")])

        snapshot = await store.initialize("u1")

        assert ids(snapshot) == ["t1"]
        assert snapshot[0].amount == Decimal("100")
        assert snapshot[0].type.value == "income"
        assert store.snapshot() == snapshot
        assert store.state == StoreState.LIVE
        assert store.owner_id == "u1"

    async def test_requires_owner(self, store):
        with pytest.raises(NotAuthenticatedError):
            await store.initialize(None)
        with pytest.raises(NotAuthenticatedError):
            await store.initialize("")
        assert store.state == StoreState.UNINITIALIZED

    async def test_fetch_failure_keeps_last_snapshot(self, service, store):
        service.seed("transactions", [transaction_row("t1")])
        await store.initialize(OWNER)

        service.seed("transactions", [transaction_row("t2")])
        service.fail_next("fetch_all")

        with pytest.raises(FetchError) as exc_info:
            await store.initialize(OWNER)

        assert exc_info.value.__cause__ is not None
        assert store.state == StoreState.STALE
        assert ids(store.snapshot()) == ["t1"]

    async def test_recovers_from_stale(self, service, store):
        service.fail_next("fetch_all")
        with pytest.raises(FetchError):
            await store.initialize(OWNER)
        assert store.state == StoreState.STALE

        service.seed("transactions", [transaction_row("t1")])
        await store.initialize(OWNER)

        assert store.state == StoreState.LIVE
        assert ids(store.snapshot()) == ["t1"]

    async def test_skips_invalid_rows(self, service, store):
        service.seed("transactions", [
            transaction_row("t1"),
            {"id": "broken", "user_id": OWNER, "type": "income"},
        ])

        snapshot = await store.initialize(OWNER)

        assert ids(snapshot) == ["t1"]

    async def test_only_loads_owner_rows(self, service, store):
        service.seed("transactions", [
            transaction_row("t1", owner="u1"),
            transaction_row("x1", owner="u2"),
        ])

        snapshot = await store.initialize("u1")

        assert ids(snapshot) == ["t1"]

    async def test_replaces_previous_collection(self, service, store):
        service.seed("transactions", [transaction_row("t1")])
        await store.initialize(OWNER)

        service.seed("transactions", [transaction_row("t2", day=date(2024, 4, 1))])
        snapshot = await store.initialize(OWNER)

        assert ids(snapshot) == ["t2", "t1"]


class TestMergeRules:
    """Applying change events directly."""

    async def test_delete_of_unknown_id_is_noop(self, service, store):
        service.seed("transactions", [transaction_row("t1")])
        await store.initialize(OWNER)
        before = store.snapshot()

        store.apply_event(delete_event("t99"))

        assert store.snapshot() == before

    async def test_duplicate_insert_is_idempotent(self, store):
        await store.initialize(OWNER)
        event = insert_event(transaction_row("t1"))

        store.apply_event(event)
        once = store.snapshot()
        store.apply_event(event)

        assert store.snapshot() == once
        assert ids(once) == ["t1"]

    @pytest.mark.parametrize("sequence", [
        [("insert", "t1"), ("insert", "t1"), ("update", "t1")],
        [("update", "t1"), ("insert", "t1"), ("delete", "t1"), ("update", "t1")],
        [("insert", "t1"), ("insert", "t2"), ("update", "t2"), ("delete", "t3"), ("insert", "t1")],
        [("delete", "t1"), ("update", "t2"), ("update", "t2"), ("insert", "t2")],
    ])
    async def test_ids_stay_unique(self, store, sequence):
        await store.initialize(OWNER)
        for kind, record_id in sequence:
            if kind == "insert":
                store.apply_event(insert_event(transaction_row(record_id)))
            elif kind == "update":
                store.apply_event(update_event(transaction_row(record_id, amount="5")))
            else:
                store.apply_event(delete_event(record_id))

        result = ids(store.snapshot())
        assert len(result) == len(set(result))

    async def test_update_for_unknown_id_inserts(self, store):
        await store.initialize(OWNER)

        store.apply_event(update_event(transaction_row("t1", amount="42")))

        assert store.get("t1").amount == Decimal("42")

    async def test_update_replaces_record(self, service, store):
        service.seed("transactions", [transaction_row("t1", amount="100")])
        await store.initialize(OWNER)

        store.apply_event(update_event(transaction_row("t1", amount="75")))

        assert len(store.snapshot()) == 1
        assert store.get("t1").amount == Decimal("75")

    async def test_update_after_delete_resurrects(self, service, store):
        service.seed("transactions", [transaction_row("t1")])
        await store.initialize(OWNER)

        store.apply_event(delete_event("t1"))
        store.apply_event(update_event(transaction_row("t1")))

        assert ids(store.snapshot()) == ["t1"]

    async def test_foreign_owner_event_dropped(self, store):
        await store.initialize(OWNER)

        applied = store.apply_event(insert_event(transaction_row("x1", owner="u2")))

        assert applied is False
        assert store.snapshot() == ()

    async def test_malformed_events_dropped(self, store):
        await store.initialize(OWNER)

        assert store.apply_event(ChangeEvent(kind=ChangeKind.INSERT, record={"amount": 5})) is False
        assert store.apply_event(insert_event({"id": "t1", "user_id": OWNER})) is False
        assert store.snapshot() == ()

    async def test_snapshot_sorted_newest_first(self, store):
        await store.initialize(OWNER)

        store.apply_event(insert_event(transaction_row("mid", day=date(2024, 3, 1))))
        store.apply_event(insert_event(transaction_row("old", day=date(2024, 1, 1))))
        store.apply_event(insert_event(transaction_row("new", day=date(2024, 5, 1))))

        assert ids(store.snapshot()) == ["new", "mid", "old"]

    async def test_same_date_ties_break_by_ascending_id(self, store):
        await store.initialize(OWNER)

        for record_id in ("t3", "t1", "t2"):
            store.apply_event(insert_event(transaction_row(record_id, day=date(2024, 3, 1))))
        store.apply_event(insert_event(transaction_row("t0", day=date(2024, 4, 1))))

        assert ids(store.snapshot()) == ["t0", "t1", "t2", "t3"]

    async def test_missing_order_value_sorts_last_when_descending(self, service):
        store = SyncedCollectionStore(service, Transaction, order_by="description", descending=True)
        await store.initialize(OWNER)

        store.apply_event(insert_event(transaction_row("b", description=None)))
        store.apply_event(insert_event(transaction_row("a", description=None)))
        store.apply_event(insert_event(transaction_row("x", description="rent")))
        store.apply_event(insert_event(transaction_row("y", description="wages")))

        assert ids(store.snapshot()) == ["y", "x", "a", "b"]
        await store.teardown()

    async def test_goal_store_sorted_by_deadline(self, goal_store):
        await goal_store.initialize(OWNER)

        goal_store.apply_event(insert_event(goal_row("later", deadline=date(2031, 1, 1))))
        goal_store.apply_event(insert_event(goal_row("sooner", deadline=date(2030, 1, 1))))

        assert ids(goal_store.snapshot()) == ["sooner", "later"]
        assert all(isinstance(g, Goal) for g in goal_store.snapshot())

    async def test_order_override(self, service):
        store = SyncedCollectionStore(service, Transaction, order_by="amount", descending=False)
        await store.initialize(OWNER)

        store.apply_event(insert_event(transaction_row("big", amount="500")))
        store.apply_event(insert_event(transaction_row("small", amount="5")))

        assert ids(store.snapshot()) == ["small", "big"]
        await store.teardown()

    async def test_snapshot_records_are_frozen(self, service, store):
        service.seed("transactions", [transaction_row("t1")])
        snapshot = await store.initialize(OWNER)

        with pytest.raises(ValidationError):
            snapshot[0].amount = Decimal("1")
        assert isinstance(snapshot, tuple)

    async def test_snapshot_readable_from_another_thread(self, service, store):
        service.seed("transactions", [transaction_row("t1")])
        await store.initialize(OWNER)

        snapshot = await asyncio.to_thread(store.snapshot)

        assert ids(snapshot) == ["t1"]


class TestSubscription:
    """Live change channels."""

    async def test_insert_then_delete(self, service, store):
        await store.initialize(OWNER)
        await store.subscribe()

        service.publish("transactions", ChangeKind.INSERT, transaction_row("t2", amount="-50", type="expense"))
        await eventually(lambda: "t2" in ids(store.snapshot()))

        service.publish("transactions", ChangeKind.DELETE, {"id": "t2", "user_id": OWNER})
        await eventually(lambda: "t2" not in ids(store.snapshot()))

        assert store.snapshot() == ()

    async def test_backend_writes_reach_the_store(self, service, store):
        await store.initialize(OWNER)
        await store.subscribe()

        stored = await service.insert("transactions", new_transaction(amount="12"))

        await eventually(lambda: store.get(stored["id"]) is not None)

    async def test_events_for_other_owners_not_delivered(self, service, store):
        await store.initialize(OWNER)
        await store.subscribe()

        service.publish("transactions", ChangeKind.INSERT, transaction_row("x1", owner="u2"))
        await drain()

        assert store.snapshot() == ()

    async def test_subscribe_requires_owner(self, store):
        with pytest.raises(NotAuthenticatedError):
            await store.subscribe()

    async def test_open_failure_marks_stale(self, service, store):
        await store.initialize(OWNER)
        service.fail_next("open_channel")

        with pytest.raises(ChannelError):
            await store.subscribe()

        assert store.state == StoreState.STALE
        assert store.subscription is None

    async def test_resubscribe_replaces_subscription(self, service, store):
        await store.initialize(OWNER)
        first = await store.subscribe()
        second = await store.subscribe()

        assert first.cancelled
        assert second.active
        assert store.subscription is second
        assert service.open_channel_count == 1

    async def test_concurrent_subscribes_keep_one_channel(self, service, store):
        await store.initialize(OWNER)

        first, second = await asyncio.gather(store.subscribe(), store.subscribe())

        assert service.open_channel_count == 1
        assert store.subscription in (first, second)
        assert store.subscription.active
        assert sum(s.cancelled for s in (first, second)) == 1

        await store.teardown()
        assert service.open_channel_count == 0

    async def test_unsubscribe_stops_events(self, service, store):
        await store.initialize(OWNER)
        subscription = await store.subscribe()

        await store.unsubscribe()
        service.publish("transactions", ChangeKind.INSERT, transaction_row("t1"))
        await drain()

        assert store.snapshot() == ()
        assert subscription.cancelled
        assert not subscription.active
        assert store.subscription is None
        assert service.open_channel_count == 0

    async def test_queued_events_dropped_on_unsubscribe(self, store):
        await store.initialize(OWNER)
        subscription = await store.subscribe()

        subscription.channel.deliver(insert_event(transaction_row("t1")))
        await store.unsubscribe()
        await drain()

        assert store.snapshot() == ()

    async def test_unsubscribe_is_idempotent(self, store):
        await store.unsubscribe()

        await store.initialize(OWNER)
        await store.subscribe()
        await store.unsubscribe()
        await store.unsubscribe()

        assert store.subscription is None

    async def test_cancelled_subscription_wait_returns(self, store):
        await store.initialize(OWNER)
        subscription = await store.subscribe()

        await subscription.cancel()
        await subscription.wait()

    async def test_dropped_channel_marks_stale(self, service):
        errors = []
        store = SyncedCollectionStore(service, Transaction, on_channel_error=errors.append)
        service.seed("transactions", [transaction_row("t1")])
        await store.initialize(OWNER)
        subscription = await store.subscribe()

        assert service.drop_channels("transactions") == 1
        await eventually(lambda: store.state == StoreState.STALE)

        assert len(errors) == 1
        assert isinstance(errors[0], ChannelError)
        assert ids(store.snapshot()) == ["t1"]
        with pytest.raises(ChannelError):
            await subscription.wait()
        await store.teardown()

    async def test_recovers_after_drop(self, service, store):
        await store.initialize(OWNER)
        await store.subscribe()
        service.drop_channels()
        await eventually(lambda: store.state == StoreState.STALE)

        service.seed("transactions", [transaction_row("t1")])
        await store.initialize(OWNER)
        await store.subscribe()
        service.publish("transactions", ChangeKind.INSERT, transaction_row("t2", day=date(2024, 4, 1)))

        await eventually(lambda: ids(store.snapshot()) == ["t2", "t1"])
        assert store.state == StoreState.LIVE


class TestOptimisticMutations:
    """apply_optimistic / resolve_optimistic and reconciliation."""

    async def test_insert_visible_immediately(self, store):
        await store.initialize(OWNER)

        handle = store.apply_optimistic(OptimisticMutation.insert(new_transaction()))

        assert handle.kind == MutationKind.INSERT
        assert handle.record_id.startswith("temp-")
        assert handle.payload["client_ref"] == str(handle.ref)
        assert handle.payload["user_id"] == OWNER
        assert "id" not in handle.payload
        assert ids(store.snapshot()) == [handle.record_id]
        assert [p.ref for p in store.pending] == [handle.ref]

    async def test_insert_then_echo_yields_one_record(self, service, store):
        await store.initialize(OWNER)
        await store.subscribe()

        handle = store.apply_optimistic(OptimisticMutation.insert(new_transaction()))
        stored = await service.insert("transactions", handle.payload)
        await store.resolve_optimistic(handle, MutationOutcome.succeeded(stored))

        await eventually(lambda: store.pending == ())
        assert ids(store.snapshot()) == [stored["id"]]

    async def test_insert_with_own_id_then_echo(self, store):
        await store.initialize(OWNER)

        store.apply_optimistic(OptimisticMutation.insert(transaction_row("t5")))
        store.apply_event(insert_event(transaction_row("t5")))

        assert ids(store.snapshot()) == ["t5"]
        assert store.pending == ()

    async def test_echo_before_resolve(self, store):
        await store.initialize(OWNER)

        handle = store.apply_optimistic(OptimisticMutation.insert(new_transaction()))
        store.apply_event(insert_event({**handle.payload, "id": "t9"}))
        await store.resolve_optimistic(handle, MutationOutcome.succeeded())

        assert ids(store.snapshot()) == ["t9"]
        assert store.pending == ()

    async def test_temp_id_reconciled_with_server_id(self, service, store):
        """Optimistic insert "temp1" confirmed as "t9" by an update mapped to "temp1"."""
        await store.initialize(OWNER)
        await store.subscribe()

        store.apply_optimistic(OptimisticMutation.insert(transaction_row("temp1", amount="20")))
        assert ids(store.snapshot()) == ["temp1"]

        service.publish(
            "transactions",
            ChangeKind.UPDATE,
            transaction_row("t9", amount="20"),
            correlation_ref="temp1",
        )
        await eventually(lambda: store.pending == ())

        assert ids(store.snapshot()) == ["t9"]
        assert store.get("temp1") is None

    async def test_temp_id_reconciled_by_client_ref(self, store):
        await store.initialize(OWNER)

        handle = store.apply_optimistic(OptimisticMutation.insert(new_transaction()))
        store.apply_event(update_event(transaction_row("t9", amount="20", client_ref=str(handle.ref))))

        assert ids(store.snapshot()) == ["t9"]
        assert store.resolve_id(handle.record_id) == "t9"

    async def test_accepted_insert_rekeyed_to_server_id(self, store):
        await store.initialize(OWNER)

        handle = store.apply_optimistic(OptimisticMutation.insert(new_transaction()))
        edit = store.apply_optimistic(OptimisticMutation.update(handle.record_id, {"amount": Decimal("75")}))
        assert edit.record_id == handle.record_id

        await store.resolve_optimistic(
            handle,
            MutationOutcome.succeeded({**handle.payload, "id": "t9"}),
        )

        assert store.resolve_id(handle.record_id) == "t9"
        assert ids(store.snapshot()) == ["t9"]
        assert store.get("t9").amount == Decimal("75")
        assert [p.record_id for p in store.pending] == ["t9", "t9"]

    async def test_delete_by_temp_id_before_echo(self, service, store):
        await store.initialize(OWNER)
        await store.subscribe()

        handle = store.apply_optimistic(OptimisticMutation.insert(new_transaction()))
        stored = await service.insert("transactions", handle.payload)
        await store.resolve_optimistic(handle, MutationOutcome.succeeded(stored))

        removal = store.apply_optimistic(OptimisticMutation.delete(handle.record_id))
        assert removal.record_id == stored["id"]
        await service.delete("transactions", removal.record_id)
        await store.resolve_optimistic(removal, MutationOutcome.succeeded())

        await eventually(lambda: store.pending == ())
        await drain()
        assert store.snapshot() == ()
        assert service.rows("transactions") == []

    async def test_pending_copies_are_detached(self, service, store):
        service.seed("transactions", [transaction_row("t1", amount="100")])
        await store.initialize(OWNER)
        store.apply_optimistic(OptimisticMutation.update("t1", {"amount": Decimal("150")}))

        store.pending[0].values["amount"] = Decimal("999")

        assert store.get("t1").amount == Decimal("150")

    async def test_rejected_insert_restores_snapshot(self, service, store):
        service.seed("transactions", [transaction_row("t1")])
        await store.initialize(OWNER)
        before = store.snapshot()

        handle = store.apply_optimistic(OptimisticMutation.insert(new_transaction()))
        assert len(store.snapshot()) == 2

        with pytest.raises(MutationRejectedError) as exc_info:
            await store.resolve_optimistic(handle, MutationOutcome.failed("insert refused"))

        assert exc_info.value.ref == handle.ref
        assert store.snapshot() == before
        assert store.pending == ()

    async def test_update_applies_patch(self, service, store):
        service.seed("transactions", [transaction_row("t1", amount="100")])
        await store.initialize(OWNER)
        await store.subscribe()

        handle = store.apply_optimistic(OptimisticMutation.update("t1", {"amount": Decimal("150")}))
        assert store.get("t1").amount == Decimal("150")

        stored = await service.update("transactions", "t1", handle.payload)
        await store.resolve_optimistic(handle, MutationOutcome.succeeded(stored))

        await eventually(lambda: store.pending == ())
        assert store.get("t1").amount == Decimal("150")

    async def test_rejected_update_refetches_record(self, service, store):
        service.seed("transactions", [transaction_row("t1", amount="100")])
        await store.initialize(OWNER)

        handle = store.apply_optimistic(OptimisticMutation.update("t1", {"amount": Decimal("150")}))
        # Someone else changed it meanwhile, without us hearing about it
        service.seed("transactions", [transaction_row("t1", amount="120")])

        with pytest.raises(MutationRejectedError):
            await store.resolve_optimistic(handle, MutationOutcome.failed("conflict"))

        assert store.get("t1").amount == Decimal("120")

    async def test_rejected_update_survives_refetch_failure(self, service, store):
        service.seed("transactions", [transaction_row("t1", amount="100")])
        await store.initialize(OWNER)

        handle = store.apply_optimistic(OptimisticMutation.update("t1", {"amount": Decimal("150")}))
        service.fail_next("fetch_one")

        with pytest.raises(MutationRejectedError):
            await store.resolve_optimistic(handle, MutationOutcome.failed("conflict"))

        assert store.get("t1").amount == Decimal("100")

    async def test_delete_hides_then_rollback_restores(self, service, store):
        service.seed("transactions", [transaction_row("t1")])
        await store.initialize(OWNER)

        handle = store.apply_optimistic(OptimisticMutation.delete("t1"))
        assert store.snapshot() == ()

        with pytest.raises(MutationRejectedError):
            await store.resolve_optimistic(handle, MutationOutcome.failed("locked"))

        assert ids(store.snapshot()) == ["t1"]

    async def test_delete_confirmed_by_echo(self, service, store):
        service.seed("transactions", [transaction_row("t1")])
        await store.initialize(OWNER)
        await store.subscribe()

        handle = store.apply_optimistic(OptimisticMutation.delete("t1"))
        await service.delete("transactions", "t1")
        await store.resolve_optimistic(handle, MutationOutcome.succeeded())

        await eventually(lambda: store.pending == ())
        assert store.snapshot() == ()

    async def test_later_update_not_settled_by_earlier_echo(self, store):
        await store.initialize(OWNER)
        store.apply_event(insert_event(transaction_row("t1", amount="100")))

        first = store.apply_optimistic(OptimisticMutation.update("t1", {"amount": Decimal("150")}))
        store.apply_optimistic(OptimisticMutation.update("t1", {"amount": Decimal("175")}))

        store.apply_event(update_event(transaction_row("t1", amount="150", client_ref=str(first.ref))))

        assert store.get("t1").amount == Decimal("175")
        assert len(store.pending) == 1

    async def test_unknown_record_rejected(self, store):
        await store.initialize(OWNER)

        with pytest.raises(UnknownRecordError):
            store.apply_optimistic(OptimisticMutation.update("nope", {"amount": Decimal("1")}))
        with pytest.raises(UnknownRecordError):
            store.apply_optimistic(OptimisticMutation.delete("nope"))

    async def test_duplicate_insert_id_rejected(self, service, store):
        service.seed("transactions", [transaction_row("t1")])
        await store.initialize(OWNER)

        with pytest.raises(SyncError):
            store.apply_optimistic(OptimisticMutation.insert(transaction_row("t1")))

    async def test_invalid_patch_rejected(self, service, store):
        service.seed("transactions", [transaction_row("t1")])
        await store.initialize(OWNER)

        with pytest.raises(ValidationError):
            store.apply_optimistic(OptimisticMutation.update("t1", {"category": ""}))
        assert store.pending == ()

    async def test_insert_needs_owner(self, store):
        with pytest.raises(NotAuthenticatedError):
            store.apply_optimistic(OptimisticMutation.insert(new_transaction(owner="")))

    async def test_reinitialize_keeps_unresolved_pending(self, store):
        await store.initialize(OWNER)
        handle = store.apply_optimistic(OptimisticMutation.insert(new_transaction()))

        await store.initialize(OWNER)

        assert ids(store.snapshot()) == [handle.record_id]

    async def test_reinitialize_drops_accepted_pending(self, service, store):
        await store.initialize(OWNER)
        handle = store.apply_optimistic(OptimisticMutation.insert(new_transaction()))
        stored = await service.insert("transactions", handle.payload)
        await store.resolve_optimistic(handle, MutationOutcome.succeeded(stored))

        await store.initialize(OWNER)

        assert ids(store.snapshot()) == [stored["id"]]
        assert store.pending == ()

    async def test_owner_change_clears_pending(self, store):
        await store.initialize("u1")
        store.apply_optimistic(OptimisticMutation.insert(new_transaction()))

        await store.initialize("u2")

        assert store.pending == ()
        assert store.snapshot() == ()


class TestTeardown:
    """TORN_DOWN is terminal."""

    async def test_teardown_clears_and_closes(self, service, store):
        service.seed("transactions", [transaction_row("t1")])
        await store.initialize(OWNER)
        await store.subscribe()

        await store.teardown()

        assert store.state == StoreState.TORN_DOWN
        assert store.snapshot() == ()
        assert store.get("t1") is None
        assert service.open_channel_count == 0

    async def test_teardown_is_idempotent(self, store):
        await store.teardown()
        await store.teardown()
        assert store.state == StoreState.TORN_DOWN

    async def test_lifecycle_calls_fail_after_teardown(self, store):
        await store.teardown()

        with pytest.raises(StoreClosedError):
            await store.initialize(OWNER)
        with pytest.raises(StoreClosedError):
            await store.subscribe(OWNER)
        with pytest.raises(StoreClosedError):
            store.apply_optimistic(OptimisticMutation.insert(new_transaction()))
        assert store.apply_event(insert_event(transaction_row("t1"))) is False

    async def test_teardown_during_load_discards_result(self, service, store):
        service.seed("transactions", [transaction_row("t1")])

        load = asyncio.create_task(store.initialize(OWNER))
        await asyncio.sleep(0)
        await store.teardown()

        with pytest.raises(StoreClosedError):
            await load
        assert store.snapshot() == ()
