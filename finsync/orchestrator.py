"""
Main Orchestrator for finsync

This module ties together all the components and defines the
end-to-end flows for one signed-in user:
1. Session start (load → subscribe, for transactions and goals)
2. Mutations (apply optimistically → write remotely → resolve)
3. Analysis (snapshots → assistant → answer)

DESIGN DECISION: The orchestrator is the only writer.
- Stores never talk to the backend on their own initiative, except to
  re-read a record after a rejected write
- Readers (the dashboard, the assistant) only ever see snapshots
- Every step is audited

TRADEOFFS:
- start() loads before it subscribes. A change landing between the two
  is missed until the next resync().
- A dropped channel is reported, not repaired. Call resync() to recover.
"""

import asyncio
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, Union

import structlog

from finsync.agents import FinancialAnalysis, FinancialAssistantAgent
from finsync.agents.ai_agents import API_KEY_MESSAGE
from finsync.audit import AuditLogger
from finsync.config import get_settings
from finsync.models.records import (
    Goal,
    GoalDraft,
    GoalStatus,
    SyncedRecord,
    Transaction,
    TransactionDraft,
    TransactionType,
)
from finsync.models.sync import (
    MutationHandle,
    MutationOutcome,
    OptimisticMutation,
    StoreState,
)
from finsync.services.remote import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDataService,
    InMemoryAuditStorage,
    InMemoryDataService,
    RemoteDataService,
)
from finsync.sync import (
    ChannelError,
    FetchError,
    NotAuthenticatedError,
    SyncedCollectionStore,
    UnknownRecordError,
)


logger = structlog.get_logger(__name__)

RemoteWrite = Callable[[MutationHandle], Awaitable[Optional[dict[str, Any]]]]


class FinanceSession:
    """
    One user's live view of their transactions and goals.

    Flow:
    1. start(owner_id) → both stores load, then subscribe
    2. add/update/delete → optimistic apply, remote write, resolve
    3. analyze() → assistant reads the current snapshots
    4. end() → both stores torn down

    A session is single-use: after end(), build a new one.
    """

    def __init__(
        self,
        service: RemoteDataService,
        audit_logger: Optional[AuditLogger] = None,
        assistant: Optional[FinancialAssistantAgent] = None,
        on_channel_error: Optional[Callable[[str, ChannelError], None]] = None,
    ):
        self._service = service
        self._audit_logger = audit_logger or AuditLogger()
        self._assistant = assistant
        self._on_channel_error = on_channel_error
        self._owner_id: Optional[str] = None
        self._background: set[asyncio.Task] = set()

        self.transactions = SyncedCollectionStore(
            service,
            Transaction,
            on_channel_error=lambda error: self._channel_dropped(Transaction.table_name, error),
        )
        self.goals = SyncedCollectionStore(
            service,
            Goal,
            on_channel_error=lambda error: self._channel_dropped(Goal.table_name, error),
        )

    @property
    def owner_id(self) -> Optional[str]:
        return self._owner_id

    @property
    def stores(self) -> tuple[SyncedCollectionStore, SyncedCollectionStore]:
        return (self.transactions, self.goals)

    @property
    def is_stale(self) -> bool:
        """True if either store is serving a snapshot it can't keep current."""
        return any(store.state == StoreState.STALE for store in self.stores)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self, owner_id: Optional[str]) -> None:
        """
        Load and subscribe both collections for `owner_id`.

        Raises:
            NotAuthenticatedError: If no owner id is given
            FetchError: If a bulk load fails
            ChannelError: If a change channel cannot be opened
        """
        if not owner_id:
            raise NotAuthenticatedError("Sign in to load your finances")

        self._owner_id = owner_id
        await self._audit_logger.log_session_started(owner_id)
        await self._sync_all(owner_id)

    async def resync(self) -> None:
        """Reload and resubscribe both collections, e.g. after a dropped channel."""
        if not self._owner_id:
            raise NotAuthenticatedError("No session to resync")
        await self._sync_all(self._owner_id)

    async def _sync_all(self, owner_id: str) -> None:
        for store in self.stores:
            try:
                records = await store.initialize(owner_id)
            except FetchError as e:
                await self._audit_logger.log_fetch_failed(store.table, owner_id, str(e))
                raise
            await self._audit_logger.log_store_loaded(store.table, owner_id, len(records))

            try:
                await store.subscribe(owner_id)
            except ChannelError as e:
                await self._audit_logger.log_error(
                    error_type=type(e).__name__,
                    error_message=str(e),
                    details={"table": store.table, "owner_id": owner_id},
                )
                raise
            await self._audit_logger.log_channel_opened(store.table, owner_id)

    async def end(self) -> None:
        """Tear down both stores. Idempotent."""
        for store in self.stores:
            if store.state == StoreState.TORN_DOWN:
                continue
            listening = store.subscription is not None
            await store.teardown()
            if listening:
                await self._audit_logger.log_channel_closed(store.table, self._owner_id)
            await self._audit_logger.log_store_torn_down(store.table)

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        await self._audit_logger.log_session_ended(self._owner_id)

    def _channel_dropped(self, table: str, error: ChannelError) -> None:
        # Called from the consumer task, so a loop is running
        task = asyncio.get_running_loop().create_task(
            self._audit_logger.log_channel_dropped(table, self._owner_id, str(error))
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

        if self._on_channel_error is not None:
            self._on_channel_error(table, error)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def _run_mutation(
        self,
        store: SyncedCollectionStore,
        mutation: OptimisticMutation,
        write: RemoteWrite,
    ) -> MutationHandle:
        """
        Apply `mutation` locally, perform the remote write, and resolve.

        Raises MutationRejectedError (after rolling back) if the write fails.
        """
        handle = store.apply_optimistic(mutation)
        await self._audit_logger.log_optimistic_applied(
            table=store.table,
            record_id=handle.record_id,
            kind=handle.kind.value,
            correlation_id=handle.ref,
        )

        try:
            row = await write(handle)
        except Exception as e:
            await self._audit_logger.log_mutation_rejected(
                table=store.table,
                record_id=handle.record_id,
                kind=handle.kind.value,
                error_message=str(e),
                correlation_id=handle.ref,
            )
            await store.resolve_optimistic(handle, MutationOutcome.failed(str(e)))
            raise  # resolve_optimistic raises on failure; not reached

        await store.resolve_optimistic(handle, MutationOutcome.succeeded(row))
        # Inserts come back under the id the server assigned
        handle = handle.model_copy(update={"record_id": store.resolve_id(handle.record_id)})
        await self._audit_logger.log_mutation_confirmed(
            table=store.table,
            record_id=handle.record_id,
            kind=handle.kind.value,
            correlation_id=handle.ref,
        )
        return handle

    def _require_owner(self) -> str:
        if not self._owner_id:
            raise NotAuthenticatedError("Sign in before changing your finances")
        return self._owner_id

    def _insert(self, table: str) -> RemoteWrite:
        return lambda handle: self._service.insert(table, handle.payload)

    def _update(self, table: str) -> RemoteWrite:
        return lambda handle: self._service.update(table, handle.record_id, handle.payload)

    def _delete(self, table: str) -> RemoteWrite:
        return lambda handle: self._service.delete(table, handle.record_id)

    async def add_transaction(self, draft: TransactionDraft) -> MutationHandle:
        """Add a transaction. Expenses are stored as negative amounts."""
        row = draft.to_row(self._require_owner())
        return await self._run_mutation(
            self.transactions,
            OptimisticMutation.insert(row),
            self._insert(self.transactions.table),
        )

    async def update_transaction(self, record_id: str, changes: dict[str, Any]) -> MutationHandle:
        """
        Edit fields of a transaction.

        An amount in `changes` is taken as unsigned and signed by the
        (new or existing) type, the same way drafts are.
        """
        self._require_owner()
        patch = dict(changes)
        if "amount" in patch or "type" in patch:
            current = self.transactions.get(self.transactions.resolve_id(record_id))
            if current is None:
                raise UnknownRecordError(f"transactions has no record {record_id}")
            kind = TransactionType(patch.get("type", current.type))
            magnitude = abs(Decimal(str(patch.get("amount", current.amount))))
            patch["type"] = kind.value
            patch["amount"] = -magnitude if kind == TransactionType.EXPENSE else magnitude

        return await self._run_mutation(
            self.transactions,
            OptimisticMutation.update(record_id, patch),
            self._update(self.transactions.table),
        )

    async def delete_transaction(self, record_id: str) -> MutationHandle:
        self._require_owner()
        return await self._run_mutation(
            self.transactions,
            OptimisticMutation.delete(record_id),
            self._delete(self.transactions.table),
        )

    async def add_goal(self, draft: GoalDraft) -> MutationHandle:
        row = draft.to_row(self._require_owner())
        return await self._run_mutation(
            self.goals,
            OptimisticMutation.insert(row),
            self._insert(self.goals.table),
        )

    async def update_goal_progress(self, goal_id: str, current: Decimal) -> MutationHandle:
        """Set how much has been saved; the goal completes once it reaches its target."""
        self._require_owner()
        goal = self.goals.get(self.goals.resolve_id(goal_id))
        if goal is None:
            raise UnknownRecordError(f"goals has no record {goal_id}")

        status = GoalStatus.COMPLETED if current >= goal.target else GoalStatus.IN_PROGRESS
        return await self._run_mutation(
            self.goals,
            OptimisticMutation.update(goal_id, {"current": current, "status": status.value}),
            self._update(self.goals.table),
        )

    async def delete_goal(self, goal_id: str) -> MutationHandle:
        self._require_owner()
        return await self._run_mutation(
            self.goals,
            OptimisticMutation.delete(goal_id),
            self._delete(self.goals.table),
        )

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    async def analyze(self, question: Optional[str] = None) -> Union[str, FinancialAnalysis]:
        """
        Ask the assistant about the current snapshots.

        Returns text for a question, or the seven-section analysis.
        """
        owner_id = self._require_owner()
        transactions: list[SyncedRecord] = list(self.transactions.snapshot())
        goals: list[SyncedRecord] = list(self.goals.snapshot())

        await self._audit_logger.log_analysis_requested(owner_id, question, len(transactions))

        if self._assistant is None:
            try:
                self._assistant = FinancialAssistantAgent()
            except Exception as e:
                await self._audit_logger.log_external_service_error(
                    service="gemini",
                    error_message=str(e),
                )
                return API_KEY_MESSAGE

        return await self._assistant.analyze_finances(transactions, goals, question=question)


def create_app_components(
    backend: Optional[str] = None,
) -> tuple[FinanceSession, RemoteDataService]:
    """
    Factory function to create all application components.

    Args:
        backend: "memory" or "sheets". Defaults to SYNC_BACKEND.
                 If Google Sheets is not configured, falls back to memory.

    Returns:
        (session, service)
    """
    backend = backend or get_settings().sync.backend
    service: Optional[RemoteDataService] = None
    audit_logger = None

    if backend == "sheets":
        try:
            sheets_client = GoogleSheetsClient()
            service = GoogleSheetsDataService(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue with the in-memory backend
            logger.warning("sheets_not_configured", error=str(e))
            service = None

    if service is None:
        service = InMemoryDataService()
        audit_logger = AuditLogger(InMemoryAuditStorage())

    session = FinanceSession(service, audit_logger=audit_logger)
    return session, service
