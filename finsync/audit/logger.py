"""
Audit Logger

DESIGN DECISION: Every significant sync action is logged.
This provides:
1. Traceability of what happened to each user edit
2. Debugging capability when local and remote disagree
3. A history the user can inspect

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to tie an optimistic edit to its outcome
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from finsync.models.audit import AuditEvent, AuditEventBuilder
from finsync.services.remote import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("finsync.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_session_started(self, owner_id: str) -> None:
        await self.log(AuditEventBuilder.session_started(owner_id))

    async def log_session_ended(self, owner_id: Optional[str]) -> None:
        await self.log(AuditEventBuilder.session_ended(owner_id))

    async def log_store_loaded(self, table: str, owner_id: str, record_count: int) -> None:
        """Log a successful bulk load."""
        await self.log(AuditEventBuilder.store_loaded(table, owner_id, record_count))

    async def log_fetch_failed(self, table: str, owner_id: str, error_message: str) -> None:
        """Log a failed bulk load."""
        await self.log(AuditEventBuilder.fetch_failed(table, owner_id, error_message))

    async def log_channel_opened(self, table: str, owner_id: str) -> None:
        await self.log(AuditEventBuilder.channel_opened(table, owner_id))

    async def log_channel_dropped(
        self,
        table: str,
        owner_id: Optional[str],
        error_message: str,
    ) -> None:
        """Log a change channel that went away under us."""
        await self.log(AuditEventBuilder.channel_dropped(table, owner_id, error_message))

    async def log_channel_closed(self, table: str, owner_id: Optional[str]) -> None:
        await self.log(AuditEventBuilder.channel_closed(table, owner_id))

    async def log_optimistic_applied(
        self,
        table: str,
        record_id: str,
        kind: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.optimistic_applied(
            table=table,
            record_id=record_id,
            kind=kind,
            correlation_id=correlation_id,
        ))

    async def log_mutation_confirmed(
        self,
        table: str,
        record_id: str,
        kind: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.mutation_confirmed(
            table=table,
            record_id=record_id,
            kind=kind,
            correlation_id=correlation_id,
        ))

    async def log_mutation_rejected(
        self,
        table: str,
        record_id: str,
        kind: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a remote write failure and the rollback that followed."""
        await self.log(AuditEventBuilder.mutation_rejected(
            table=table,
            record_id=record_id,
            kind=kind,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_analysis_requested(
        self,
        owner_id: str,
        question: Optional[str],
        transaction_count: int,
    ) -> None:
        await self.log(AuditEventBuilder.analysis_requested(owner_id, question, transaction_count))

    async def log_store_torn_down(self, table: str) -> None:
        await self.log(AuditEventBuilder.store_torn_down(table))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action.
    Pass it through all subsequent operations.
    """
    return uuid4()
