"""
Audit Models for finsync

Every significant sync action is logged for audit purposes.
This provides:
1. Traceability of what the local store did and why
2. Debugging information when local and remote disagree
3. A history of user mutations and their outcomes

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step of a store's lifecycle and of a user mutation has its own type.
    """
    # Session
    SESSION_STARTED = "session_started"
    SESSION_ENDED = "session_ended"

    # Loading
    STORE_LOADED = "store_loaded"
    FETCH_FAILED = "fetch_failed"

    # Change channel
    CHANNEL_OPENED = "channel_opened"
    CHANNEL_DROPPED = "channel_dropped"
    CHANNEL_CLOSED = "channel_closed"

    # Optimistic mutations
    OPTIMISTIC_APPLIED = "optimistic_applied"
    MUTATION_CONFIRMED = "mutation_confirmed"
    MUTATION_REJECTED = "mutation_rejected"

    # Assistant
    ANALYSIS_REQUESTED = "analysis_requested"

    # Teardown
    STORE_TORN_DOWN = "store_torn_down"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transactions', 'goals', 'session')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the record or owner this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one optimistic write and its outcome)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.store_loaded("transactions", "u1", 12)
        event = AuditEventBuilder.mutation_rejected("transactions", "t1", "insert", "boom", ref)
    """

    @staticmethod
    def session_started(owner_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_STARTED,
            entity_type="session",
            entity_id=owner_id,
            description=f"Session started for {owner_id}",
            is_user_action=True,
        )

    @staticmethod
    def session_ended(owner_id: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_ENDED,
            entity_type="session",
            entity_id=owner_id,
            description="Session ended",
            is_user_action=True,
        )

    @staticmethod
    def store_loaded(table: str, owner_id: str, record_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORE_LOADED,
            entity_type=table,
            entity_id=owner_id,
            description=f"Loaded {record_count} {table}",
            details={"record_count": record_count},
        )

    @staticmethod
    def fetch_failed(table: str, owner_id: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FETCH_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type=table,
            entity_id=owner_id,
            description=f"Bulk load of {table} failed; serving last snapshot",
            error_message=error_message,
        )

    @staticmethod
    def channel_opened(table: str, owner_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CHANNEL_OPENED,
            entity_type=table,
            entity_id=owner_id,
            description=f"Listening for changes to {table}",
        )

    @staticmethod
    def channel_dropped(table: str, owner_id: Optional[str], error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CHANNEL_DROPPED,
            severity=AuditSeverity.WARNING,
            entity_type=table,
            entity_id=owner_id,
            description=f"Change channel for {table} dropped",
            error_message=error_message,
        )

    @staticmethod
    def channel_closed(table: str, owner_id: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CHANNEL_CLOSED,
            entity_type=table,
            entity_id=owner_id,
            description=f"Stopped listening for changes to {table}",
        )

    @staticmethod
    def optimistic_applied(
        table: str,
        record_id: str,
        kind: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPTIMISTIC_APPLIED,
            entity_type=table,
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Optimistic {kind} applied locally",
            details={"kind": kind},
            is_user_action=True,
        )

    @staticmethod
    def mutation_confirmed(
        table: str,
        record_id: str,
        kind: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_CONFIRMED,
            entity_type=table,
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Remote {kind} accepted",
            details={"kind": kind},
        )

    @staticmethod
    def mutation_rejected(
        table: str,
        record_id: str,
        kind: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type=table,
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Remote {kind} rejected; local change rolled back",
            details={"kind": kind},
            error_message=error_message,
        )

    @staticmethod
    def analysis_requested(owner_id: str, question: Optional[str], transaction_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ANALYSIS_REQUESTED,
            entity_type="assistant",
            entity_id=owner_id,
            description="Assistant analysis requested",
            details={
                "question": question,
                "transaction_count": transaction_count,
            },
            is_user_action=True,
        )

    @staticmethod
    def store_torn_down(table: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORE_TORN_DOWN,
            entity_type=table,
            description=f"Store for {table} torn down",
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
