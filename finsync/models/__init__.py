"""
Data Models Package

This package contains all Pydantic models used in finsync.
All data flowing through the system must conform to these schemas.
"""

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
    ChangeEvent,
    ChangeKind,
    MutationHandle,
    MutationKind,
    MutationOutcome,
    OptimisticMutation,
    PendingMutation,
    StoreState,
)
from finsync.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Record models
    "Goal",
    "GoalDraft",
    "GoalStatus",
    "SyncedRecord",
    "Transaction",
    "TransactionDraft",
    "TransactionType",
    # Sync models
    "ChangeEvent",
    "ChangeKind",
    "MutationHandle",
    "MutationKind",
    "MutationOutcome",
    "OptimisticMutation",
    "PendingMutation",
    "StoreState",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
