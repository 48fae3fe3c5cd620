"""
Synchronization Models for finsync

Change events arriving from the backend, optimistic mutations issued
locally, and the lifecycle state of a store.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChangeKind(str, Enum):
    """Kinds of change the backend reports."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class MutationKind(str, Enum):
    """Kinds of optimistic mutation the client can issue."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class StoreState(str, Enum):
    """
    Lifecycle of a SyncedCollectionStore.

    UNINITIALIZED -> LOADING -> LIVE <-> STALE -> TORN_DOWN
    TORN_DOWN is terminal.
    """
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    LIVE = "live"
    STALE = "stale"  # Last snapshot still served, but degraded
    TORN_DOWN = "torn_down"


class ChangeEvent(BaseModel):
    """
    One change delivered by a change channel.

    `record` is the raw row as the backend sent it. Delete events may
    carry nothing but the id.
    """
    model_config = ConfigDict(frozen=True)

    kind: ChangeKind
    record: dict[str, Any] = Field(default_factory=dict)
    correlation_ref: Optional[str] = Field(
        default=None,
        description="Client reference this change confirms, if the backend echoes one"
    )
    received_at: datetime = Field(default_factory=_utcnow)

    @property
    def record_id(self) -> Optional[str]:
        value = self.record.get("id")
        return str(value) if value not in (None, "") else None

    @property
    def reference(self) -> Optional[str]:
        """Correlation reference from the event, falling back to the row's client_ref."""
        ref = self.correlation_ref or self.record.get("client_ref")
        return str(ref) if ref else None


class OptimisticMutation(BaseModel):
    """
    A local edit to apply before the backend confirms it.

    inserts carry the full row in `values`; updates carry a patch;
    deletes carry only the record id.
    """
    model_config = ConfigDict(frozen=True)

    kind: MutationKind
    record_id: Optional[str] = None
    values: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode='after')
    def validate_shape(self) -> 'OptimisticMutation':
        if self.kind in (MutationKind.UPDATE, MutationKind.DELETE) and not self.record_id:
            raise ValueError(f"{self.kind.value} mutation requires a record_id")
        if self.kind in (MutationKind.INSERT, MutationKind.UPDATE) and not self.values:
            raise ValueError(f"{self.kind.value} mutation requires values")
        return self

    @classmethod
    def insert(cls, values: dict[str, Any]) -> "OptimisticMutation":
        record_id = values.get("id")
        return cls(
            kind=MutationKind.INSERT,
            record_id=str(record_id) if record_id else None,
            values=values,
        )

    @classmethod
    def update(cls, record_id: str, patch: dict[str, Any]) -> "OptimisticMutation":
        return cls(kind=MutationKind.UPDATE, record_id=record_id, values=patch)

    @classmethod
    def delete(cls, record_id: str) -> "OptimisticMutation":
        return cls(kind=MutationKind.DELETE, record_id=record_id)


class PendingMutation(BaseModel):
    """
    Bookkeeping for an optimistic mutation awaiting its echo.

    `remote_accepted` flips once the caller reports the remote write
    succeeded; the entry is still overlaid until the echo arrives.
    """

    ref: UUID = Field(default_factory=uuid4)
    kind: MutationKind
    record_id: str
    values: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    remote_accepted: bool = False


class MutationHandle(BaseModel):
    """
    Returned by apply_optimistic.

    The caller issues the real remote write from `payload` and then
    hands the handle back to resolve_optimistic.
    """
    model_config = ConfigDict(frozen=True)

    ref: UUID
    kind: MutationKind
    record_id: str
    payload: dict[str, Any] = Field(default_factory=dict)


class MutationOutcome(BaseModel):
    """Result of the remote write behind an optimistic mutation."""
    model_config = ConfigDict(frozen=True)

    success: bool
    error_message: Optional[str] = None
    record: Optional[dict[str, Any]] = Field(
        default=None,
        description="Row the backend returned, when it returned one"
    )

    @classmethod
    def succeeded(cls, record: Optional[dict[str, Any]] = None) -> "MutationOutcome":
        return cls(success=True, record=record)

    @classmethod
    def failed(cls, error_message: str) -> "MutationOutcome":
        return cls(success=False, error_message=error_message)
