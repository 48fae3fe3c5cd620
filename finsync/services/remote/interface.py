"""
Abstract Remote Data Service Interface

DESIGN DECISION: The sync store only ever talks to this interface.
This allows us to:
1. Swap the managed backend (Google Sheets today) without touching the store
2. Use an in-memory backend for testing and offline demos
3. Keep change notification behind one small channel abstraction

The interface only reads rows, writes rows and opens a change channel.
Rows cross it as plain dicts; the store validates them into models.
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Optional
from uuid import UUID

from finsync.models.audit import AuditEvent
from finsync.models.sync import ChangeEvent


class ChangeChannel(ABC):
    """
    A live connection delivering change events for one table and owner.

    Iterate `events()` to receive changes in delivery order. The
    iterator ends when the channel is closed and raises
    ChannelDroppedError if the backend drops the connection.
    """

    @abstractmethod
    def events(self) -> AsyncIterator[ChangeEvent]:
        """Yield change events until closed or dropped."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """
        Release the channel.

        Must be safe to call more than once.
        """
        pass


class RemoteDataService(ABC):
    """
    Abstract interface for the backend that owns the source of truth.

    Any backend (Google Sheets, a hosted Postgres, etc.) must implement
    these methods.
    """

    @abstractmethod
    async def fetch_all(
        self,
        table: str,
        owner_id: str,
        order_by: str,
        descending: bool = True,
    ) -> list[dict[str, Any]]:
        """
        Fetch every row of `table` owned by `owner_id`.

        Args:
            table: Table name
            owner_id: Owner to scope the query to
            order_by: Column to sort by
            descending: Sort direction

        Returns:
            Rows in the requested order

        Raises:
            RemoteServiceError: If the query fails
        """
        pass

    @abstractmethod
    async def fetch_one(
        self,
        table: str,
        record_id: str,
    ) -> Optional[dict[str, Any]]:
        """
        Fetch a single row by id.

        Returns:
            The row if found, None otherwise
        """
        pass

    @abstractmethod
    async def open_channel(
        self,
        table: str,
        owner_id: str,
    ) -> ChangeChannel:
        """
        Open a change channel for `table` scoped to `owner_id`.

        Raises:
            RemoteServiceError: If the channel cannot be established
        """
        pass

    @abstractmethod
    async def insert(
        self,
        table: str,
        row: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Insert a row.

        The backend assigns an id when the row carries none.

        Returns:
            The stored row, including its id

        Raises:
            RemoteServiceError: If the write fails
        """
        pass

    @abstractmethod
    async def update(
        self,
        table: str,
        record_id: str,
        patch: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Apply `patch` to an existing row.

        Returns:
            The stored row after the update

        Raises:
            RecordNotFoundError: If the row doesn't exist
            RemoteServiceError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(
        self,
        table: str,
        record_id: str,
    ) -> None:
        """
        Delete a row by id. Deleting a missing row is not an error.

        Raises:
            RemoteServiceError: If the write fails
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one optimistic write).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class RemoteServiceError(Exception):
    """Base exception for remote backend operations."""
    pass


class RecordNotFoundError(RemoteServiceError):
    """Row not found in the backend."""
    pass


class BackendConnectionError(RemoteServiceError):
    """Could not connect to the backend."""
    pass


class ChannelDroppedError(RemoteServiceError):
    """A change channel lost its connection."""
    pass
