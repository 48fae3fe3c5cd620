"""
Sync Store Errors

Transient backend problems surface to the caller as one of these,
with the backend exception chained. The store never retries on its
own. Malformed or duplicate events are not errors at all; the merge
rules absorb them.
"""

from typing import Optional
from uuid import UUID


class SyncError(Exception):
    """Base exception for the sync store."""
    pass


class NotAuthenticatedError(SyncError):
    """No owner identifier is available to scope the collection to."""
    pass


class FetchError(SyncError):
    """The bulk load failed. The previous snapshot is still served."""
    pass


class ChannelError(SyncError):
    """The change channel failed to open or dropped."""
    pass


class MutationRejectedError(SyncError):
    """
    The remote write behind an optimistic mutation failed.

    By the time this is raised the local change has been rolled back.
    """

    def __init__(self, message: str, ref: Optional[UUID] = None, record_id: Optional[str] = None):
        super().__init__(message)
        self.ref = ref
        self.record_id = record_id


class StoreClosedError(SyncError):
    """The store was torn down and cannot be used again."""
    pass


class UnknownRecordError(SyncError):
    """An optimistic update or delete named a record the store doesn't have."""
    pass
