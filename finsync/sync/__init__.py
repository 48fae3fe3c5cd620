"""Client-side synchronization package."""

from finsync.sync.errors import (
    ChannelError,
    FetchError,
    MutationRejectedError,
    NotAuthenticatedError,
    StoreClosedError,
    SyncError,
    UnknownRecordError,
)
from finsync.sync.store import SyncedCollectionStore
from finsync.sync.subscription import Subscription

__all__ = [
    "ChannelError",
    "FetchError",
    "MutationRejectedError",
    "NotAuthenticatedError",
    "StoreClosedError",
    "Subscription",
    "SyncError",
    "SyncedCollectionStore",
    "UnknownRecordError",
]
