"""
Remote Data Services Package

Provides the abstract backend interface and concrete implementations.
Google Sheets is the managed backend; the in-memory backend serves
tests and the offline demo.
"""

from finsync.services.remote.interface import (
    AuditStorageInterface,
    BackendConnectionError,
    ChangeChannel,
    ChannelDroppedError,
    RecordNotFoundError,
    RemoteDataService,
    RemoteServiceError,
)
from finsync.services.remote.memory import (
    InMemoryAuditStorage,
    InMemoryDataService,
    MemoryChangeChannel,
)
from finsync.services.remote.polling import (
    PollingChangeChannel,
    diff_rows,
    index_rows,
)
from finsync.services.remote.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDataService,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "ChangeChannel",
    "RemoteDataService",
    # Exceptions
    "BackendConnectionError",
    "ChannelDroppedError",
    "RecordNotFoundError",
    "RemoteServiceError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryDataService",
    "MemoryChangeChannel",
    # Polling
    "PollingChangeChannel",
    "diff_rows",
    "index_rows",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsDataService",
]
