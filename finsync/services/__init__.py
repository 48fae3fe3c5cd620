"""Services package."""

from finsync.services.remote import (
    AuditStorageInterface,
    BackendConnectionError,
    ChangeChannel,
    ChannelDroppedError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDataService,
    InMemoryAuditStorage,
    InMemoryDataService,
    RecordNotFoundError,
    RemoteDataService,
    RemoteServiceError,
)

__all__ = [
    "AuditStorageInterface",
    "BackendConnectionError",
    "ChangeChannel",
    "ChannelDroppedError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsDataService",
    "InMemoryAuditStorage",
    "InMemoryDataService",
    "RecordNotFoundError",
    "RemoteDataService",
    "RemoteServiceError",
]
