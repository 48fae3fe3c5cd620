"""
Google Sheets Remote Data Service

DESIGN DECISION: A spreadsheet is the managed backend because:
1. Users can view and fix their data directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- No push notifications (we poll and diff, see polling.py)
- No transactions (each write touches one row)
- Limited query capabilities (we filter in Python)

The implementation follows the abstract interface, so the sync store
cannot tell it apart from any other backend.
"""

import asyncio
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from finsync.config import get_settings
from finsync.models.audit import AuditEvent, AuditEventType, AuditSeverity
from finsync.services.remote.interface import (
    AuditStorageInterface,
    BackendConnectionError,
    ChangeChannel,
    RecordNotFoundError,
    RemoteDataService,
    RemoteServiceError,
)
from finsync.services.remote.polling import PollingChangeChannel


logger = structlog.get_logger(__name__)


# Column layout for each synced table
TABLE_COLUMNS = {
    "transactions": [
        "id",
        "user_id",
        "type",
        "category",
        "amount",
        "date",
        "description",
        "client_ref",
    ],
    "goals": [
        "id",
        "user_id",
        "title",
        "category",
        "target",
        "current",
        "deadline",
        "description",
        "status",
        "client_ref",
    ],
}

# Column mappings for the audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


def to_cell(value: Any) -> str:
    """Render a Python value the way it is stored in a cell."""
    if value is None:
        return ""
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return str(value)


def row_to_dict(columns: list[str], row: list) -> dict[str, Any]:
    """Map a sheet row onto column names. Empty cells become None."""
    data = {}
    for index, column in enumerate(columns):
        value = row[index] if index < len(row) else ""
        data[column] = value if value != "" else None
    return data


def dict_to_row(columns: list[str], data: dict[str, Any]) -> list[str]:
    return [to_cell(data.get(column)) for column in columns]


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError as e:
                raise BackendConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                ) from e
            except Exception as e:
                raise BackendConnectionError(f"Failed to connect to Google Sheets: {e}") from e

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound as e:
                raise BackendConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                ) from e
        return self._spreadsheet

    def sheet_name_for(self, table: str) -> str:
        names = {
            "transactions": self._settings.transactions_sheet_name,
            "goals": self._settings.goals_sheet_name,
        }
        return names.get(table, table)

    def get_worksheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet with a header row."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_table_sheet(self, table: str) -> gspread.Worksheet:
        if table not in TABLE_COLUMNS:
            raise RemoteServiceError(f"Unknown table: {table}")
        return self.get_worksheet(self.sheet_name_for(table), TABLE_COLUMNS[table])

    def get_audit_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(
            self._settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )


class GoogleSheetsDataService(RemoteDataService):
    """
    Google Sheets implementation of the remote data service.

    One worksheet per table, one row per record, a header row on top.
    gspread is blocking, so every call runs in a worker thread.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        poll_interval_seconds: Optional[float] = None,
    ):
        self._client = client or GoogleSheetsClient()
        self._poll_interval = (
            poll_interval_seconds or get_settings().sync.poll_interval_seconds
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _read_rows(self, table: str) -> list[tuple[int, dict[str, Any]]]:
        """Read every record of a table as (sheet row number, dict)."""
        sheet = self._client.get_table_sheet(table)
        columns = TABLE_COLUMNS[table]
        records = []
        # Start from 2 (row 1 is header)
        for index, row in enumerate(sheet.get_all_values()[1:], start=2):
            if not row or not row[0]:
                continue
            records.append((index, row_to_dict(columns, row)))
        return records

    def _find(self, table: str, record_id: str) -> Optional[tuple[int, dict[str, Any]]]:
        for index, data in self._read_rows(table):
            if data["id"] == record_id:
                return index, data
        return None

    async def fetch_all(
        self,
        table: str,
        owner_id: str,
        order_by: str,
        descending: bool = True,
    ) -> list[dict[str, Any]]:
        try:
            records = await asyncio.to_thread(self._read_rows, table)
        except RemoteServiceError:
            raise
        except Exception as e:
            raise RemoteServiceError(f"Failed to read {table}: {e}") from e

        rows = [data for _, data in records if data.get("user_id") == owner_id]
        # Cells are ISO strings, so string order is date order
        rows.sort(key=lambda r: r.get(order_by) or "", reverse=descending)
        return rows

    async def fetch_one(self, table: str, record_id: str) -> Optional[dict[str, Any]]:
        try:
            found = await asyncio.to_thread(self._find, table, record_id)
        except RemoteServiceError:
            raise
        except Exception as e:
            raise RemoteServiceError(f"Failed to read {table}: {e}") from e
        return found[1] if found else None

    async def open_channel(self, table: str, owner_id: str) -> ChangeChannel:
        async def fetch() -> list[dict[str, Any]]:
            return await self.fetch_all(table, owner_id, order_by="id", descending=False)

        channel = PollingChangeChannel(fetch, self._poll_interval, label=table)
        await channel.prime()
        logger.info("channel_opened", table=table, owner_id=owner_id, poll_interval=self._poll_interval)
        return channel

    def _append(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        stored = dict(row)
        if not stored.get("id"):
            stored["id"] = str(uuid4())
        columns = TABLE_COLUMNS[table]
        sheet = self._client.get_table_sheet(table)
        sheet.append_row(dict_to_row(columns, stored), value_input_option="RAW")
        return row_to_dict(columns, dict_to_row(columns, stored))

    def _rewrite(self, table: str, record_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        found = self._find(table, record_id)
        if found is None:
            raise RecordNotFoundError(f"{table} row not found: {record_id}")
        index, data = found
        data.update(patch)
        data["id"] = record_id
        columns = TABLE_COLUMNS[table]
        sheet = self._client.get_table_sheet(table)
        new_row = dict_to_row(columns, data)
        for col_idx, value in enumerate(new_row, start=1):
            sheet.update_cell(index, col_idx, value)
        return row_to_dict(columns, new_row)

    def _remove(self, table: str, record_id: str) -> None:
        found = self._find(table, record_id)
        if found is not None:
            self._client.get_table_sheet(table).delete_rows(found[0])

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        try:
            return await asyncio.to_thread(self._append, table, row)
        except RemoteServiceError:
            raise
        except Exception as e:
            raise RemoteServiceError(f"Failed to insert into {table}: {e}") from e

    async def update(
        self,
        table: str,
        record_id: str,
        patch: dict[str, Any],
    ) -> dict[str, Any]:
        try:
            return await asyncio.to_thread(self._rewrite, table, record_id, patch)
        except RemoteServiceError:
            raise
        except Exception as e:
            raise RemoteServiceError(f"Failed to update {table}: {e}") from e

    async def delete(self, table: str, record_id: str) -> None:
        try:
            await asyncio.to_thread(self._remove, table, record_id)
        except RemoteServiceError:
            raise
        except Exception as e:
            raise RemoteServiceError(f"Failed to delete from {table}: {e}") from e


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
            is_user_action=safe_get(10).lower() == "true",
        )

    def _read_events(self) -> list[AuditEvent]:
        events = []
        for row in self._client.get_audit_sheet().get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except ValueError as e:
                logger.warning("audit_row_skipped", error=str(e))
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = await asyncio.to_thread(self._client.get_audit_sheet)
            await asyncio.to_thread(
                sheet.append_row, event.to_sheets_row(), value_input_option="RAW"
            )
            return True
        except Exception as e:
            # Audit logging should not break the main flow
            logger.warning("audit_write_failed", error=str(e), event_id=str(event.event_id))
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            events = await asyncio.to_thread(self._read_events)
        except Exception as e:
            raise RemoteServiceError(f"Failed to get audit events: {e}") from e
        related = [e for e in events if e.correlation_id == correlation_id]
        related.sort(key=lambda e: e.timestamp)
        return related

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = await asyncio.to_thread(self._read_events)
        except Exception as e:
            raise RemoteServiceError(f"Failed to get audit events: {e}") from e
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
