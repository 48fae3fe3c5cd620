"""
Polling Change Channel

Backends without push notifications (a spreadsheet, a plain REST API)
still need to feed the sync store a change stream. This channel
re-reads the owner's rows on an interval and turns the difference
between two reads into insert/update/delete events.

TRADEOFFS:
- Changes show up one poll interval late
- A row changed and changed back between polls produces no event
- Every poll is a full read (fine for one user's transactions)
"""

import asyncio
from typing import Any, Awaitable, Callable

import structlog

from finsync.models.sync import ChangeEvent, ChangeKind
from finsync.services.remote.interface import (
    ChangeChannel,
    ChannelDroppedError,
)


logger = structlog.get_logger(__name__)

RowFetcher = Callable[[], Awaitable[list[dict[str, Any]]]]


def index_rows(rows: list[dict[str, Any]]) -> dict[str, dict[str, Any]]:
    """Key rows by id, skipping rows without one."""
    return {str(row["id"]): row for row in rows if row.get("id")}


def diff_rows(
    previous: dict[str, dict[str, Any]],
    current: dict[str, dict[str, Any]],
) -> list[ChangeEvent]:
    """
    Turn two reads of the same table into change events.

    Deletes come first, then updates, then inserts, each in id order,
    so the output is deterministic.
    """
    events = []

    for record_id in sorted(previous.keys() - current.keys()):
        old = previous[record_id]
        events.append(ChangeEvent(
            kind=ChangeKind.DELETE,
            record={"id": record_id, "user_id": old.get("user_id")},
        ))

    for record_id in sorted(previous.keys() & current.keys()):
        if previous[record_id] != current[record_id]:
            events.append(ChangeEvent(kind=ChangeKind.UPDATE, record=dict(current[record_id])))

    for record_id in sorted(current.keys() - previous.keys()):
        events.append(ChangeEvent(kind=ChangeKind.INSERT, record=dict(current[record_id])))

    return events


class PollingChangeChannel(ChangeChannel):
    """
    Change channel built on repeated full reads.

    The first read only establishes a baseline; events start with the
    second read. A failed read drops the channel.
    """

    def __init__(self, fetch: RowFetcher, interval_seconds: float, label: str = ""):
        self._fetch = fetch
        self._interval = interval_seconds
        self._label = label
        self._closed = False
        self._baseline: dict[str, dict[str, Any]] = {}

    async def prime(self) -> None:
        """Take the baseline read. Called when the channel is opened."""
        self._baseline = index_rows(await self._fetch())

    async def events(self):
        while not self._closed:
            await asyncio.sleep(self._interval)
            if self._closed:
                return
            try:
                current = index_rows(await self._fetch())
            except Exception as e:
                self._closed = True
                logger.warning("polling_channel_failed", channel=self._label, error=str(e))
                raise ChannelDroppedError(f"Polling {self._label} failed: {e}") from e

            changes = diff_rows(self._baseline, current)
            self._baseline = current
            for event in changes:
                if self._closed:
                    return
                yield event

    async def close(self) -> None:
        self._closed = True
