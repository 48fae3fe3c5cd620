"""
Subscription Handle

Wraps the consumer task that drains one change channel into a store.
Cancelling the subscription cancels the task and closes the channel,
so it composes with ordinary asyncio task handling instead of
relying on a bare unsubscribe callback.
"""

import asyncio
from typing import Optional

from finsync.services.remote.interface import ChangeChannel
from finsync.sync.errors import ChannelError


class Subscription:
    """
    Live link between a change channel and a store.

    `generation` is the store's subscription counter at the time this
    subscription was opened; the store drops events from any
    subscription whose generation is no longer current.
    """

    def __init__(self, table: str, owner_id: str, channel: ChangeChannel, generation: int):
        self.table = table
        self.owner_id = owner_id
        self.channel = channel
        self.generation = generation
        self._task: Optional[asyncio.Task] = None
        self._error: Optional[ChannelError] = None
        self._cancelled = False

    def attach(self, task: asyncio.Task) -> None:
        self._task = task

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def error(self) -> Optional[ChannelError]:
        return self._error

    @property
    def active(self) -> bool:
        return (
            not self._cancelled
            and self._error is None
            and self._task is not None
            and not self._task.done()
        )

    def mark_failed(self, error: ChannelError) -> None:
        self._error = error

    async def cancel(self) -> None:
        """Stop delivering events and release the channel. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.wait({task})
        await self.channel.close()

    async def wait(self) -> None:
        """
        Wait until the subscription ends.

        Returns normally after cancel(); raises ChannelError if the
        channel dropped.
        """
        if self._task is not None and self._task is not asyncio.current_task():
            await asyncio.wait({self._task})
        if self._error is not None:
            raise self._error
