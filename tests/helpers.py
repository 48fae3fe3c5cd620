"""Row factories and waiting helpers shared by the tests."""

import asyncio
from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from typing import Any, Callable


OWNER = "u1"


def transaction_row(
    record_id: str,
    amount: str = "100",
    type: str = "income",
    owner: str = OWNER,
    day: date = date(2024, 3, 1),
    category: str = "Salary",
    **extra: Any,
) -> dict[str, Any]:
    row = {
        "id": record_id,
        "user_id": owner,
        "type": type,
        "category": category,
        "amount": Decimal(amount),
        "date": day,
    }
    row.update(extra)
    return row


def goal_row(
    record_id: str,
    target: str = "1000",
    current: str = "0",
    owner: str = OWNER,
    deadline: date = date(2030, 1, 1),
    **extra: Any,
) -> dict[str, Any]:
    row = {
        "id": record_id,
        "user_id": owner,
        "title": f"Goal {record_id}",
        "category": "Savings",
        "target": Decimal(target),
        "current": Decimal(current),
        "deadline": deadline,
        "status": "in_progress",
    }
    row.update(extra)
    return row


async def eventually(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the loop until `predicate` holds, or fail after `timeout` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)


async def drain() -> None:
    """Give the channel consumers a few turns of the loop."""
    for _ in range(10):
        await asyncio.sleep(0)


def ids(records) -> list[str]:
    return [r.id for r in records]


class StubModel:
    """Stands in for a Gemini GenerativeModel."""

    def __init__(self, text: str = "", error: Exception = None):
        self.text = text
        self.error = error
        self.prompts: list[str] = []

    async def generate_content_async(self, prompt: str):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.text)
