"""
Shared fixtures.

Everything runs against the in-memory backend; no test touches the
network.
"""

import pytest

from finsync.models import Goal, Transaction
from finsync.services.remote import InMemoryDataService
from finsync.sync import SyncedCollectionStore


@pytest.fixture
def service() -> InMemoryDataService:
    return InMemoryDataService()


@pytest.fixture
async def store(service):
    store = SyncedCollectionStore(service, Transaction)
    yield store
    await store.teardown()


@pytest.fixture
async def goal_store(service):
    store = SyncedCollectionStore(service, Goal)
    yield store
    await store.teardown()
