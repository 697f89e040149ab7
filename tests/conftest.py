import pytest

from ntfy_sync.store import Store
from ntfy_sync.sync import SubscriptionSyncManager
from tests.helpers import FakeTransport


@pytest.fixture
def store():
    store = Store()
    yield store
    store.close()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def manager(store, transport):
    manager = SubscriptionSyncManager(store, transport, max_workers=4, clock=lambda: 1_000)
    yield manager
    if transport.gate is not None:
        transport.gate.set()
    manager.shutdown()
