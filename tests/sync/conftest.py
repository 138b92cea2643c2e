"""Pytest fixtures for sync tests.

This module provides fixtures for:
- Devices with their own in-memory entry store and sync state
- Wiring every device to the same in-process sync server
- Driving sync cycles round-robin across devices
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional

import pytest
from flask.testing import FlaskClient

from wordsync.core.entry_store import EntryStore
from wordsync.core.kv_storage import MemoryStorage
from wordsync.core.models import Entry
from wordsync.core.sync_client import SyncClient, SyncResult
from wordsync.core.sync_state import SyncState, SyncStateStore
from wordsync.core.timestamps import SteppingClock

from helpers import TEST_SERVER_URL, TEST_TOKEN, FlaskSession, ManualTimerFactory


@dataclass
class SyncDevice:
    """One device syncing against the test server."""

    name: str
    storage: MemoryStorage
    store: EntryStore
    state_store: SyncStateStore
    client: SyncClient
    session: FlaskSession
    timers: ManualTimerFactory

    @property
    def state(self) -> SyncState:
        return self.state_store.load()

    def entries(self) -> List[Entry]:
        return self.store.get_all()

    def entry_ids(self) -> List[str]:
        return sorted(e.id for e in self.store.get_all())

    def sync(self) -> SyncResult:
        """Run one cycle and insist that it succeeded."""
        result = self.client.sync()
        assert result.success, f"{self.name} sync failed: {result.errors}"
        return result


DeviceFactory = Callable[..., SyncDevice]


def create_sync_device(
    name: str,
    web_client: FlaskClient,
    clock: SteppingClock,
    token: Optional[str] = TEST_TOKEN,
    capacity: Optional[int] = None,
) -> SyncDevice:
    """Create a device with its own storage, talking to the test server.

    Args:
        name: Device name; the client ID is "client-<name>"
        web_client: Flask test client of the shared server
        clock: Clock shared with the server
        token: Bearer token the device sends
        capacity: Optional byte capacity of the device's storage
    """
    storage = MemoryStorage(capacity=capacity)
    state_store = SyncStateStore(storage, client_id=f"client-{name}")
    store = EntryStore(storage, state_store.client_id, clock=clock)
    session = FlaskSession(web_client)
    timers = ManualTimerFactory()
    client = SyncClient(
        store,
        state_store,
        TEST_SERVER_URL,
        token=token,
        session=session,
        timer_factory=timers,
    )
    return SyncDevice(name, storage, store, state_store, client, session, timers)


def sync_round(*devices: SyncDevice) -> None:
    """Sync each device once, in order."""
    for device in devices:
        device.sync()


@pytest.fixture
def make_device(web_client: FlaskClient, clock: SteppingClock) -> DeviceFactory:
    """Factory for devices that share the test server and clock."""

    def _make(name: str, **kwargs: object) -> SyncDevice:
        return create_sync_device(name, web_client, clock, **kwargs)

    return _make


@pytest.fixture
def device_a(make_device: DeviceFactory) -> SyncDevice:
    return make_device("a")


@pytest.fixture
def device_b(make_device: DeviceFactory) -> SyncDevice:
    return make_device("b")
