"""Tests for SyncClient failure handling, triggers and construction.

Tests cover:
- Disabled client behaviour
- Authorization halt and resume
- Server, transport and decode failures leaving state untouched
- Keeping local edits that are newer than the remote delta
- Debounced triggers
- Syncing and deleting while the shared storage is full
- Building a client from Config
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests
from flask.testing import FlaskClient

from wordsync.core.config import Config
from wordsync.core.entry_store import EntryStore
from wordsync.core.kv_storage import MemoryStorage
from wordsync.core.server_store import ServerStore
from wordsync.core.sync_client import SyncClient, SyncResult, create_sync_client
from wordsync.core.sync_state import SyncStateStore

from helpers import TEST_TOKEN, FlaskSession, ManualTimerFactory, make_entry
from .conftest import DeviceFactory, SyncDevice


def failing_client(session: MagicMock) -> SyncClient:
    storage = MemoryStorage()
    state_store = SyncStateStore(storage, client_id="client-x")
    store = EntryStore(storage, "client-x")
    return SyncClient(
        store,
        state_store,
        "http://wordsync.test",
        token=TEST_TOKEN,
        session=session,
        timer_factory=ManualTimerFactory(),
    )


def response_with(status_code: int, body: object) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body
    return response


class TestSyncResult:
    """Test SyncResult dataclass."""

    def test_defaults(self) -> None:
        result = SyncResult(success=True)

        assert result.pushed == 0
        assert result.pulled == 0
        assert result.deleted == 0
        assert result.conflicts == []
        assert result.errors == []
        assert result.server_time is None
        assert result.coalesced is False


class TestDisabledClient:
    """Test a client without a server URL."""

    def test_sync_reports_not_configured(self) -> None:
        storage = MemoryStorage()
        timers = ManualTimerFactory()
        client = SyncClient(
            EntryStore(storage, "client-x"),
            SyncStateStore(storage, client_id="client-x"),
            server_url=None,
            timer_factory=timers,
        )

        assert client.sync_on_startup() is None
        result = client.sync()
        assert not result.success
        assert "No sync server configured" in result.errors[0]

        client.save_entry(make_entry("x"))
        assert timers.timers == []
        assert client.store.get("x") is not None


class TestAuthorizationHalt:
    """Test the 401 halt."""

    def test_unauthorized_halts_until_reconfigured(
        self, make_device: DeviceFactory, server_store: ServerStore
    ) -> None:
        device = make_device("a", token="wrong")
        device.client.save_entry(make_entry("x"))
        assert device.timers.active

        result = device.client.sync()

        assert not result.success
        assert "401" in result.errors[0]
        assert device.client.halted
        assert device.timers.active == []
        assert device.state.last_sync_at is None

        device.client.save_entry(make_entry("y"))
        assert device.timers.active == []
        assert not device.client.sync().success
        assert len(device.session.calls) == 1

        device.client.reconfigure(token=TEST_TOKEN)
        result = device.client.sync()

        assert result.success
        assert not device.client.halted
        assert server_store.count_entries() == 2


class TestFailedCycles:
    """Test that failed cycles leave state unchanged."""

    def test_server_error_leaves_state(self) -> None:
        session = MagicMock()
        session.post.return_value = response_with(400, {"error": "Invalid entries"})
        client = failing_client(session)
        client.save_entry(make_entry("x"))
        before = client.state_store.load()

        result = client.sync()

        assert not result.success
        assert "400" in result.errors[0]
        assert "Invalid entries" in result.errors[0]
        assert client.state_store.load() == before
        assert client.store.get("x") is not None
        assert not client.halted

    def test_transport_error_keeps_local_data(self) -> None:
        session = MagicMock()
        session.post.side_effect = requests.exceptions.ConnectionError("server unreachable")
        client = failing_client(session)
        client.save_entry(make_entry("x"))
        client.delete_entry("gone")

        result = client.sync()

        assert not result.success
        assert "unreachable" in result.errors[0]
        state = client.state_store.load()
        assert state.last_sync_at is None
        assert state.pending_deleted_ids == ["gone"]
        assert client.store.get("x") is not None

    def test_malformed_response_is_a_failure(self) -> None:
        session = MagicMock()
        session.post.return_value = response_with(200, {"serverTime": "soon", "entries": []})
        client = failing_client(session)

        result = client.sync()

        assert not result.success
        assert client.state_store.load().last_sync_at is None

    def test_request_carries_bearer_token(self) -> None:
        session = MagicMock()
        session.post.side_effect = requests.exceptions.Timeout("slow")
        client = failing_client(session)

        client.sync()

        _, kwargs = session.post.call_args
        assert session.post.call_args[0][0] == "http://wordsync.test/api/words/sync"
        assert kwargs["headers"]["Authorization"] == f"Bearer {TEST_TOKEN}"
        assert kwargs["json"]["clientId"] == "client-x"
        assert kwargs["json"]["since"] is None

    def test_failed_cycle_does_not_block_the_next(self) -> None:
        session = MagicMock()
        session.post.side_effect = requests.exceptions.ConnectionError("down")
        client = failing_client(session)

        client.sync()
        client.sync()

        assert session.post.call_count == 2


class TestApplyRemoteDelta:
    """Test how the remote delta meets local state."""

    def test_newer_local_edit_is_not_overwritten(
        self, device_a: SyncDevice, device_b: SyncDevice, server_store: ServerStore
    ) -> None:
        """An edit made while B's request is out survives the older remote value."""
        device_a.client.save_entry(make_entry("x", english="house"))
        device_a.sync()
        device_b.sync()
        device_a.client.save_entry(replace(device_a.store.get("x"), english="home"))
        device_a.sync()

        def during_request() -> None:
            device_b.session.before_post = None
            device_b.client.save_entry(replace(device_b.store.get("x"), english="building"))

        device_b.session.before_post = during_request
        result = device_b.sync()

        assert result.pulled == 0
        assert device_b.store.get("x").english == "building"

        device_b.sync()
        assert server_store.get_entry("x").english == "building"

        device_a.sync()
        assert device_a.store.get("x").english == "building"


class TestTriggers:
    """Test debounced and lifecycle triggers."""

    def test_rapid_saves_share_one_timer(self, device_a: SyncDevice) -> None:
        for i in range(3):
            device_a.client.save_entry(make_entry(f"e{i}"))

        assert len(device_a.timers.timers) == 3
        assert len(device_a.timers.active) == 1

        device_a.timers.active[0].fire()

        assert len(device_a.session.calls) == 1
        assert len(device_a.session.calls[0]["entries"]) == 3
        assert device_a.state.last_sync_at is not None

    def test_stale_timer_does_not_fire(self, device_a: SyncDevice) -> None:
        device_a.client.save_entry(make_entry("e1"))
        stale = device_a.timers.timers[0]
        device_a.client.save_entry(make_entry("e2"))

        stale.fire()

        assert device_a.session.calls == []

    def test_delete_schedules_a_sync(self, device_a: SyncDevice) -> None:
        device_a.client.delete_entry("missing")

        assert device_a.timers.active
        assert device_a.state.pending_deleted_ids == ["missing"]

    def test_shutdown_cancels_pending_sync(self, device_a: SyncDevice) -> None:
        device_a.client.save_entry(make_entry("e1"))

        device_a.client.shutdown()

        assert device_a.timers.active == []
        assert not device_a.client.scheduler.is_pending


class TestStorageCapacity:
    """Test a device whose entries and sync state share a full storage."""

    @pytest.mark.parametrize("capacity", range(600, 1500, 100))
    def test_full_storage_does_not_fail_the_cycle(
        self, make_device: DeviceFactory, capacity: int
    ) -> None:
        """Entries are shed so the new watermark can be written."""
        device = make_device("a", capacity=capacity)
        for i in range(8):
            device.client.save_entry(make_entry(f"w{i}"))

        result = device.client.sync()

        assert result.success
        assert device.state.last_sync_at == result.server_time

    @pytest.mark.parametrize("capacity", range(600, 1500, 100))
    def test_deletion_is_recorded_when_storage_is_full(
        self, make_device: DeviceFactory, capacity: int
    ) -> None:
        device = make_device("a", capacity=capacity)
        for i in range(8):
            device.client.save_entry(make_entry(f"w{i}"))
        newest = device.store.get_all()[0].id

        device.client.delete_entry(newest)

        assert newest in device.state.pending_deleted_ids
        assert device.store.get(newest) is None


class TestCreateSyncClient:
    """Test building a client from configuration."""

    def test_client_uses_config_settings(
        self,
        test_config_dir: Path,
        web_client: FlaskClient,
        server_store: ServerStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("WORD_SYNC_URL", "http://wordsync.test/")
        monkeypatch.setenv("WORD_SYNC_TOKEN", TEST_TOKEN)
        config = Config(config_dir=test_config_dir)

        client = create_sync_client(config, session=FlaskSession(web_client))
        try:
            assert client.server_url == "http://wordsync.test"
            assert client.client_id == config.get_device_id_hex()
            assert client.timeout == config.get_request_timeout()

            created = client.add_entry({"german": "Katze", "english": "cat"})
            client.shutdown()
            result = client.sync()
        finally:
            client.shutdown()

        assert result.success
        assert server_store.get_entry(created.id).client_id == config.get_device_id_hex()

    def test_client_state_survives_restart(
        self, test_config_dir: Path, web_client: FlaskClient
    ) -> None:
        config = Config(config_dir=test_config_dir)
        config.set_server_url("http://wordsync.test")
        config.set_sync_token(TEST_TOKEN)

        first = create_sync_client(config, session=FlaskSession(web_client))
        first.add_entry({"german": "Katze", "english": "cat"})
        first.shutdown()
        first.sync()

        second = create_sync_client(Config(config_dir=test_config_dir))

        assert len(second.store) == 1
        assert second.state_store.load().last_sync_at is not None
