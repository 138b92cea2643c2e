"""Pytest fixtures for wordsync tests.

This module provides fixtures for a shared test clock, in-memory entry
stores, and a throwaway sync server behind the Flask test client.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Generator

import pytest
from flask import Flask
from flask.testing import FlaskClient

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from wordsync.core.entry_store import EntryStore
from wordsync.core.kv_storage import MemoryStorage
from wordsync.core.server_store import ServerStore
from wordsync.core.timestamps import SteppingClock
from wordsync.web import create_app

from helpers import TEST_TOKEN

ENV_VARS = (
    "WORD_SYNC_URL",
    "WORD_SYNC_TOKEN",
    "WORD_SYNC_PORT",
    "WORD_SYNC_DATA_PATH",
    "WORD_SYNC_TIMEOUT",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's sync settings out of the tests."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def test_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def clock() -> SteppingClock:
    """Shared clock: every reading is one second after the previous one."""
    return SteppingClock()


@pytest.fixture
def memory_storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def entry_store(memory_storage: MemoryStorage, clock: SteppingClock) -> EntryStore:
    """Create an entry store for device 'client-a'."""
    return EntryStore(memory_storage, "client-a", clock=clock)


@pytest.fixture
def server_store(tmp_path: Path) -> Generator[ServerStore, None, None]:
    """Create a server collection in a temporary SQLite file."""
    store = ServerStore(tmp_path / "server" / "word-entries.db")
    yield store
    store.close()


@pytest.fixture
def web_app(
    tmp_path: Path, server_store: ServerStore, clock: SteppingClock
) -> Generator[Flask, None, None]:
    """Create the sync server app, requiring TEST_TOKEN."""
    app = create_app(
        config_dir=tmp_path / "server-config",
        store=server_store,
        auth_token=TEST_TOKEN,
        clock=clock,
    )
    app.config["TESTING"] = True
    yield app


@pytest.fixture
def web_client(web_app: Flask) -> FlaskClient:
    """Create Flask test client."""
    return web_app.test_client()

