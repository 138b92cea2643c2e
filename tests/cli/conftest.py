"""Pytest fixtures for CLI tests.

CLI commands run in-process through the real argument parser. The sync
client they build talks to the Flask test server instead of the network.
"""

from __future__ import annotations

from pathlib import Path
from typing import Tuple

import pytest
from flask.testing import FlaskClient

from wordsync import cli
from wordsync.core.config import Config
from wordsync.core.sync_client import SyncClient, create_sync_client
from wordsync.core.timestamps import SteppingClock
from wordsync.main import create_parser

from helpers import TEST_SERVER_URL, TEST_TOKEN, CliRunner, FlaskSession


def configure_device(config_dir: Path) -> Path:
    """Point a config directory at the test server."""
    config = Config(config_dir=config_dir)
    config.set_server_url(TEST_SERVER_URL)
    config.set_sync_token(TEST_TOKEN)
    return config_dir


@pytest.fixture(autouse=True)
def route_sync_to_test_server(
    monkeypatch: pytest.MonkeyPatch, web_client: FlaskClient, clock: SteppingClock
) -> None:
    """Make the CLI's sync clients use the test server and shared clock."""

    def _create(config: Config) -> SyncClient:
        return create_sync_client(config, session=FlaskSession(web_client), clock=clock)

    monkeypatch.setattr(cli, "create_sync_client", _create)


@pytest.fixture
def device_dir(tmp_path: Path) -> Path:
    """Config directory of a device configured for the test server."""
    return configure_device(tmp_path / "device-a")


@pytest.fixture
def other_device_dir(tmp_path: Path) -> Path:
    return configure_device(tmp_path / "device-b")


@pytest.fixture
def run_cli(capsys: pytest.CaptureFixture[str]) -> CliRunner:
    """Run a CLI command and return (exit_code, stdout, stderr)."""

    def _run(config_dir: Path, *argv: str) -> Tuple[int, str, str]:
        parser = create_parser()
        args = parser.parse_args(["-d", str(config_dir), "cli", *argv])
        exit_code = cli.run(args.config_dir, args)
        captured = capsys.readouterr()
        return exit_code, captured.out, captured.err

    return _run
