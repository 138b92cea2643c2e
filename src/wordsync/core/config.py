"""Configuration management for wordsync.

This module handles loading and saving application configuration to/from a
JSON file. The config directory can be customized via CLI argument; a few
settings can be overridden with environment variables:

    WORD_SYNC_URL        sync server base URL (client)
    WORD_SYNC_TOKEN      bearer token (client sends it, server requires it)
    WORD_SYNC_PORT       sync server port
    WORD_SYNC_DATA_PATH  sync server database file
    WORD_SYNC_TIMEOUT    client request timeout in seconds
"""

from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from uuid6 import uuid7

from .validation import ValidationError

logger = logging.getLogger(__name__)

__all__ = ["Config"]

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "wordsync"
DEFAULT_SERVER_PORT = 8787
DEFAULT_TIMEOUT = 30.0
DEFAULT_DEBOUNCE_SECONDS = 1.2


class Config:
    """Manages application configuration stored in JSON format.

    Attributes:
        config_dir: Path to the configuration directory
        config_file: Path to config.json
        config_data: Parsed configuration
    """

    def __init__(self, config_dir: Optional[Path] = None) -> None:
        """Initialize configuration manager.

        Args:
            config_dir: Custom config directory path. If None, uses ~/.config/wordsync/
        """
        self.config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_file = self.config_dir / "config.json"
        self.config_data = self.load_config()

    def _default_config(self) -> Dict[str, Any]:
        return {
            "device_id": uuid7().hex,
            "device_name": os.uname().nodename if hasattr(os, "uname") else "wordsync",
            "storage_dir": str(self.config_dir / "storage"),
            "sync": {
                "server_url": None,
                "token": None,
                "timeout_seconds": DEFAULT_TIMEOUT,
                "debounce_seconds": DEFAULT_DEBOUNCE_SECONDS,
            },
            "server": {
                "port": DEFAULT_SERVER_PORT,
                "database_file": str(self.config_dir / "word-entries.db"),
                "auth_token": None,
            },
        }

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from file, creating it with defaults if missing."""
        defaults = self._default_config()
        if not self.config_file.exists():
            self.save_config(defaults)
            logger.info(f"Created default config at {self.config_file}")
            return defaults

        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                loaded = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read {self.config_file}, using defaults: {e}")
            return defaults
        if not isinstance(loaded, dict):
            logger.warning(f"{self.config_file} is not a JSON object, using defaults")
            return defaults

        merged = copy.deepcopy(defaults)
        for key, value in loaded.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key].update(value)
            else:
                merged[key] = value
        if "device_id" not in loaded:
            # Persist the generated ID so it stays stable for the device lifetime
            self.save_config(merged)
        return merged

    def save_config(self, config: Dict[str, Any]) -> None:
        """Save configuration to file."""
        with open(self.config_file, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a top-level configuration value."""
        value = self.config_data.get(key)
        return value if value is not None else default

    def set(self, key: str, value: Any) -> None:
        """Set a top-level configuration value and save to file."""
        self.config_data[key] = value
        self.save_config(self.config_data)

    def get_config_dir(self) -> Path:
        """Get the configuration directory path."""
        return self.config_dir

    # ===== Device =====

    def get_device_id_hex(self) -> str:
        """Get this device's ID as a hex string."""
        return self.config_data["device_id"]

    def get_device_name(self) -> str:
        return self.config_data.get("device_name") or "wordsync"

    def get_storage_dir(self) -> Path:
        """Get the directory backing the local entry store."""
        return Path(self.config_data.get("storage_dir") or self.config_dir / "storage")

    # ===== Sync client =====

    def get_sync_config(self) -> Dict[str, Any]:
        """Get sync client configuration with environment overrides applied."""
        sync = dict(self.config_data.get("sync", {}))
        sync["server_url"] = self.get_server_url()
        sync["token"] = self.get_sync_token()
        sync["timeout_seconds"] = self.get_request_timeout()
        sync["debounce_seconds"] = self.get_debounce_seconds()
        return sync

    def get_server_url(self) -> Optional[str]:
        return os.environ.get("WORD_SYNC_URL") or self.config_data["sync"].get("server_url")

    def set_server_url(self, url: Optional[str]) -> None:
        self.config_data["sync"]["server_url"] = url
        self.save_config(self.config_data)

    def get_sync_token(self) -> Optional[str]:
        return os.environ.get("WORD_SYNC_TOKEN") or self.config_data["sync"].get("token")

    def set_sync_token(self, token: Optional[str]) -> None:
        self.config_data["sync"]["token"] = token
        self.save_config(self.config_data)

    def get_request_timeout(self) -> float:
        raw = os.environ.get("WORD_SYNC_TIMEOUT") or self.config_data["sync"].get("timeout_seconds")
        return self._positive_number(raw, "timeout_seconds", DEFAULT_TIMEOUT)

    def get_debounce_seconds(self) -> float:
        raw = self.config_data["sync"].get("debounce_seconds")
        return self._positive_number(raw, "debounce_seconds", DEFAULT_DEBOUNCE_SECONDS)

    # ===== Sync server =====

    def get_server_port(self) -> int:
        raw = os.environ.get("WORD_SYNC_PORT") or self.config_data["server"].get("port")
        try:
            port = int(raw) if raw is not None else DEFAULT_SERVER_PORT
        except (TypeError, ValueError):
            raise ValidationError("port", f"must be an integer, got {raw!r}") from None
        if not 1 <= port <= 65535:
            raise ValidationError("port", f"must be between 1 and 65535, got {port}")
        return port

    def get_server_database_file(self) -> Path:
        raw = os.environ.get("WORD_SYNC_DATA_PATH") or self.config_data["server"].get("database_file")
        return Path(raw) if raw else self.config_dir / "word-entries.db"

    def get_auth_token(self) -> Optional[str]:
        """Get the token the server requires (None = no auth)."""
        return os.environ.get("WORD_SYNC_TOKEN") or self.config_data["server"].get("auth_token")

    @staticmethod
    def _positive_number(raw: Any, field: str, default: float) -> float:
        if raw is None or raw == "":
            return default
        try:
            value = float(raw)
        except (TypeError, ValueError):
            raise ValidationError(field, f"must be a number, got {raw!r}") from None
        if value <= 0:
            raise ValidationError(field, f"must be positive, got {value}")
        return value
