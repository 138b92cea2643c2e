"""Authoritative entry collection for the sync server.

Live entries and tombstones are kept in two SQLite tables. Each entry is
stored as its full JSON wire document next to its ``updated_at`` and the
server time it was last written (``synced_at``). Deltas are selected by
``synced_at``, so an edit made offline reaches devices whose watermark is
already past its ``updated_at``. Timestamps are canonical UTC strings, so SQL
string comparison is chronological comparison.

Each method is a single statement (or a short read-then-write for one ID)
guarded by a lock around the shared connection. There are no transactions
spanning several entries.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import List, Optional, Union

from .models import Entry, Tombstone

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS entries (
    id TEXT PRIMARY KEY,
    updated_at TEXT NOT NULL,
    synced_at TEXT NOT NULL,
    client_id TEXT,
    payload TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_entries_synced_at ON entries(synced_at);
CREATE TABLE IF NOT EXISTS tombstones (
    id TEXT PRIMARY KEY,
    deleted_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_tombstones_deleted_at ON tombstones(deleted_at);
"""


class ServerStoreError(Exception):
    """Raised when the underlying storage fails."""


class ServerStore:
    """SQLite-backed collection shared by every syncing device."""

    def __init__(self, db_path: Union[Path, str]) -> None:
        """Open (and create if needed) the server database.

        Args:
            db_path: Path to the SQLite file, or ':memory:'
        """
        path_str = str(db_path)
        if path_str != ":memory:":
            Path(path_str).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(path_str, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(SCHEMA)
            self._conn.commit()
        except sqlite3.Error as e:
            raise ServerStoreError(f"Cannot open server database at {path_str}: {e}") from e
        logger.info(f"Opened server database at {path_str}")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _execute(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                cursor = self._conn.execute(sql, params)
                rows = cursor.fetchall()
                self._conn.commit()
                return rows
            except sqlite3.Error as e:
                self._conn.rollback()
                raise ServerStoreError(f"Database error: {e}") from e

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> Entry:
        return Entry.from_dict(json.loads(row["payload"]), f"stored[{row['id']}]")

    # ===== Entries =====

    def get_entry(self, entry_id: str) -> Optional[Entry]:
        rows = self._execute("SELECT id, payload FROM entries WHERE id = ?", (entry_id,))
        return self._row_to_entry(rows[0]) if rows else None

    def put_entry(self, entry: Entry, synced_at: str) -> None:
        """Insert or replace an entry.

        Args:
            entry: Entry to store, must carry updated_at
            synced_at: Server time of this write
        """
        if entry.updated_at is None:
            raise ValueError(f"Entry {entry.id} has no updated_at")
        self._execute(
            "INSERT INTO entries (id, updated_at, synced_at, client_id, payload) "
            "VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET updated_at = excluded.updated_at, "
            "synced_at = excluded.synced_at, client_id = excluded.client_id, "
            "payload = excluded.payload",
            (entry.id, entry.updated_at, synced_at, entry.client_id,
             json.dumps(entry.to_dict(), ensure_ascii=False)),
        )

    def delete_entry(self, entry_id: str) -> None:
        self._execute("DELETE FROM entries WHERE id = ?", (entry_id,))

    def get_all_entries(self) -> List[Entry]:
        """Get the whole live collection, most recently updated first."""
        rows = self._execute("SELECT id, payload FROM entries ORDER BY updated_at DESC, id")
        return [self._row_to_entry(r) for r in rows]

    def get_entries_changed_since(self, since: Optional[str]) -> List[Entry]:
        """Get entries the server wrote strictly after ``since`` (all when None)."""
        if since is None:
            return self.get_all_entries()
        rows = self._execute(
            "SELECT id, payload FROM entries WHERE synced_at > ? ORDER BY updated_at DESC, id",
            (since,),
        )
        return [self._row_to_entry(r) for r in rows]

    def count_entries(self) -> int:
        return self._execute("SELECT COUNT(*) AS n FROM entries")[0]["n"]

    # ===== Tombstones =====

    def put_tombstone(self, entry_id: str, deleted_at: str) -> None:
        """Write or refresh the tombstone for an ID."""
        self._execute(
            "INSERT INTO tombstones (id, deleted_at) VALUES (?, ?) "
            "ON CONFLICT(id) DO UPDATE SET deleted_at = excluded.deleted_at",
            (entry_id, deleted_at),
        )

    def clear_tombstone(self, entry_id: str) -> None:
        self._execute("DELETE FROM tombstones WHERE id = ?", (entry_id,))

    def get_tombstone(self, entry_id: str) -> Optional[Tombstone]:
        rows = self._execute("SELECT id, deleted_at FROM tombstones WHERE id = ?", (entry_id,))
        return Tombstone(rows[0]["id"], rows[0]["deleted_at"]) if rows else None

    def get_tombstones_since(self, since: str) -> List[Tombstone]:
        """Get tombstones written strictly after ``since``."""
        rows = self._execute(
            "SELECT id, deleted_at FROM tombstones WHERE deleted_at > ? ORDER BY deleted_at, id",
            (since,),
        )
        return [Tombstone(r["id"], r["deleted_at"]) for r in rows]
