"""Persisted per-device sync state.

Holds the device's client ID, the lastSyncAt watermark, the IDs deleted
locally but not yet acknowledged by the server, and the conflicts still
waiting for a user decision.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from uuid6 import uuid7

from .kv_storage import KeyValueStorage, StorageCapacityError
from .models import Conflict
from .validation import (
    ValidationError,
    validate_id_list,
    validate_list,
    validate_optional_timestamp,
)

logger = logging.getLogger(__name__)

STATE_KEY = "wordsync.syncState"


@dataclass
class SyncState:
    """Sync bookkeeping for one device.

    Attributes:
        client_id: Generated once, stable for the device lifetime
        last_sync_at: Server time of the last successful sync (None = never)
        pending_deleted_ids: Locally deleted IDs awaiting server acknowledgement
        conflicts: Outstanding conflicts, one per entry ID, oldest first
    """

    client_id: str
    last_sync_at: Optional[str] = None
    pending_deleted_ids: List[str] = field(default_factory=list)
    conflicts: List[Conflict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "clientId": self.client_id,
            "lastSyncAt": self.last_sync_at,
            "pendingDeletedIds": list(self.pending_deleted_ids),
            "conflicts": [c.to_dict() for c in self.conflicts],
        }

    @property
    def conflict_ids(self) -> List[str]:
        return [c.id for c in self.conflicts]


def _decode_conflicts(value: object) -> List[Conflict]:
    items = validate_list(value, "conflicts")
    return [Conflict.from_dict(item, f"conflicts[{i}]") for i, item in enumerate(items)]


class SyncStateStore:
    """Loads and saves SyncState through a KeyValueStorage."""

    def __init__(
        self,
        storage: KeyValueStorage,
        client_id: Optional[str] = None,
        storage_key: str = STATE_KEY,
        make_room: Optional[Callable[[], bool]] = None,
    ) -> None:
        """Initialize the state store.

        Args:
            storage: Key-value persistence primitive
            client_id: Client ID to use when no state exists yet
                (a new UUID7 hex is generated if None)
            storage_key: Key under which the state is stored
            make_room: Frees space in the shared storage when the state
                does not fit; returns False once there is nothing left to free
        """
        self.storage = storage
        self.storage_key = storage_key
        self.make_room = make_room
        self._initial_client_id = client_id

    def load(self) -> SyncState:
        """Load the state, creating and saving it on first use."""
        raw = self.storage.get_item(self.storage_key)
        if raw:
            try:
                data = json.loads(raw)
                client_id = data.get("clientId")
                if not isinstance(client_id, str) or not client_id:
                    raise ValidationError("clientId", "missing from stored sync state")
                return SyncState(
                    client_id=client_id,
                    last_sync_at=validate_optional_timestamp(data.get("lastSyncAt"), "lastSyncAt"),
                    pending_deleted_ids=validate_id_list(
                        data.get("pendingDeletedIds", []), "pendingDeletedIds"
                    ),
                    conflicts=_decode_conflicts(data.get("conflicts", [])),
                )
            except (json.JSONDecodeError, AttributeError, ValidationError) as e:
                logger.warning(f"Stored sync state is unreadable, starting fresh: {e}")

        state = SyncState(client_id=self._initial_client_id or uuid7().hex)
        logger.info(f"Initialized sync state for client {state.client_id}")
        self.save(state)
        return state

    def save(self, state: SyncState) -> None:
        """Write the state, freeing entry storage first if it does not fit.

        Raises:
            StorageCapacityError: If the state does not fit even after
                make_room has nothing left to free
        """
        payload = json.dumps(state.to_dict())
        while True:
            try:
                self.storage.set_item(self.storage_key, payload)
                return
            except StorageCapacityError as e:
                if self.make_room is None or not self.make_room():
                    logger.error(f"Could not persist sync state: {e}")
                    raise
                logger.warning(f"Sync state did not fit, retrying after freeing space: {e}")

    @property
    def client_id(self) -> str:
        return self.load().client_id

    def add_pending_deletes(self, entry_ids: Iterable[str]) -> SyncState:
        """Record IDs deleted locally so the deletion reaches the server."""
        state = self.load()
        for entry_id in entry_ids:
            if entry_id not in state.pending_deleted_ids:
                state.pending_deleted_ids.append(entry_id)
        self.save(state)
        return state

    def discard_pending_delete(self, entry_id: str) -> SyncState:
        """Withdraw a local deletion intent."""
        state = self.load()
        if entry_id in state.pending_deleted_ids:
            state.pending_deleted_ids.remove(entry_id)
            self.save(state)
        return state

    def drop_conflict(self, entry_id: str) -> SyncState:
        """Forget the outstanding conflict on an entry once it is resolved."""
        state = self.load()
        remaining = [c for c in state.conflicts if c.id != entry_id]
        if len(remaining) != len(state.conflicts):
            state.conflicts = remaining
            self.save(state)
        return state

    def complete_cycle(
        self,
        server_time: str,
        acknowledged_ids: Iterable[str],
        reported: Iterable[Conflict] = (),
        refreshed: Iterable[Conflict] = (),
        cleared_ids: Iterable[str] = (),
    ) -> SyncState:
        """Record a successful sync cycle.

        Deletions recorded while the request was in flight stay pending, and
        conflicts resolved while it was in flight stay resolved.

        Args:
            server_time: The server's serverTime, the new watermark
            acknowledged_ids: Pending deletions the server has confirmed
            reported: Conflicts the server reported in this cycle
            refreshed: Outstanding conflicts carrying a newer remote version
            cleared_ids: Outstanding conflicts that no longer need a decision
        """
        state = self.load()
        if state.last_sync_at is not None and server_time < state.last_sync_at:
            logger.warning(
                f"Server time {server_time} is earlier than previous watermark "
                f"{state.last_sync_at}; adopting it anyway"
            )
        acknowledged = set(acknowledged_ids)
        state.last_sync_at = server_time
        state.pending_deleted_ids = [
            i for i in state.pending_deleted_ids if i not in acknowledged
        ]

        outstanding = {c.id: c for c in state.conflicts}
        for conflict in refreshed:
            if conflict.id in outstanding:
                outstanding[conflict.id] = conflict
        for entry_id in cleared_ids:
            outstanding.pop(entry_id, None)
        for conflict in reported:
            outstanding[conflict.id] = conflict
        state.conflicts = list(outstanding.values())

        self.save(state)
        return state

    def reset(self) -> SyncState:
        """Forget the watermark, pending deletions and conflicts, keeping the client ID."""
        state = SyncState(client_id=self.load().client_id)
        self.save(state)
        return state
