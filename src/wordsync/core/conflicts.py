"""Conflict resolution for wordsync.

This module handles:
- Listing the outstanding conflicts, persisted with the sync state
- Resolving a conflict (keep local, keep remote, or merge)
- Field-by-field merging of two versions of an entry

Conflict Types:
- update: this device and another device both edited the entry
- delete: this device deleted the entry while another device edited it

Resolutions are written into the entry store and picked up by the next sync
cycle; nothing here talks to the server directly.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from enum import Enum
from typing import Any, List, Optional, Tuple

from .models import CONTENT_FIELDS, Conflict, ConflictType, Entry
from .sync_client import SyncClient

logger = logging.getLogger(__name__)


class ResolutionChoice(Enum):
    """How to resolve a conflict."""

    KEEP_LOCAL = "local"
    KEEP_REMOTE = "remote"
    MERGE = "merge"  # Only for update conflicts


def _is_filled(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def merge_entries(local: Entry, remote: Entry) -> Entry:
    """Combine two versions of an entry field by field.

    Non-empty local fields win; empty local fields take the remote value.
    ``updated_at`` is whichever side has one (local preferred); callers stamp
    a fresh time before resubmitting.

    Args:
        local: This device's version
        remote: The server's version

    Returns:
        Merged entry carrying the local ID
    """
    values = {}
    for name in CONTENT_FIELDS:
        local_value = getattr(local, name)
        values[name] = local_value if _is_filled(local_value) else getattr(remote, name)

    extra = dict(remote.extra)
    extra.update({k: v for k, v in local.extra.items() if _is_filled(v)})

    updated_at = local.updated_at if local.updated_at is not None else remote.updated_at
    client_id = local.client_id if local.client_id is not None else remote.client_id
    return replace(local, extra=extra, updated_at=updated_at, client_id=client_id, **values)


class ConflictResolver:
    """Applies user decisions to the conflicts a SyncClient reported."""

    def __init__(self, client: SyncClient) -> None:
        """Initialize conflict resolver.

        Args:
            client: Sync client whose outstanding conflicts are resolved
        """
        self.client = client

    @property
    def outstanding(self) -> List[Conflict]:
        return list(self.client.conflicts)

    def get_conflict(self, entry_id: str) -> Optional[Conflict]:
        for conflict in self.client.conflicts:
            if conflict.id == entry_id:
                return conflict
        return None

    def resolve(self, entry_id: str, choice: ResolutionChoice) -> Optional[Entry]:
        """Resolve one outstanding conflict.

        Args:
            entry_id: ID of the conflicting entry
            choice: How to resolve

        Returns:
            The entry now stored locally, or None if the resolution deleted it

        Raises:
            KeyError: If no outstanding conflict has this ID
            ValueError: If the choice is not valid for the conflict type
        """
        conflict = self.get_conflict(entry_id)
        if conflict is None:
            raise KeyError(f"No outstanding conflict for entry {entry_id}")

        if choice == ResolutionChoice.KEEP_REMOTE:
            result = self._keep_remote(conflict)
        elif choice == ResolutionChoice.KEEP_LOCAL:
            result = self._keep_local(conflict)
        elif choice == ResolutionChoice.MERGE:
            if conflict.type != ConflictType.UPDATE:
                raise ValueError(f"Invalid choice for {conflict.type.value} conflict: {choice}")
            result = self._merge(conflict)
        else:
            raise ValueError(f"Invalid resolution choice: {choice}")

        self.client.state_store.drop_conflict(entry_id)
        logger.info(f"Resolved {conflict.type.value} conflict on {entry_id} with {choice.value}")
        self.client.request_sync()
        return result

    def resolve_all(self, choice: ResolutionChoice) -> int:
        """Resolve every outstanding conflict the same way.

        Merge falls back to keeping local for delete conflicts and for
        update conflicts whose remote side has since been deleted.

        Returns:
            Number of conflicts resolved
        """
        resolved = 0
        for conflict in self.outstanding:
            effective = choice
            if choice == ResolutionChoice.MERGE and (
                conflict.type != ConflictType.UPDATE or conflict.remote is None
            ):
                effective = ResolutionChoice.KEEP_LOCAL
            self.resolve(conflict.id, effective)
            resolved += 1
        return resolved

    def find_and_resolve_conflict(
        self, entry_id_prefix: str, choice: ResolutionChoice
    ) -> Tuple[bool, str, Optional[str]]:
        """Find a conflict by entry ID prefix and resolve it.

        Returns:
            Tuple of (success, conflict_type, error_message)
        """
        matches = [c for c in self.client.conflicts if c.id.startswith(entry_id_prefix)]
        if not matches:
            return False, "", f"No conflict found with ID starting with '{entry_id_prefix}'"
        if len(matches) > 1:
            return False, "", f"Ambiguous ID prefix '{entry_id_prefix}' matches {len(matches)} conflicts"

        conflict = matches[0]
        try:
            self.resolve(conflict.id, choice)
        except ValueError as e:
            return False, conflict.type.value, str(e)
        return True, conflict.type.value, None

    # ===== Resolutions =====

    def _keep_remote(self, conflict: Conflict) -> Optional[Entry]:
        store = self.client.store
        state_store = self.client.state_store
        if conflict.remote is None:
            store.delete(conflict.id)
            state_store.discard_pending_delete(conflict.id)
            return None
        store.apply_remote(conflict.remote)
        state_store.discard_pending_delete(conflict.id)
        return conflict.remote

    def _keep_local(self, conflict: Conflict) -> Optional[Entry]:
        store = self.client.store
        state_store = self.client.state_store
        # The entry may have been deleted here while the conflict was open
        deleted_here = conflict.id in state_store.load().pending_deleted_ids
        if conflict.type == ConflictType.DELETE or conflict.local is None or deleted_here:
            store.delete(conflict.id)
            state_store.add_pending_deletes([conflict.id])
            return None
        local = store.get(conflict.id) or conflict.local
        return store.upsert(local)

    def _merge(self, conflict: Conflict) -> Entry:
        store = self.client.store
        local = store.get(conflict.id) or conflict.local
        if local is None or conflict.remote is None:
            raise ValueError(f"Cannot merge conflict on {conflict.id}: missing a version")
        return store.upsert(merge_entries(local, conflict.remote))
