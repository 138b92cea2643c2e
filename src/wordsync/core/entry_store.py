"""Local entry store for wordsync.

Owns this device's durable mapping of entry ID to Entry, kept newest-first
under a single key of a KeyValueStorage.

Local mutations (upsert, add, delete) stamp ``updated_at`` and ``client_id``;
entries arriving from the server are written as-is through apply_remote.

When a write exceeds the storage capacity the store degrades step by step
through DEGRADATION_LADDER: strip inline media, drop the oldest entry (one at
a time), clear everything. The write is retried after each step and each step
is logged as data loss. The sync state shares the storage and takes priority:
make_room sheds entries one step at a time until the state fits.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .kv_storage import KeyValueStorage, StorageCapacityError
from .models import Entry, new_entry_id
from .timestamps import Clock, is_after, parse_timestamp, utc_now
from .validation import ValidationError

logger = logging.getLogger(__name__)

STORAGE_KEY = "wordsync.entries"


@dataclass(frozen=True)
class DegradationStrategy:
    """One step of the storage degradation ladder.

    Attributes:
        name: Human-readable description, used in data-loss log lines
        apply: Pure function from entries to the entries to keep
        repeatable: Apply again while writes keep failing and it still changes something
    """

    name: str
    apply: Callable[[List[Entry]], List[Entry]]
    repeatable: bool = False


def strip_inline_media(entries: List[Entry]) -> List[Entry]:
    """Replace inline data: media payloads with None, keeping every entry."""
    return [e.without_inline_media() for e in entries]


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _age_key(entry: Entry) -> datetime:
    if entry.updated_at is None:
        return _EPOCH
    try:
        return parse_timestamp(entry.updated_at)
    except ValueError:
        return _EPOCH


def drop_oldest(entries: List[Entry]) -> List[Entry]:
    """Remove the single least recently updated entry.

    Ties go to the entry nearest the end of the newest-first list.
    """
    if not entries:
        return entries
    oldest_index = 0
    for i, entry in enumerate(entries):
        if _age_key(entry) <= _age_key(entries[oldest_index]):
            oldest_index = i
    return entries[:oldest_index] + entries[oldest_index + 1:]


def clear_entries(entries: List[Entry]) -> List[Entry]:
    """Drop everything."""
    return []


DEGRADATION_LADDER: Tuple[DegradationStrategy, ...] = (
    DegradationStrategy("strip inline media", strip_inline_media),
    DegradationStrategy("drop oldest entry", drop_oldest, repeatable=True),
    DegradationStrategy("clear all entries", clear_entries),
)


class EntryStore:
    """Durable, newest-first collection of this device's entries."""

    def __init__(
        self,
        storage: KeyValueStorage,
        client_id: str,
        clock: Clock = utc_now,
        ladder: Sequence[DegradationStrategy] = DEGRADATION_LADDER,
        storage_key: str = STORAGE_KEY,
    ) -> None:
        """Initialize entry store.

        Args:
            storage: Key-value persistence primitive
            client_id: This device's client ID, stamped on local mutations
            clock: Returns the current time as a canonical timestamp
            ladder: Degradation strategies applied on capacity failure
            storage_key: Key under which the entry list is stored
        """
        self.storage = storage
        self.client_id = client_id
        self.clock = clock
        self.ladder = tuple(ladder)
        self.storage_key = storage_key

    # ===== Reading =====

    def get_all(self) -> List[Entry]:
        """Get all entries, newest first.

        Entries persisted without ``updated_at`` are stamped with the current
        time and written back.
        """
        entries = self._load()
        missing = [e for e in entries if e.updated_at is None]
        if missing:
            now = self.clock()
            entries = [
                e.stamped(now, e.client_id) if e.updated_at is None else e
                for e in entries
            ]
            logger.info(f"Stamped {len(missing)} entries lacking updatedAt with {now}")
            entries = self._persist(entries)
        return entries

    def get(self, entry_id: str) -> Optional[Entry]:
        """Get a single entry by ID."""
        for entry in self.get_all():
            if entry.id == entry_id:
                return entry
        return None

    def changed_since(self, since: Optional[str]) -> List[Entry]:
        """Get entries updated strictly after ``since`` (all when None)."""
        entries = self.get_all()
        if since is None:
            return entries
        return [e for e in entries if is_after(e.updated_at, since)]

    def __len__(self) -> int:
        return len(self._load())

    # ===== Local mutations =====

    def upsert(self, entry: Entry) -> Entry:
        """Insert or replace an entry as a local mutation.

        Returns:
            The stored entry, carrying fresh updated_at/client_id
        """
        stamped = entry.stamped(self.clock(), self.client_id)
        self._persist(self._with_entries(self._load(), [stamped]))
        logger.debug(f"Upserted entry {stamped.id} at {stamped.updated_at}")
        return stamped

    def add(self, fields: Dict[str, Any]) -> Entry:
        """Create a new entry from wire-format content fields.

        Raises:
            ValidationError: If the fields do not describe a valid entry
        """
        return self.add_many([fields])[0]

    def add_many(self, drafts: Iterable[Dict[str, Any]]) -> List[Entry]:
        """Create several new entries, all stamped with the same time.

        The new entries are placed in front of the existing ones, in order.
        """
        now = self.clock()
        created = []
        for i, fields in enumerate(drafts):
            data = dict(fields)
            data["id"] = new_entry_id()
            data.pop("updatedAt", None)
            data.pop("clientId", None)
            entry = Entry.from_dict(data, f"entries[{i}]")
            created.append(entry.stamped(now, self.client_id))
        if created:
            self._persist(created + self._load())
            logger.info(f"Added {len(created)} new entries")
        return created

    def delete(self, entry_id: str) -> bool:
        """Remove an entry locally.

        The caller is responsible for recording the ID as a pending deletion.

        Returns:
            True if an entry was removed
        """
        entries = self._load()
        remaining = [e for e in entries if e.id != entry_id]
        if len(remaining) == len(entries):
            return False
        self._persist(remaining)
        logger.debug(f"Deleted entry {entry_id}")
        return True

    # ===== Remote changes =====

    def apply_remote(self, entry: Entry) -> None:
        """Write an entry received from the server without re-stamping it."""
        self.apply_remote_batch([entry], [])

    def apply_remote_batch(self, entries: List[Entry], deleted_ids: Iterable[str]) -> None:
        """Apply remote upserts and deletions in a single write."""
        deleted = set(deleted_ids)
        current = [e for e in self._load() if e.id not in deleted]
        if not entries and len(deleted) == 0:
            return
        self._persist(self._with_entries(current, entries))

    # ===== Persistence =====

    def make_room(self) -> bool:
        """Apply the first degradation step that still shrinks the stored entries.

        Called when another key of the shared storage does not fit.

        Returns:
            True if entries were shed, False if there was nothing left to shed
        """
        entries = self._load()
        for strategy in self.ladder:
            degraded = strategy.apply(entries)
            if degraded == entries:
                continue
            logger.warning(
                f"Data loss: making room in storage, applied '{strategy.name}' "
                f"({len(entries) - len(degraded)} entries dropped, {len(degraded)} kept)"
            )
            self._persist(degraded)
            return True
        return False

    @staticmethod
    def _with_entries(current: List[Entry], updates: List[Entry]) -> List[Entry]:
        """Replace entries in place by ID; unknown IDs go to the front."""
        by_id = {e.id: e for e in updates}
        result = []
        for entry in current:
            if entry.id in by_id:
                result.append(by_id.pop(entry.id))
            else:
                result.append(entry)
        new_entries = [e for e in updates if e.id in by_id]
        return new_entries + result

    def _load(self) -> List[Entry]:
        raw = self.storage.get_item(self.storage_key)
        if not raw:
            return []
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Stored entries are not valid JSON, ignoring them: {e}")
            return []
        if not isinstance(payload, list):
            logger.warning("Stored entries are not a list, ignoring them")
            return []

        entries = []
        for i, item in enumerate(payload):
            try:
                entries.append(Entry.from_dict(item, f"stored[{i}]"))
            except ValidationError as e:
                logger.warning(f"Skipping unreadable stored entry: {e}")
        return entries

    def _try_write(self, entries: List[Entry]) -> bool:
        payload = json.dumps([e.to_dict() for e in entries], ensure_ascii=False)
        try:
            self.storage.set_item(self.storage_key, payload)
            return True
        except StorageCapacityError as e:
            logger.warning(f"Entry store write failed: {e}")
            return False

    def _persist(self, entries: List[Entry]) -> List[Entry]:
        """Write entries, degrading through the ladder on capacity failure.

        Returns:
            The entries that were actually persisted
        """
        candidate = list(entries)
        if self._try_write(candidate):
            return candidate

        for strategy in self.ladder:
            while True:
                degraded = strategy.apply(candidate)
                if degraded == candidate:
                    break
                lost = len(candidate) - len(degraded)
                logger.warning(
                    f"Data loss: storage capacity exceeded, applied '{strategy.name}' "
                    f"({lost} entries dropped, {len(degraded)} kept)"
                )
                candidate = degraded
                if self._try_write(candidate):
                    return candidate
                if not strategy.repeatable:
                    break

        logger.error(
            f"Data loss: could not persist entries after exhausting degradation steps; "
            f"removing '{self.storage_key}'"
        )
        self.storage.remove_item(self.storage_key)
        return []
