"""Sync client for wordsync.

This module provides the device side of the sync protocol:
- Write-through local mutations followed by a debounced sync
- One sync cycle: send the local delta, apply the remote delta, advance the
  watermark to the server's clock
- Surfacing conflicts to the UI without resolving them, and holding the
  conflicting entries and deletions back until the user decides

At most one cycle is in flight per client. A trigger that arrives while a
cycle is running is coalesced into a single follow-up cycle.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Set

import requests

from .config import Config
from .entry_store import EntryStore
from .kv_storage import FileStorage
from .models import Conflict, ConflictType, Entry, SyncRequest, SyncResponse
from .scheduler import DEFAULT_DEBOUNCE_SECONDS, DebounceScheduler, TimerFactory
from .sync_state import SyncState, SyncStateStore
from .timestamps import Clock, is_after, utc_now
from .validation import ValidationError

logger = logging.getLogger(__name__)

SYNC_PATH = "/api/words/sync"
DEFAULT_TIMEOUT = 30


class SyncAuthorizationError(Exception):
    """The server rejected this client's credentials."""


@dataclass
class SyncResult:
    """Result of one sync cycle."""

    success: bool
    pushed: int = 0  # Entries sent to the server
    pulled: int = 0  # Remote entries applied locally
    deleted: int = 0  # Local entries removed by remote deletions
    conflicts: List[Conflict] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    server_time: Optional[str] = None
    coalesced: bool = False  # Folded into a cycle already in flight


class SyncClient:
    """Client for syncing this device's entries with the sync server.

    Handles the write-through mutation API, the debounce scheduler, the
    request/response cycle, and the outstanding conflict list.
    """

    def __init__(
        self,
        store: EntryStore,
        state_store: SyncStateStore,
        server_url: Optional[str],
        token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[Any] = None,
        on_conflicts: Optional[Callable[[List[Conflict]], None]] = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        timer_factory: Optional[TimerFactory] = None,
    ) -> None:
        """Initialize sync client.

        Args:
            store: This device's entry store
            state_store: This device's sync state
            server_url: Base URL of the sync server (None disables sync)
            token: Bearer token sent with every request
            timeout: Request timeout in seconds
            session: Object with a requests-style post() (a new
                requests.Session by default)
            on_conflicts: Called with the outstanding conflicts whenever a
                cycle reports new ones
            debounce_seconds: Debounce window for post-mutation syncs
            timer_factory: Timer factory for the debounce scheduler
        """
        self.store = store
        self.state_store = state_store
        self.server_url = server_url.rstrip("/") if server_url else None
        self.token = token
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()
        self.on_conflicts = on_conflicts
        self.halted = False
        if state_store.make_room is None and state_store.storage is store.storage:
            state_store.make_room = store.make_room

        scheduler_kwargs: Dict[str, Any] = {"delay": debounce_seconds}
        if timer_factory is not None:
            scheduler_kwargs["timer_factory"] = timer_factory
        self.scheduler = DebounceScheduler(self.sync, **scheduler_kwargs)

        self._state_lock = threading.Lock()
        self._in_flight = False
        self._resync_requested = False
        # Entries edited while a request was out; their updatedAt may predate serverTime
        self._carry_over: Set[str] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.server_url)

    @property
    def client_id(self) -> str:
        return self.state_store.client_id

    @property
    def conflicts(self) -> List[Conflict]:
        """Conflicts waiting for a user decision, persisted across restarts."""
        return self.state_store.load().conflicts

    # ===== Write-through mutations =====

    def save_entry(self, entry: Entry) -> Entry:
        """Store a local edit and schedule a sync."""
        stored = self.store.upsert(entry)
        self.request_sync()
        return stored

    def add_entry(self, fields: Dict[str, Any]) -> Entry:
        """Create a new entry and schedule a sync."""
        created = self.store.add(fields)
        self.request_sync()
        return created

    def delete_entry(self, entry_id: str) -> bool:
        """Record the deletion, delete the entry locally, and schedule a sync."""
        self.state_store.add_pending_deletes([entry_id])
        removed = self.store.delete(entry_id)
        self.request_sync()
        return removed

    # ===== Triggers =====

    def request_sync(self) -> None:
        """Start (or restart) the debounce window for a sync."""
        if not self.enabled:
            return
        if self.halted:
            logger.debug("Sync halted after authorization failure; not scheduling")
            return
        self.scheduler.schedule()

    def sync_on_startup(self) -> Optional[SyncResult]:
        """Run the startup sync, if sync is configured."""
        if not self.enabled:
            logger.info("No sync server configured; skipping startup sync")
            return None
        return self.sync()

    def shutdown(self) -> None:
        """Cancel any pending debounced sync."""
        self.scheduler.cancel()

    def reconfigure(self, server_url: Optional[str] = None, token: Optional[str] = None) -> None:
        """Update the server URL and/or token and lift an authorization halt."""
        if server_url is not None:
            self.server_url = server_url.rstrip("/") or None
        if token is not None:
            self.token = token
        if self.halted:
            logger.info("Sync client reconfigured; resuming sync")
        self.halted = False

    # ===== Sync cycle =====

    def sync(self) -> SyncResult:
        """Run a sync cycle now.

        If a cycle is already in flight, this call is coalesced: the running
        cycle is followed by exactly one more, and this call returns a result
        with ``coalesced`` set.
        """
        if not self.enabled:
            return SyncResult(success=False, errors=["No sync server configured"])
        if self.halted:
            return SyncResult(
                success=False,
                errors=["Sync halted after authorization failure; reconfigure the token"],
            )

        with self._state_lock:
            if self._in_flight:
                self._resync_requested = True
                logger.debug("Sync already in flight; coalescing into the next cycle")
                return SyncResult(success=False, coalesced=True)
            self._in_flight = True

        try:
            while True:
                result = self._run_cycle()
                with self._state_lock:
                    # Decide and release in one step so no trigger slips between
                    if not (self._resync_requested and result.success):
                        self._in_flight = False
                        self._resync_requested = False
                        return result
                    self._resync_requested = False
                logger.debug("Running coalesced follow-up sync")
        except Exception:
            with self._state_lock:
                self._in_flight = False
                self._resync_requested = False
            raise

    def _run_cycle(self) -> SyncResult:
        state = self.state_store.load()
        since = state.last_sync_at
        # Entries and deletions under an outstanding conflict wait for the user
        held = set(state.conflict_ids)
        outgoing = self.store.changed_since(since)
        if self._carry_over:
            sent = {e.id for e in outgoing}
            outgoing += [
                e for e in self.store.get_all()
                if e.id in self._carry_over and e.id not in sent
            ]
        outgoing = [e for e in outgoing if e.id not in held]
        pending = [i for i in state.pending_deleted_ids if i not in held]

        sync_request = SyncRequest(
            client_id=state.client_id,
            since=since,
            entries=outgoing,
            deleted_ids=pending,
        )
        logger.info(
            f"Starting sync: {len(outgoing)} entries, {len(pending)} deletions since {since}"
        )
        if held:
            logger.info(f"Holding back {len(held)} entries with unresolved conflicts")

        try:
            response = self._post(sync_request)
        except SyncAuthorizationError as e:
            self.halted = True
            self.scheduler.cancel()
            logger.error(f"Sync halted: {e}")
            return SyncResult(success=False, errors=[str(e)])
        except (requests.exceptions.RequestException, ValidationError, ValueError) as e:
            logger.warning(f"Sync failed, will retry on next trigger: {e}")
            return SyncResult(success=False, errors=[str(e)])

        # Read before applying the response so remote writes are not counted
        snapshot = {(e.id, e.updated_at) for e in outgoing}
        edited_in_flight = {
            e.id for e in self.store.changed_since(since)
            if (e.id, e.updated_at) not in snapshot and e.id not in held
        }

        result = self._apply_response(since, state, response)
        result.pushed = len(outgoing)
        logger.info(
            f"Sync complete: pushed={result.pushed}, pulled={result.pulled}, "
            f"deleted={result.deleted}, conflicts={len(result.conflicts)}"
        )

        self._carry_over = edited_in_flight
        if edited_in_flight:
            logger.info(f"{len(edited_in_flight)} entries changed during sync; scheduling another")
            self.request_sync()

        if response.conflicts and self.on_conflicts is not None:
            self.on_conflicts(self.conflicts)
        return result

    def _post(self, sync_request: SyncRequest) -> SyncResponse:
        """Send the delta and decode the response.

        Raises:
            SyncAuthorizationError: On 401
            requests.exceptions.RequestException: On transport failure or
                any other non-200 status
            ValidationError: If the response body is malformed
        """
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        response = self.session.post(
            f"{self.server_url}{SYNC_PATH}",
            json=sync_request.to_dict(),
            headers=headers,
            timeout=self.timeout,
        )

        if response.status_code == 401:
            raise SyncAuthorizationError("Sync server rejected the token (401)")
        if response.status_code != 200:
            detail = ""
            try:
                detail = f": {response.json().get('error', '')}"
            except (ValueError, AttributeError):
                pass
            raise requests.exceptions.HTTPError(
                f"Sync request failed ({response.status_code}){detail}"
            )
        return SyncResponse.from_dict(response.json())

    def _apply_response(
        self, since: Optional[str], state: SyncState, response: SyncResponse
    ) -> SyncResult:
        """Apply a remote delta, advance the watermark, and track conflicts.

        Conflicts reported by this response join the outstanding ones. An
        outstanding conflict picks up any newer remote version of its entry
        instead of letting it overwrite the local copy.
        """
        outstanding = {c.id: c for c in state.conflicts}
        reported = {c.id: c for c in response.conflicts}
        open_updates = {
            c.id for c in list(outstanding.values()) + list(reported.values())
            if c.type == ConflictType.UPDATE
        }

        local_by_id = {e.id: e for e in self.store.get_all()}
        refreshed: List[Conflict] = []
        cleared: List[str] = []

        accepted: List[Entry] = []
        for remote in response.entries:
            if remote.id in outstanding and remote.id not in reported:
                refreshed.append(replace(outstanding[remote.id], remote=remote))
            if remote.id in open_updates:
                continue
            local = local_by_id.get(remote.id)
            if local is None or is_after(remote.updated_at, local.updated_at):
                accepted.append(remote)

        removed: List[str] = []
        for entry_id in response.deleted_ids:
            if entry_id in reported:
                continue
            previous = outstanding.get(entry_id)
            if previous is not None and previous.type == ConflictType.DELETE:
                # Deleted on both sides, nothing left to decide
                cleared.append(entry_id)
            elif previous is not None:
                refreshed.append(replace(previous, remote=None))
                continue
            local = local_by_id.get(entry_id)
            if local is None:
                continue
            if since is None or not is_after(local.updated_at, since):
                removed.append(entry_id)

        self.store.apply_remote_batch(accepted, removed)

        returned_deletions = set(response.deleted_ids)
        acknowledged = [
            i for i in state.pending_deleted_ids
            if i in returned_deletions and i not in reported
        ]
        self.state_store.complete_cycle(
            response.server_time,
            acknowledged,
            reported=response.conflicts,
            refreshed=refreshed,
            cleared_ids=cleared,
        )

        return SyncResult(
            success=True,
            pulled=len(accepted),
            deleted=len(removed),
            conflicts=list(response.conflicts),
            server_time=response.server_time,
        )


def create_sync_client(
    config: Config,
    on_conflicts: Optional[Callable[[List[Conflict]], None]] = None,
    session: Optional[Any] = None,
    clock: Clock = utc_now,
) -> SyncClient:
    """Build a SyncClient over the file-backed local store named in config.

    Args:
        config: Config instance
        on_conflicts: Conflict callback for the UI
        session: Optional requests-style session
        clock: Clock stamping local mutations

    Returns:
        Ready-to-use SyncClient
    """
    storage = FileStorage(config.get_storage_dir())
    state_store = SyncStateStore(storage, client_id=config.get_device_id_hex())
    store = EntryStore(storage, state_store.client_id, clock=clock)
    return SyncClient(
        store,
        state_store,
        server_url=config.get_server_url(),
        token=config.get_sync_token(),
        timeout=config.get_request_timeout(),
        session=session,
        on_conflicts=on_conflicts,
        debounce_seconds=config.get_debounce_seconds(),
    )
