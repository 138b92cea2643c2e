"""Sync server for wordsync.

The server is the authoritative merge point shared by every device. A client
posts its delta (entries changed since its watermark plus pending deletions);
the server merges it entry by entry with last-writer-wins, detects concurrent
edits, keeps tombstones, and answers with everything it has written since the
client's watermark.

Sync Protocol:
    POST /api/words/sync
        {"clientId", "since", "entries", "deletedIds"}
        -> {"entries", "deletedIds", "serverTime", "conflicts"}
    GET /api/words
        -> flat array of the live collection (bulk export)

Concurrency is judged against the requesting client's ``since`` only, not
per-entry version vectors. With three or more devices interleaving edits
across different watermarks this can report a conflict for edits that were
not truly concurrent; it never misses one bounded by ``since``.
"""

from __future__ import annotations

import functools
import hmac
import logging
from typing import Any, Callable, List, Optional, Tuple

from flask import Blueprint, jsonify, request

from .models import Conflict, ConflictType, Entry, SyncRequest, SyncResponse
from .server_store import ServerStore, ServerStoreError
from .timestamps import Clock, is_after, same_instant, utc_now
from .validation import ValidationError

logger = logging.getLogger(__name__)


def api_endpoint(func: Callable) -> Callable:
    """Decorator for consistent API error handling.

    Catches ValidationError (400), ServerStoreError (500) and any other
    Exception (500) with JSON error responses and logging.
    """
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except ValidationError as e:
            logger.warning(f"Rejected request in {func.__name__}: {e}")
            return jsonify({"error": f"Invalid {e.field}: {e.message}"}), 400
        except ServerStoreError as e:
            logger.error(f"Storage failure in {func.__name__}: {e}")
            return jsonify({"error": "Storage failure", "details": str(e)}), 500
        except Exception as e:
            logger.error(f"Error in {func.__name__}: {e}")
            return jsonify({"error": "Server error", "details": str(e)}), 500
    return wrapper


def is_concurrent_edit(existing: Entry, incoming: Entry, since: Optional[str]) -> bool:
    """Check whether both sides touched an entry after their last agreement."""
    return (
        since is not None
        and is_after(existing.updated_at, since)
        and is_after(incoming.updated_at, since)
        and not same_instant(incoming.updated_at, existing.updated_at)
    )


def merge_sync_request(store: ServerStore, sync_request: SyncRequest, now: str) -> SyncResponse:
    """Merge a client's delta into the authoritative collection.

    Args:
        store: The shared server collection
        sync_request: Decoded client delta
        now: Merge-time wall clock, becomes serverTime and tombstone deletedAt

    Returns:
        SyncResponse with the post-merge delta since the client's watermark
    """
    since = sync_request.since
    conflicts: List[Conflict] = []
    applied = 0
    deleted = 0
    acknowledged: List[str] = []

    for incoming in sync_request.entries:
        if incoming.updated_at is None:
            incoming = incoming.stamped(now, incoming.client_id or sync_request.client_id)

        existing = store.get_entry(incoming.id)
        if existing is None:
            store.put_entry(incoming, now)
            store.clear_tombstone(incoming.id)
            applied += 1
            continue

        if is_concurrent_edit(existing, incoming, since):
            logger.info(
                f"Update conflict on {incoming.id}: incoming {incoming.updated_at} "
                f"vs existing {existing.updated_at} (since {since})"
            )
            conflicts.append(Conflict(
                id=incoming.id, type=ConflictType.UPDATE, local=incoming, remote=existing,
            ))
            continue

        if not is_after(incoming.updated_at, existing.updated_at):
            # Existing is as new or newer; ties favour the existing record
            continue

        store.put_entry(incoming, now)
        store.clear_tombstone(incoming.id)
        applied += 1

    for entry_id in sync_request.deleted_ids:
        existing = store.get_entry(entry_id)
        if existing is None:
            acknowledged.append(entry_id)
            continue

        if since is not None and is_after(existing.updated_at, since):
            logger.info(
                f"Delete conflict on {entry_id}: edited at {existing.updated_at} "
                f"after since {since}"
            )
            conflicts.append(Conflict(
                id=entry_id, type=ConflictType.DELETE, local=None, remote=existing,
            ))
            continue

        store.delete_entry(entry_id)
        store.put_tombstone(entry_id, now)
        acknowledged.append(entry_id)
        deleted += 1

    entries = store.get_entries_changed_since(since)
    deleted_ids: List[str] = []
    if since is not None:
        deleted_ids = [t.id for t in store.get_tombstones_since(since)]
    for entry_id in acknowledged:
        if entry_id not in deleted_ids:
            deleted_ids.append(entry_id)

    logger.info(
        f"Merged sync from {sync_request.client_id}: {applied} applied, {deleted} deleted, "
        f"{len(conflicts)} conflicts; returning {len(entries)} entries, "
        f"{len(deleted_ids)} deletions"
    )
    return SyncResponse(
        server_time=now,
        entries=entries,
        deleted_ids=deleted_ids,
        conflicts=conflicts,
    )


def is_authorized(auth_token: Optional[str], header: Optional[str]) -> bool:
    """Check a bearer Authorization header against the configured token."""
    if not auth_token:
        return True
    return hmac.compare_digest(header or "", f"Bearer {auth_token}")


def create_sync_blueprint(
    store: ServerStore,
    auth_token: Optional[str] = None,
    clock: Clock = utc_now,
) -> Blueprint:
    """Create Flask blueprint for the word sync endpoints.

    Args:
        store: Server collection shared by all requests
        auth_token: Bearer token required on every request (None = open)
        clock: Server wall clock

    Returns:
        Flask Blueprint mounted at /api/words
    """
    words_bp = Blueprint("words", __name__, url_prefix="/api/words")

    @words_bp.before_request
    def require_token() -> Optional[Tuple[Any, int]]:
        if request.method == "OPTIONS":
            return None
        if not is_authorized(auth_token, request.headers.get("Authorization")):
            logger.warning(f"Unauthorized {request.method} {request.path} from {request.remote_addr}")
            return jsonify({"error": "Unauthorized"}), 401
        return None

    @words_bp.route("/sync", methods=["POST"])
    @api_endpoint
    def sync() -> Tuple[Any, int]:
        """Merge a client delta and return the remote delta.

        Request body:
            {
                "clientId": "...",
                "since": "2024-01-01T00:00:00.000Z" | null,
                "entries": [...],
                "deletedIds": [...]
            }

        Response:
            {
                "entries": [...],
                "deletedIds": [...],
                "serverTime": "...",
                "conflicts": [{"id", "type", "local", "remote"}]
            }
        """
        data = request.get_json(silent=True)
        if data is None:
            logger.warning("Sync rejected: missing or invalid JSON body")
            return jsonify({"error": "Invalid JSON payload."}), 400

        sync_request = SyncRequest.from_dict(data)
        logger.debug(
            f"Sync from {sync_request.client_id}: {len(sync_request.entries)} entries, "
            f"{len(sync_request.deleted_ids)} deletions since {sync_request.since}"
        )
        response = merge_sync_request(store, sync_request, clock())
        return jsonify(response.to_dict()), 200

    @words_bp.route("", methods=["GET"])
    @api_endpoint
    def list_words() -> Tuple[Any, int]:
        """Return the full live collection as a flat array."""
        entries = store.get_all_entries()
        return jsonify([e.to_dict() for e in entries]), 200

    return words_bp
