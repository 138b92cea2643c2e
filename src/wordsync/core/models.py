"""Data models for wordsync.

This module defines the immutable dataclasses exchanged by the entry store,
the sync client and the sync server: Entry, Tombstone, Conflict, and the
SyncRequest/SyncResponse envelopes.

Wire payloads use camelCase keys; Python attributes use snake_case. Decoding
always goes through ``from_dict``, which validates shape and normalizes
timestamps, so a model instance is trusted from then on.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from uuid6 import uuid7

from .validation import (
    ValidationError,
    validate_choice,
    validate_entry_id,
    validate_id_list,
    validate_list,
    validate_object,
    validate_optional_string,
    validate_optional_timestamp,
    validate_timestamp,
)

PARTS_OF_SPEECH = ["noun", "verb", "adj", "other"]
ARTICLES = ["der", "die", "das", None]
ENTRY_SOURCES = ["manual", "llm"]

INLINE_MEDIA_PREFIX = "data:"

# attribute name -> wire key, in wire order
ENTRY_FIELDS: Dict[str, str] = {
    "id": "id",
    "german": "german",
    "english": "english",
    "part_of_speech": "partOfSpeech",
    "article": "article",
    "example_de": "exampleDe",
    "example_en": "exampleEn",
    "notes": "notes",
    "pronunciation": "pronunciation",
    "image_prompt": "imagePrompt",
    "image_url": "imageUrl",
    "audio_url": "audioUrl",
    "source": "source",
    "llm_model": "llmModel",
    "llm_generated_at": "llmGeneratedAt",
    "updated_at": "updatedAt",
    "client_id": "clientId",
}

MEDIA_FIELDS = ("image_url", "audio_url")

# Fields that describe the word itself, as opposed to sync metadata
CONTENT_FIELDS = tuple(
    name for name in ENTRY_FIELDS if name not in ("id", "updated_at", "client_id")
)


def new_entry_id() -> str:
    """Generate a new, time-ordered entry identifier (UUID7 hex)."""
    return uuid7().hex


class ConflictType(Enum):
    """Types of sync conflicts."""

    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Entry:
    """A vocabulary flashcard.

    Attributes:
        id: Stable identifier for the lifetime of the record
        german: The German word or phrase
        english: Translation
        part_of_speech: One of noun, verb, adj, other
        article: der/die/das for nouns, None otherwise
        example_de: German example sentence
        example_en: English example sentence
        notes: Free-text notes
        pronunciation: Pronunciation hint
        image_prompt: Prompt used to generate the card image
        image_url: Hosted image URL, or an inline data: URL before upload
        audio_url: Hosted audio URL, or an inline data: URL before upload
        source: "manual" or "llm"
        llm_model: Model that generated the card, if any
        llm_generated_at: When the card was generated, if any
        updated_at: When the entry was last mutated (canonical UTC string)
        client_id: Device that produced the last mutation
        extra: Unknown wire keys, preserved verbatim
    """

    id: str
    german: str = ""
    english: str = ""
    part_of_speech: str = "other"
    article: Optional[str] = None
    example_de: str = ""
    example_en: str = ""
    notes: Optional[str] = None
    pronunciation: Optional[str] = None
    image_prompt: Optional[str] = None
    image_url: Optional[str] = None
    audio_url: Optional[str] = None
    source: str = "manual"
    llm_model: Optional[str] = None
    llm_generated_at: Optional[str] = None
    updated_at: Optional[str] = None
    client_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict, hash=False)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the camelCase wire format."""
        data: Dict[str, Any] = dict(self.extra)
        for attr, key in ENTRY_FIELDS.items():
            data[key] = getattr(self, attr)
        return data

    @classmethod
    def from_dict(cls, data: Any, field_name: str = "entry") -> Entry:
        """Decode and validate an entry from its wire format.

        Raises:
            ValidationError: If the payload does not have the shape of an entry
        """
        data = validate_object(data, field_name)
        try:
            values: Dict[str, Any] = {
                "id": validate_entry_id(data.get("id"), "id"),
                "german": validate_optional_string(data.get("german"), "german") or "",
                "english": validate_optional_string(data.get("english"), "english") or "",
                "part_of_speech": validate_choice(
                    data.get("partOfSpeech", "other"), "partOfSpeech", PARTS_OF_SPEECH
                ),
                "article": validate_choice(data.get("article"), "article", ARTICLES),
                "example_de": validate_optional_string(data.get("exampleDe"), "exampleDe") or "",
                "example_en": validate_optional_string(data.get("exampleEn"), "exampleEn") or "",
                "source": validate_choice(data.get("source", "manual"), "source", ENTRY_SOURCES),
                "llm_generated_at": validate_optional_timestamp(
                    data.get("llmGeneratedAt"), "llmGeneratedAt"
                ),
                "updated_at": validate_optional_timestamp(data.get("updatedAt"), "updatedAt"),
            }
            for attr in ("notes", "pronunciation", "image_prompt", "image_url",
                         "audio_url", "llm_model", "client_id"):
                key = ENTRY_FIELDS[attr]
                values[attr] = validate_optional_string(data.get(key), key)
        except ValidationError as e:
            raise ValidationError(f"{field_name}.{e.field}", e.message) from None

        known = set(ENTRY_FIELDS.values())
        values["extra"] = {k: v for k, v in data.items() if k not in known}
        return cls(**values)

    def stamped(self, updated_at: str, client_id: Optional[str]) -> Entry:
        """Return a copy carrying new sync metadata."""
        return replace(self, updated_at=updated_at, client_id=client_id)

    def has_inline_media(self) -> bool:
        """Check whether any media field holds an inline data: payload."""
        return any(
            isinstance(getattr(self, name), str)
            and getattr(self, name).startswith(INLINE_MEDIA_PREFIX)
            for name in MEDIA_FIELDS
        )

    def without_inline_media(self) -> Entry:
        """Return a copy with inline media payloads replaced by None."""
        if not self.has_inline_media():
            return self
        changes = {}
        for name in MEDIA_FIELDS:
            value = getattr(self, name)
            if isinstance(value, str) and value.startswith(INLINE_MEDIA_PREFIX):
                changes[name] = None
        return replace(self, **changes)


@dataclass(frozen=True)
class Tombstone:
    """Marker recording that an entry was deleted."""

    id: str
    deleted_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "deletedAt": self.deleted_at}

    @classmethod
    def from_dict(cls, data: Any) -> Tombstone:
        data = validate_object(data, "tombstone")
        return cls(
            id=validate_entry_id(data.get("id"), "tombstone.id"),
            deleted_at=validate_timestamp(data.get("deletedAt"), "tombstone.deletedAt"),
        )


@dataclass(frozen=True)
class Conflict:
    """A concurrent edit detected during one merge call.

    Attributes:
        id: Entry ID the conflict is about
        type: UPDATE (both sides edited) or DELETE (deleted here, edited there)
        local: The value this device proposed (None for a delete conflict)
        remote: The authoritative value at merge time (None if absent)
    """

    id: str
    type: ConflictType
    local: Optional[Entry] = None
    remote: Optional[Entry] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "local": self.local.to_dict() if self.local else None,
            "remote": self.remote.to_dict() if self.remote else None,
        }

    @classmethod
    def from_dict(cls, data: Any, field_name: str = "conflict") -> Conflict:
        data = validate_object(data, field_name)
        type_value = validate_choice(
            data.get("type"), f"{field_name}.type", [t.value for t in ConflictType]
        )
        local = data.get("local")
        remote = data.get("remote")
        return cls(
            id=validate_entry_id(data.get("id"), f"{field_name}.id"),
            type=ConflictType(type_value),
            local=Entry.from_dict(local, f"{field_name}.local") if local is not None else None,
            remote=Entry.from_dict(remote, f"{field_name}.remote") if remote is not None else None,
        )


def _decode_entries(value: Any, field_name: str) -> List[Entry]:
    items = validate_list(value, field_name)
    return [Entry.from_dict(item, f"{field_name}[{i}]") for i, item in enumerate(items)]


@dataclass
class SyncRequest:
    """Outgoing delta sent by a client."""

    client_id: str
    since: Optional[str] = None
    entries: List[Entry] = field(default_factory=list)
    deleted_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clientId": self.client_id,
            "since": self.since,
            "entries": [e.to_dict() for e in self.entries],
            "deletedIds": list(self.deleted_ids),
        }

    @classmethod
    def from_dict(cls, data: Any) -> SyncRequest:
        """Decode a sync request body.

        Raises:
            ValidationError: If entries/deletedIds are not arrays or any item
                is malformed
        """
        data = validate_object(data, "body")
        return cls(
            client_id=validate_entry_id(data.get("clientId"), "clientId"),
            since=validate_optional_timestamp(data.get("since"), "since"),
            entries=_decode_entries(data.get("entries"), "entries"),
            deleted_ids=validate_id_list(data.get("deletedIds"), "deletedIds"),
        )


@dataclass
class SyncResponse:
    """Remote delta returned by the server."""

    server_time: str
    entries: List[Entry] = field(default_factory=list)
    deleted_ids: List[str] = field(default_factory=list)
    conflicts: List[Conflict] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entries": [e.to_dict() for e in self.entries],
            "deletedIds": list(self.deleted_ids),
            "serverTime": self.server_time,
            "conflicts": [c.to_dict() for c in self.conflicts],
        }

    @classmethod
    def from_dict(cls, data: Any) -> SyncResponse:
        data = validate_object(data, "response")
        conflicts = validate_list(data.get("conflicts", []), "conflicts")
        return cls(
            server_time=validate_timestamp(data.get("serverTime"), "serverTime"),
            entries=_decode_entries(data.get("entries"), "entries"),
            deleted_ids=validate_id_list(data.get("deletedIds"), "deletedIds"),
            conflicts=[
                Conflict.from_dict(c, f"conflicts[{i}]") for i, c in enumerate(conflicts)
            ],
        )
