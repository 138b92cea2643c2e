"""Unit tests for field-by-field merging of conflicting entries."""

from __future__ import annotations

from wordsync.core.conflicts import merge_entries

from helpers import make_entry


def test_local_fields_win() -> None:
    local = make_entry("x", english="building").stamped("2024-01-01T00:00:02.000Z", "client-b")
    remote = make_entry("x", english="home").stamped("2024-01-01T00:00:01.000Z", "client-a")

    merged = merge_entries(local, remote)

    assert merged.english == "building"
    assert merged.updated_at == "2024-01-01T00:00:02.000Z"
    assert merged.client_id == "client-b"


def test_empty_local_fields_take_remote() -> None:
    local = make_entry("x", example_de="", notes="   ")
    remote = make_entry("x", example_de="Das Haus ist alt.", notes="A1")

    merged = merge_entries(local, remote)

    assert merged.example_de == "Das Haus ist alt."
    assert merged.notes == "A1"


def test_missing_local_metadata_falls_back_to_remote() -> None:
    local = make_entry("x")
    remote = make_entry("x").stamped("2024-01-01T00:00:01.000Z", "client-a")

    merged = merge_entries(local, remote)

    assert merged.updated_at == "2024-01-01T00:00:01.000Z"
    assert merged.client_id == "client-a"


def test_extra_keys_are_combined() -> None:
    local = make_entry("x", extra={"tags": ["mine"], "level": ""})
    remote = make_entry("x", extra={"level": "A1", "deck": "default"})

    merged = merge_entries(local, remote)

    assert merged.extra == {"tags": ["mine"], "level": "A1", "deck": "default"}
