#!/usr/bin/env python3
"""Command-line interface for wordsync.

This module provides CLI commands for this device's local word list and for
syncing it with the sync server. Uses only core/ modules.

Commands:
    list-words                   List all local words
    show-word <id>               Show details of a specific word
    add-word <german> <english>  Create a new word
    delete-word <id>             Delete a word (synced on the next cycle)
    sync status                  Show device and sync state
    sync now [--resolve CHOICE]  Run a sync cycle, optionally resolving conflicts
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from wordsync.core.config import Config
from wordsync.core.conflicts import ConflictResolver, ResolutionChoice
from wordsync.core.models import ARTICLES, PARTS_OF_SPEECH, Conflict, ConflictType, Entry
from wordsync.core.sync_client import SyncClient, SyncResult, create_sync_client
from wordsync.core.validation import ValidationError


def format_entry(entry: Entry, format_type: str = "text") -> str:
    """Format a single entry for display.

    Args:
        entry: Entry to format
        format_type: Output format (text or json)

    Returns:
        Formatted entry string
    """
    if format_type == "json":
        return json.dumps(entry.to_dict(), indent=2, ensure_ascii=False)

    german = f"{entry.article} {entry.german}" if entry.article else entry.german
    lines = [
        f"ID: {entry.id}",
        f"German: {german}",
        f"English: {entry.english}",
        f"Part of speech: {entry.part_of_speech}",
    ]
    if entry.example_de:
        lines.append(f"Example: {entry.example_de}")
    if entry.example_en:
        lines.append(f"         {entry.example_en}")
    if entry.pronunciation:
        lines.append(f"Pronunciation: {entry.pronunciation}")
    if entry.notes:
        lines.append(f"Notes: {entry.notes}")
    lines.append(f"Updated: {entry.updated_at} by {entry.client_id}")
    return "\n".join(lines)


def format_conflict(conflict: Conflict) -> str:
    """Format a conflict as a one-line summary."""
    remote = conflict.remote
    if conflict.type == ConflictType.DELETE:
        edited = remote.updated_at if remote else "unknown time"
        return f"  [{conflict.id[:8]}] delete - deleted here, edited elsewhere at {edited}"
    local_word = conflict.local.german if conflict.local else "?"
    remote_word = remote.german if remote else "?"
    return f"  [{conflict.id[:8]}] update - '{local_word}' (here) vs '{remote_word}' (server)"


def find_entry(client: SyncClient, entry_id_prefix: str) -> Optional[Entry]:
    """Find a local entry by ID or unambiguous ID prefix.

    Raises:
        ValidationError: If the prefix matches more than one entry
    """
    matches = [e for e in client.store.get_all() if e.id.startswith(entry_id_prefix)]
    if len(matches) > 1:
        raise ValidationError("id", f"prefix '{entry_id_prefix}' matches {len(matches)} words")
    return matches[0] if matches else None


def cmd_list_words(client: SyncClient, args: argparse.Namespace) -> int:
    """List all local words.

    Args:
        client: SyncClient instance
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    entries = client.store.get_all()

    if args.format == "json":
        print(json.dumps([e.to_dict() for e in entries], indent=2, ensure_ascii=False))
        return 0

    if not entries:
        print("No words found.")
        return 0

    for entry in entries:
        german = f"{entry.article} {entry.german}" if entry.article else entry.german
        print(f"{entry.id[:8]}  {german} = {entry.english} ({entry.part_of_speech})")

    return 0


def cmd_show_word(client: SyncClient, args: argparse.Namespace) -> int:
    """Show details of a specific word.

    Args:
        client: SyncClient instance
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success, 1 if not found)
    """
    entry = find_entry(client, args.word_id)
    if entry is None:
        print(f"Error: Word {args.word_id} not found", file=sys.stderr)
        return 1

    print(format_entry(entry, args.format))
    return 0


def cmd_add_word(client: SyncClient, args: argparse.Namespace) -> int:
    """Create a new word.

    Args:
        client: SyncClient instance
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    fields: Dict[str, Any] = {
        "german": args.german,
        "english": args.english,
        "partOfSpeech": args.part_of_speech,
        "article": args.article,
        "exampleDe": args.example_de or "",
        "exampleEn": args.example_en or "",
        "notes": args.notes,
    }
    entry = client.add_entry(fields)

    if args.format == "json":
        print(format_entry(entry, "json"))
    else:
        print(f"Created word {entry.id}")
        if client.enabled:
            print("Run 'sync now' to push it to the server.")

    return 0


def cmd_delete_word(client: SyncClient, args: argparse.Namespace) -> int:
    """Delete a word.

    Args:
        client: SyncClient instance
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success, 1 if not found)
    """
    entry = find_entry(client, args.word_id)
    if entry is None:
        print(f"Error: Word {args.word_id} not found", file=sys.stderr)
        return 1

    client.delete_entry(entry.id)

    if args.format == "json":
        print(json.dumps({"id": entry.id, "deleted": True}))
    else:
        print(f"Deleted word {entry.id}")

    return 0


def cmd_sync_status(client: SyncClient, config: Config, args: argparse.Namespace) -> int:
    """Show sync status and device information.

    Args:
        client: SyncClient instance
        config: Config instance
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    state = client.state_store.load()
    status = {
        "device_id": config.get_device_id_hex(),
        "device_name": config.get_device_name(),
        "client_id": state.client_id,
        "server_url": client.server_url,
        "sync_enabled": client.enabled,
        "last_sync_at": state.last_sync_at,
        "pending_deletions": len(state.pending_deleted_ids),
        "outstanding_conflicts": len(state.conflicts),
        "local_words": len(client.store),
    }

    if args.format == "json":
        print(json.dumps(status, indent=2))
    else:
        print(f"Device ID: {status['device_id']}")
        print(f"Device Name: {status['device_name']}")
        print(f"Client ID: {status['client_id']}")
        print(f"Sync Server: {status['server_url'] or '(not configured)'}")
        print(f"Last Sync: {status['last_sync_at'] or 'never'}")
        print(f"Pending Deletions: {status['pending_deletions']}")
        print(f"Outstanding Conflicts: {status['outstanding_conflicts']}")
        print(f"Local Words: {status['local_words']}")

    return 0


def _result_to_dict(result: SyncResult) -> Dict[str, Any]:
    return {
        "success": result.success,
        "pushed": result.pushed,
        "pulled": result.pulled,
        "deleted": result.deleted,
        "server_time": result.server_time,
        "conflicts": [c.to_dict() for c in result.conflicts],
        "errors": result.errors,
    }


def cmd_sync_now(client: SyncClient, args: argparse.Namespace) -> int:
    """Run a sync cycle with the server.

    With --resolve, every outstanding conflict (reported by this cycle or
    left over from an earlier run) is resolved the same way and a second
    cycle submits the resolutions.

    Args:
        client: SyncClient instance
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success, 1 for failure or unresolved conflicts)
    """
    if not client.enabled:
        print("Error: No sync server configured (set sync.server_url or WORD_SYNC_URL)",
              file=sys.stderr)
        return 1

    results: List[SyncResult] = [client.sync()]
    resolved = 0

    choice_str = getattr(args, "resolve", None)
    if results[0].success and client.conflicts and choice_str:
        resolver = ConflictResolver(client)
        resolved = resolver.resolve_all(ResolutionChoice(choice_str))
        # The resolver schedules a debounced sync; run it now instead
        client.shutdown()
        results.append(client.sync())

    final = results[-1]

    if args.format == "json":
        print(json.dumps({
            "cycles": [_result_to_dict(r) for r in results],
            "resolved": resolved,
            "outstanding_conflicts": [c.to_dict() for c in client.conflicts],
        }, indent=2, ensure_ascii=False))
    else:
        for i, result in enumerate(results):
            label = "Sync" if i == 0 else "Follow-up sync"
            if result.success:
                print(f"{label} completed at {result.server_time}:")
                print(f"  Pushed: {result.pushed} words")
                print(f"  Pulled: {result.pulled} words")
                print(f"  Deleted: {result.deleted} words")
            else:
                print(f"{label} failed:")
                for error in result.errors:
                    print(f"  - {error}")
        if resolved:
            print(f"\nResolved {resolved} conflict(s) with {choice_str}")
        if client.conflicts:
            print(f"\nUnresolved Conflicts ({len(client.conflicts)}):")
            for conflict in client.conflicts:
                print(format_conflict(conflict))
            print("\nRun 'sync now --resolve local|remote|merge' to resolve them.")

    if not final.success or client.conflicts:
        return 1
    return 0


def add_cli_subparser(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    """Add CLI subparser and its nested subcommands.

    Args:
        subparsers: Parent subparsers object to add CLI parser to
    """
    cli_parser = subparsers.add_parser(
        "cli",
        help="Command-line interface",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    cli_parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)"
    )

    # Nested subcommands for CLI
    cli_subparsers = cli_parser.add_subparsers(dest="cli_command", help="CLI commands")

    # list-words command
    cli_subparsers.add_parser(
        "list-words",
        help="List all local words"
    )

    # show-word command
    show_parser = cli_subparsers.add_parser(
        "show-word",
        help="Show details of a specific word"
    )
    show_parser.add_argument(
        "word_id",
        type=str,
        help="Word ID (or unambiguous prefix)"
    )

    # add-word command
    add_parser = cli_subparsers.add_parser(
        "add-word",
        help="Create a new word"
    )
    add_parser.add_argument("german", type=str, help="German word or phrase")
    add_parser.add_argument("english", type=str, help="English translation")
    add_parser.add_argument(
        "--part-of-speech",
        choices=PARTS_OF_SPEECH,
        default="other",
        help="Part of speech (default: other)"
    )
    add_parser.add_argument(
        "--article",
        choices=[a for a in ARTICLES if a is not None],
        default=None,
        help="Article for nouns"
    )
    add_parser.add_argument("--example-de", type=str, default=None, help="German example sentence")
    add_parser.add_argument("--example-en", type=str, default=None, help="English example sentence")
    add_parser.add_argument("--notes", type=str, default=None, help="Free-text notes")

    # delete-word command
    delete_parser = cli_subparsers.add_parser(
        "delete-word",
        help="Delete a word"
    )
    delete_parser.add_argument(
        "word_id",
        type=str,
        help="Word ID (or unambiguous prefix)"
    )

    # sync command with subcommands
    sync_parser = cli_subparsers.add_parser(
        "sync",
        help="Sync operations (status, now)"
    )
    sync_subparsers = sync_parser.add_subparsers(dest="sync_command", help="Sync commands")

    # sync status
    sync_subparsers.add_parser("status", help="Show sync status and device info")

    # sync now
    sync_now_parser = sync_subparsers.add_parser("now", help="Run a sync cycle with the server")
    sync_now_parser.add_argument(
        "--resolve",
        choices=[c.value for c in ResolutionChoice],
        default=None,
        help="Resolve reported conflicts: local, remote, or merge (update conflicts only)"
    )


def run(config_dir: Optional[Path], args: argparse.Namespace) -> int:
    """Run CLI with given arguments.

    Args:
        config_dir: Custom configuration directory or None for default
        args: Parsed command-line arguments (should have cli_command attribute)

    Returns:
        Exit code (0 for success, 1 for error)
    """
    # Check if CLI command was provided
    if not hasattr(args, 'cli_command') or not args.cli_command:
        print("Error: No CLI command specified. Use --help for available commands.", file=sys.stderr)
        return 1

    config = Config(config_dir=config_dir)

    try:
        client = create_sync_client(config)
    except ValidationError as e:
        print(f"Error: Invalid {e.field} - {e.message}", file=sys.stderr)
        return 1

    # Execute command
    try:
        if args.cli_command == "list-words":
            return cmd_list_words(client, args)
        elif args.cli_command == "show-word":
            return cmd_show_word(client, args)
        elif args.cli_command == "add-word":
            return cmd_add_word(client, args)
        elif args.cli_command == "delete-word":
            return cmd_delete_word(client, args)
        elif args.cli_command == "sync":
            # Handle sync subcommands
            sync_cmd = getattr(args, 'sync_command', None)
            if not sync_cmd:
                print("Error: No sync command specified. Use 'sync --help'.", file=sys.stderr)
                return 1
            if sync_cmd == "status":
                return cmd_sync_status(client, config, args)
            elif sync_cmd == "now":
                return cmd_sync_now(client, args)
            else:
                print(f"Error: Unknown sync command '{sync_cmd}'", file=sys.stderr)
                return 1
        else:
            print(f"Error: Unknown command '{args.cli_command}'", file=sys.stderr)
            return 1
    except ValidationError as e:
        print(f"Error: Invalid {e.field} - {e.message}", file=sys.stderr)
        return 1
    finally:
        # A one-shot process never waits for the debounce window
        client.shutdown()
