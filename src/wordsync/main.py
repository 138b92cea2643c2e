#!/usr/bin/env python3
"""wordsync application entry point.

This module provides a unified entry point for both interfaces:
- CLI: Local word list and sync commands for this device
- Web: The shared sync server

Usage:
    python -m wordsync.main cli list-words        # Use CLI
    python -m wordsync.main cli sync now          # Sync this device
    python -m wordsync.main web [--port 8787]     # Start sync server
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import NoReturn

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create the unified argument parser.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        description="wordsync - vocabulary list with delta sync across devices",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m wordsync.main cli list-words              List local words
  python -m wordsync.main cli add-word Haus house --part-of-speech noun --article das
  python -m wordsync.main cli sync now --resolve merge
  python -m wordsync.main web --port 8787             Start the sync server
""",
    )

    parser.add_argument(
        "-d", "--config-dir",
        type=Path,
        default=None,
        help="Custom configuration directory (default: ~/.config/wordsync/)"
    )

    # Create subparsers for each interface
    subparsers = parser.add_subparsers(dest="interface", help="Interface to use")

    # Add CLI subparser (imports cli module)
    from wordsync.cli import add_cli_subparser
    add_cli_subparser(subparsers)

    # Add Web subparser (imports web module)
    from wordsync.web import add_web_subparser
    add_web_subparser(subparsers)

    return parser


def main() -> NoReturn:
    """Main entry point for wordsync.

    Parses arguments and dispatches to the appropriate interface.
    """
    parser = create_parser()
    args = parser.parse_args()

    # Dispatch to appropriate interface
    if args.interface == "cli":
        from wordsync.cli import run as run_cli
        exit_code = run_cli(args.config_dir, args)
    elif args.interface == "web":
        from wordsync.web import run as run_web
        exit_code = run_web(args.config_dir, args)
    else:
        parser.print_help()
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
