#!/usr/bin/env python3
"""Sync server web API for wordsync.

This module hosts the shared sync server that every device talks to.
Uses only core/ modules.

Endpoints:
    POST /api/words/sync         Merge a client delta, return the remote delta
    GET  /api/words              Export the live collection
    GET  /api/health             Health check (never token-gated)

If an auth token is configured (server.auth_token or WORD_SYNC_TOKEN), every
/api/words request must carry ``Authorization: Bearer <token>``.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any, Optional

from flask import Flask, jsonify, Response
from flask_cors import CORS

from wordsync.core.config import Config
from wordsync.core.server_store import ServerStore
from wordsync.core.sync_server import create_sync_blueprint
from wordsync.core.timestamps import Clock, utc_now
from wordsync.core.validation import ValidationError

logger = logging.getLogger(__name__)


def create_app(
    config_dir: Optional[Path] = None,
    store: Optional[ServerStore] = None,
    auth_token: Optional[str] = None,
    clock: Clock = utc_now,
) -> Flask:
    """Create and configure Flask application.

    Args:
        config_dir: Custom configuration directory (default: None)
        store: Server collection to use instead of the configured database
        auth_token: Required bearer token (default: from config)
        clock: Server wall clock

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)
    CORS(app, allow_headers=["Content-Type", "Authorization"])

    config = Config(config_dir=config_dir)
    if store is None:
        db_path = config.get_server_database_file()
        store = ServerStore(db_path)
        logger.info(f"Sync server initialized with database: {db_path}")
    if auth_token is None:
        auth_token = config.get_auth_token()
    if not auth_token:
        logger.warning("No auth token configured; the sync endpoints are open")

    app.register_blueprint(create_sync_blueprint(store, auth_token=auth_token, clock=clock))

    @app.errorhandler(404)
    def not_found(error: Any) -> tuple[Response, int]:
        """Handle 404 errors."""
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error: Any) -> tuple[Response, int]:
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(500)
    def internal_error(error: Any) -> tuple[Response, int]:
        """Handle 500 errors."""
        logger.error(f"Internal error: {error}")
        return jsonify({"error": "Internal server error"}), 500

    @app.route("/api/health", methods=["GET"])
    def health_check() -> tuple[Response, int]:
        """Health check endpoint.

        Returns:
            JSON response indicating service health
        """
        return jsonify({"status": "ok"}), 200

    return app


def add_web_subparser(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    """Add web subparser and its arguments.

    Args:
        subparsers: Parent subparsers object to add web parser to
    """
    web_parser = subparsers.add_parser(
        "web",
        help="Start the sync server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    web_parser.add_argument(
        "--host",
        type=str,
        default="0.0.0.0",
        help="Host to bind to (default: 0.0.0.0)"
    )

    web_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind to (default: 8787 or from config)"
    )

    web_parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode"
    )


def run(config_dir: Optional[Path], args: argparse.Namespace) -> int:
    """Run the sync server with given arguments.

    Args:
        config_dir: Custom configuration directory or None for default
        args: Parsed command-line arguments (should have host, port, debug attributes)

    Returns:
        Exit code (0 for success, 1 for configuration errors)
    """
    logger.info("Starting wordsync sync server")
    if config_dir:
        logger.info(f"Using custom config directory: {config_dir}")

    config = Config(config_dir=config_dir)
    try:
        port = args.port if args.port is not None else config.get_server_port()
    except ValidationError as e:
        logger.error(f"Invalid server configuration: {e}")
        return 1

    app = create_app(config_dir=config_dir)

    app.run(
        host=args.host,
        port=port,
        debug=args.debug
    )

    return 0
