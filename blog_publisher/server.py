#!/usr/bin/env python3
"""Blog Publisher API Server.

Usage:
    python -m blog_publisher.server [--host HOST] [--port PORT] [--db-path PATH]

    or:

    uvicorn blog_publisher.api:create_app --factory --host 0.0.0.0 --port 8000

Storage is chosen the same way as the CLI: DATABASE_URL selects
PostgreSQL, otherwise SQLite at BLOG_PUBLISHER_DB_PATH.
"""

import argparse
import logging
import os
from typing import List, Optional

import uvicorn

from .persistence.factory import DB_PATH_ENV, get_storage_type

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Blog Publisher API Server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Local SQLite queue
    python -m blog_publisher.server --db-path ./data/publisher.db

    # Shared PostgreSQL queue behind a load balancer
    DATABASE_URL=postgresql://user:pass@db/publisher python -m blog_publisher.server --host 0.0.0.0 --workers 4

    # Target credentials are decrypted with PUBLISHER_TOKEN_KEY
    PUBLISHER_TOKEN_KEY=... python -m blog_publisher.server
""",
    )
    parser.add_argument(
        "--host",
        default=os.environ.get("BLOG_PUBLISHER_HOST", "127.0.0.1"),
        help="Host to bind to (default: BLOG_PUBLISHER_HOST or 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("BLOG_PUBLISHER_PORT", "8000")),
        help="Port to bind to (default: BLOG_PUBLISHER_PORT or 8000)",
    )
    parser.add_argument(
        "--db-path",
        default=None,
        help=f"SQLite database path, exported as {DB_PATH_ENV} for the app factory",
    )
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    parser.add_argument("--workers", type=int, default=1, help="Number of worker processes (default: 1)")
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error", "critical"],
        help="Log level (default: info)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the API server."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # create_app reads storage settings from the environment in each worker
    if args.db_path:
        os.environ[DB_PATH_ENV] = args.db_path

    storage_type = get_storage_type()
    if storage_type == "sqlite" and args.workers > 1:
        logger.warning("SQLite storage with multiple workers serializes writes; prefer DATABASE_URL")
    if not os.environ.get("PUBLISHER_TOKEN_KEY"):
        logger.warning("PUBLISHER_TOKEN_KEY is not set; encrypted target credentials cannot be read")

    logger.info(f"Starting Blog Publisher API on http://{args.host}:{args.port} (storage: {storage_type})")
    logger.info(f"OpenAPI docs: http://{args.host}:{args.port}/docs")

    uvicorn.run(
        "blog_publisher.api.app:create_app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=1 if args.reload else args.workers,
        log_level=args.log_level,
        factory=True,
    )


if __name__ == "__main__":
    main()
