"""Storage factory.

Picks a backend from an explicit name or from the environment:
DATABASE_URL with a postgres scheme selects PostgreSQL, anything else
falls back to a local SQLite file at BLOG_PUBLISHER_DB_PATH.
"""

import logging
import os
from typing import Optional

from ..config import DEFAULT_DB_PATH
from .base import StorageBackend, StorageConfig
from .memory_storage import MemoryStorage
from .sqlite_storage import SQLiteStorage

logger = logging.getLogger(__name__)

DATABASE_URL_ENV = "DATABASE_URL"
DB_PATH_ENV = "BLOG_PUBLISHER_DB_PATH"

_POSTGRES_SCHEMES = ("postgresql://", "postgres://")
_ALIASES = {"postgresql": "postgres", "sqlite3": "sqlite", "inmemory": "memory"}


def get_storage_type() -> str:
    """Detect the storage type from DATABASE_URL.

    Returns:
        'postgres' for a PostgreSQL URL, otherwise 'sqlite'.
    """
    database_url = os.environ.get(DATABASE_URL_ENV, "").strip()
    return "postgres" if database_url.startswith(_POSTGRES_SCHEMES) else "sqlite"


def create_storage(
    backend_type: Optional[str] = None,
    connection_string: Optional[str] = None,
    db_path: Optional[str] = None,
    pool_size: int = 5,
    auto_migrate: bool = True,
    **extra: object,
) -> StorageBackend:
    """Create a storage backend.

    Args:
        backend_type: 'memory', 'sqlite' or 'postgres'. Auto-detected if None.
        connection_string: PostgreSQL DSN, defaults to DATABASE_URL.
        db_path: SQLite file, defaults to BLOG_PUBLISHER_DB_PATH.
        pool_size: PostgreSQL connection pool size.
        auto_migrate: Run schema migrations on creation.
        **extra: Backend-specific settings kept on the StorageConfig.

    Returns:
        An initialized StorageBackend.

    Raises:
        ValueError: If the backend is unknown, or postgres has no DSN.

    Example:
        storage = create_storage()
        storage = create_storage("sqlite", db_path="./data/publisher.db")
        storage = create_storage("postgres", connection_string="postgresql://...")
    """
    name = (backend_type or get_storage_type()).strip().lower()
    name = _ALIASES.get(name, name)

    config = StorageConfig(
        backend_type=name,
        connection_string=connection_string or os.environ.get(DATABASE_URL_ENV),
        db_path=db_path or os.environ.get(DB_PATH_ENV, DEFAULT_DB_PATH),
        pool_size=pool_size,
        auto_migrate=auto_migrate,
        extra=dict(extra),
    )

    if name == "memory":
        logger.info("Using in-memory publish storage")
        return MemoryStorage(config)

    if name == "sqlite":
        logger.info(f"Using SQLite publish storage at {config.db_path}")
        return SQLiteStorage(config)

    if name == "postgres":
        if not config.connection_string:
            raise ValueError(f"postgres storage requires a connection string or {DATABASE_URL_ENV}")
        # psycopg2 is only imported when PostgreSQL is selected
        from .postgres_storage import PostgresStorage

        logger.info("Using PostgreSQL publish storage")
        return PostgresStorage(config)

    raise ValueError(f"Unknown storage backend type: {backend_type}")
