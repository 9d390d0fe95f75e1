"""Persistence layer for the Blog Publisher.

This module holds the durable state of the publish job queue:
- Target registry, drafts, jobs and the publish ledger
- PostgreSQL as primary database
- SQLite as local fallback, in-memory storage for tests

Usage:
    from blog_publisher.persistence import create_storage, StorageBackend

    # Create SQLite storage (default)
    storage = create_storage("sqlite", db_path="./data/publisher.db")

    # Create PostgreSQL storage
    storage = create_storage("postgres", connection_string="postgresql://...")

    # Use environment-based auto-detection
    storage = create_storage()  # Uses DATABASE_URL or falls back to SQLite
"""

from .base import StorageBackend, StorageConfig
from .factory import create_storage, get_storage_type
from .memory_storage import MemoryStorage
from .models import (
    TERMINAL_STATUSES,
    DraftCreate,
    PublishableDraft,
    PublishJob,
    PublishJobCreate,
    PublishJobStatus,
    PublishLedgerEntry,
    PublishTarget,
    PublishTargetCreate,
    QueueStats,
)
from .sqlite_storage import SQLiteStorage

__all__ = [
    # Base classes
    "StorageBackend",
    "StorageConfig",
    # Factory
    "create_storage",
    "get_storage_type",
    # Models
    "TERMINAL_STATUSES",
    "DraftCreate",
    "PublishableDraft",
    "PublishJob",
    "PublishJobCreate",
    "PublishJobStatus",
    "PublishLedgerEntry",
    "PublishTarget",
    "PublishTargetCreate",
    "QueueStats",
    # Implementations
    "MemoryStorage",
    "SQLiteStorage",
]
