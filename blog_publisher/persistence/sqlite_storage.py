"""SQLite storage backend implementation.

Provides a file-based persistence layer using SQLite.
This is the default storage when PostgreSQL is not configured.
"""

import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

from ..config import DEFAULT_DB_PATH
from ..utils import utc_now
from .base import StorageBackend, StorageConfig
from .models import (
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

logger = logging.getLogger(__name__)


# Schema version for migrations
SCHEMA_VERSION = 1

_OPEN_STATUSES = (PublishJobStatus.QUEUED.value, PublishJobStatus.RUNNING.value)


def _ts(value: datetime) -> str:
    """Format a timestamp so that string order matches time order."""
    return value.isoformat(timespec="microseconds")


class SQLiteStorage(StorageBackend):
    """SQLite-based storage backend.

    Thread-safe implementation using one connection per thread.
    """

    def __init__(self, config: StorageConfig):
        """Initialize SQLite storage.

        Args:
            config: Storage configuration.
        """
        self.config = config
        self.db_path = config.db_path or DEFAULT_DB_PATH
        self._local = threading.local()
        self._lock = threading.RLock()
        self._initialized = False

        if config.auto_migrate:
            self.initialize()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a thread-local database connection."""
        if not hasattr(self._local, "connection") or self._local.connection is None:
            # Ensure directory exists
            db_dir = Path(self.db_path).parent
            db_dir.mkdir(parents=True, exist_ok=True)

            self._local.connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=30,
            )
            self._local.connection.row_factory = sqlite3.Row
        return self._local.connection

    @contextmanager
    def _cursor(self) -> Generator[sqlite3.Cursor, None, None]:
        """Context manager for database cursor."""
        conn = self._get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def initialize(self) -> None:
        """Initialize the database schema."""
        with self._lock:
            if self._initialized:
                return

            with self._cursor() as cursor:
                # Create schema version table
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS schema_version (
                        version INTEGER PRIMARY KEY,
                        applied_at TEXT NOT NULL
                    )
                """
                )

                # Check current version
                cursor.execute("SELECT MAX(version) FROM schema_version")
                row = cursor.fetchone()
                current_version = row[0] if row and row[0] else 0

                if current_version < SCHEMA_VERSION:
                    self._run_migrations(cursor, current_version)

            self._initialized = True
            logger.info(f"SQLite storage initialized at {self.db_path}")

    def _run_migrations(self, cursor: sqlite3.Cursor, from_version: int) -> None:
        """Run database migrations."""
        if from_version < 1:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS publish_targets (
                    target_id TEXT PRIMARY KEY,
                    location_id TEXT NOT NULL,
                    platform TEXT NOT NULL,
                    config_json TEXT NOT NULL DEFAULT '{}',
                    is_active INTEGER,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """
            )

            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_targets_location
                ON publish_targets(location_id)
            """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS blog_drafts (
                    draft_id TEXT PRIMARY KEY,
                    location_id TEXT NOT NULL,
                    title TEXT NOT NULL DEFAULT '',
                    content_html TEXT NOT NULL DEFAULT '',
                    updated_at TEXT NOT NULL
                )
            """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS publish_jobs (
                    job_id TEXT PRIMARY KEY,
                    draft_id TEXT NOT NULL,
                    location_id TEXT NOT NULL,
                    target_id TEXT NOT NULL,
                    platform TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'queued',
                    attempts INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """
            )

            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_jobs_draft_status
                ON publish_jobs(draft_id, location_id, status, created_at)
            """
            )

            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_jobs_status
                ON publish_jobs(status)
            """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS publish_ledger (
                    ledger_id TEXT PRIMARY KEY,
                    draft_id TEXT NOT NULL,
                    platform TEXT NOT NULL,
                    target_id TEXT NOT NULL,
                    external_id TEXT NOT NULL,
                    published_url TEXT,
                    created_at TEXT NOT NULL,
                    UNIQUE (draft_id, platform, target_id)
                )
            """
            )

            # Record migration
            cursor.execute(
                "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                (1, _ts(utc_now())),
            )

            logger.info("Applied SQLite migration version 1")

    def close(self) -> None:
        """Close the database connection."""
        if hasattr(self._local, "connection") and self._local.connection:
            self._local.connection.close()
            self._local.connection = None

    def _deserialize_config(self, data: Optional[str]) -> Dict[str, Any]:
        """Parse a target config column; unreadable JSON yields an empty config."""
        try:
            value = json.loads(data or "{}")
        except (TypeError, ValueError):
            logger.warning("Unparseable target config_json, treating as empty")
            return {}
        return value if isinstance(value, dict) else {}

    def _row_to_target(self, row: sqlite3.Row) -> PublishTarget:
        """Convert a database row to a PublishTarget."""
        is_active = row["is_active"]
        return PublishTarget(
            target_id=row["target_id"],
            location_id=row["location_id"],
            platform=row["platform"],
            config=self._deserialize_config(row["config_json"]),
            is_active=None if is_active is None else bool(is_active),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def _row_to_job(self, row: sqlite3.Row) -> PublishJob:
        """Convert a database row to a PublishJob."""
        return PublishJob(
            job_id=row["job_id"],
            draft_id=row["draft_id"],
            location_id=row["location_id"],
            target_id=row["target_id"],
            platform=row["platform"],
            status=PublishJobStatus(row["status"]),
            attempts=row["attempts"] or 0,
            last_error=row["last_error"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def _row_to_ledger(self, row: sqlite3.Row) -> PublishLedgerEntry:
        """Convert a database row to a PublishLedgerEntry."""
        return PublishLedgerEntry(
            ledger_id=row["ledger_id"],
            draft_id=row["draft_id"],
            platform=row["platform"],
            target_id=row["target_id"],
            external_id=row["external_id"],
            published_url=row["published_url"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    # === Target Registry ===

    def upsert_target(self, target: PublishTargetCreate) -> PublishTarget:
        """Create or replace a target."""
        now = _ts(utc_now())
        is_active = None if target.is_active is None else int(target.is_active)

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO publish_targets (
                    target_id, location_id, platform, config_json, is_active, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(target_id) DO UPDATE SET
                    location_id = excluded.location_id,
                    platform = excluded.platform,
                    config_json = excluded.config_json,
                    is_active = excluded.is_active,
                    updated_at = excluded.updated_at
            """,
                (
                    target.target_id,
                    target.location_id,
                    target.platform,
                    json.dumps(target.config),
                    is_active,
                    now,
                    now,
                ),
            )

        logger.debug(f"Upserted target {target.target_id} ({target.platform})")
        return self.get_target(target.target_id)  # type: ignore

    def get_target(self, target_id: str) -> Optional[PublishTarget]:
        """Get a target by ID."""
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM publish_targets WHERE target_id = ?", (target_id,))
            row = cursor.fetchone()
            if row:
                return self._row_to_target(row)
            return None

    def list_targets(self, location_id: str) -> List[PublishTarget]:
        """List all targets of a location."""
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM publish_targets WHERE location_id = ? ORDER BY created_at ASC",
                (location_id,),
            )
            return [self._row_to_target(row) for row in cursor.fetchall()]

    def get_active_targets(self, location_id: str) -> List[PublishTarget]:
        """List the active targets of a location."""
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT * FROM publish_targets
                WHERE location_id = ?
                  AND (is_active = 1 OR is_active IS NULL)
                ORDER BY created_at ASC
            """,
                (location_id,),
            )
            return [self._row_to_target(row) for row in cursor.fetchall()]

    def deactivate_target(self, target_id: str) -> Optional[PublishTarget]:
        """Deactivate a target."""
        with self._cursor() as cursor:
            cursor.execute(
                "UPDATE publish_targets SET is_active = 0, updated_at = ? WHERE target_id = ?",
                (_ts(utc_now()), target_id),
            )
            if cursor.rowcount == 0:
                return None

        logger.debug(f"Deactivated target {target_id}")
        return self.get_target(target_id)

    # === Drafts ===

    def save_draft(self, draft: DraftCreate) -> PublishableDraft:
        """Create or replace a draft."""
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO blog_drafts (draft_id, location_id, title, content_html, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(draft_id) DO UPDATE SET
                    location_id = excluded.location_id,
                    title = excluded.title,
                    content_html = excluded.content_html,
                    updated_at = excluded.updated_at
            """,
                (draft.draft_id, draft.location_id, draft.title, draft.content_html, _ts(utc_now())),
            )

        return PublishableDraft(
            draft_id=draft.draft_id,
            location_id=draft.location_id,
            title=draft.title,
            content=draft.content_html,
        )

    def get_publishable_draft(self, draft_id: str) -> Optional[PublishableDraft]:
        """Get a draft's publishable content."""
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT draft_id, location_id, title, content_html FROM blog_drafts WHERE draft_id = ?",
                (draft_id,),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return PublishableDraft(
                draft_id=row["draft_id"],
                location_id=row["location_id"],
                title=row["title"] or "",
                content=row["content_html"] or "",
            )

    # === Job Store ===

    def create_job(self, job: PublishJobCreate) -> PublishJob:
        """Insert a new queued job."""
        job_id = str(uuid.uuid4())
        now = _ts(utc_now())

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO publish_jobs (
                    job_id, draft_id, location_id, target_id, platform,
                    status, attempts, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?)
            """,
                (
                    job_id,
                    job.draft_id,
                    job.location_id,
                    job.target_id,
                    job.platform,
                    PublishJobStatus.QUEUED.value,
                    now,
                    now,
                ),
            )

        logger.debug(f"Created job {job_id} for draft {job.draft_id} -> {job.platform}:{job.target_id}")
        return self.get_job(job_id)  # type: ignore

    def get_job(self, job_id: str) -> Optional[PublishJob]:
        """Get a job by ID."""
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM publish_jobs WHERE job_id = ?", (job_id,))
            row = cursor.fetchone()
            if row:
                return self._row_to_job(row)
            return None

    def list_queued_jobs(self, draft_id: str, location_id: str, limit: int = 10) -> List[PublishJob]:
        """List queued jobs of a draft, oldest first."""
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT * FROM publish_jobs
                WHERE draft_id = ?
                  AND location_id = ?
                  AND status = ?
                ORDER BY created_at ASC, rowid ASC
                LIMIT ?
            """,
                (draft_id, location_id, PublishJobStatus.QUEUED.value, max(limit, 0)),
            )
            return [self._row_to_job(row) for row in cursor.fetchall()]

    def claim_job(self, job_id: str) -> Optional[PublishJob]:
        """Move a queued job to running."""
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE publish_jobs
                SET status = ?, attempts = COALESCE(attempts, 0) + 1, updated_at = ?
                WHERE job_id = ? AND status = ?
            """,
                (PublishJobStatus.RUNNING.value, _ts(utc_now()), job_id, PublishJobStatus.QUEUED.value),
            )
            if cursor.rowcount == 0:
                return None

        return self.get_job(job_id)

    def _finish_job(
        self, job_id: str, status: PublishJobStatus, error_message: Optional[str] = None
    ) -> Optional[PublishJob]:
        """Apply a terminal transition to a queued or running job."""
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE publish_jobs
                SET status = ?, last_error = COALESCE(?, last_error), updated_at = ?
                WHERE job_id = ? AND status IN (?, ?)
            """,
                (status.value, error_message, _ts(utc_now()), job_id, *_OPEN_STATUSES),
            )
            if cursor.rowcount == 0:
                return None

        return self.get_job(job_id)

    def complete_job(self, job_id: str) -> Optional[PublishJob]:
        """Mark a job as done."""
        return self._finish_job(job_id, PublishJobStatus.DONE)

    def fail_job(self, job_id: str, error_message: str) -> Optional[PublishJob]:
        """Mark a job as failed."""
        return self._finish_job(job_id, PublishJobStatus.FAILED, error_message)

    def list_jobs(
        self,
        status: Optional[PublishJobStatus] = None,
        draft_id: Optional[str] = None,
        location_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[PublishJob]:
        """List jobs with optional filters."""
        # Column names are hard-coded below - NOT derived from user input
        conditions: List[str] = []
        params: List[Any] = []

        if status is not None:
            conditions.append("status = ?")
            params.append(status.value)
        if draft_id is not None:
            conditions.append("draft_id = ?")
            params.append(draft_id)
        if location_id is not None:
            conditions.append("location_id = ?")
            params.append(location_id)

        query = "SELECT * FROM publish_jobs"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        with self._cursor() as cursor:
            cursor.execute(query, params)
            return [self._row_to_job(row) for row in cursor.fetchall()]

    def fail_stale_jobs(self, older_than_seconds: int, error_message: str) -> int:
        """Fail jobs stuck in running."""
        now = utc_now()
        threshold = now - timedelta(seconds=older_than_seconds)

        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE publish_jobs
                SET status = ?, last_error = ?, updated_at = ?
                WHERE status = ? AND updated_at < ?
            """,
                (
                    PublishJobStatus.FAILED.value,
                    error_message,
                    _ts(now),
                    PublishJobStatus.RUNNING.value,
                    _ts(threshold),
                ),
            )
            count = cursor.rowcount

        if count:
            logger.info(f"Failed {count} stale running job(s)")
        return count

    # === Publish Ledger ===

    def get_ledger_entry(self, draft_id: str, platform: str, target_id: str) -> Optional[PublishLedgerEntry]:
        """Get the ledger entry for a triple."""
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT * FROM publish_ledger
                WHERE draft_id = ? AND platform = ? AND target_id = ?
                LIMIT 1
            """,
                (draft_id, platform, target_id),
            )
            row = cursor.fetchone()
            if row:
                return self._row_to_ledger(row)
            return None

    def record_ledger_entry(
        self,
        draft_id: str,
        platform: str,
        target_id: str,
        external_id: str,
        published_url: Optional[str] = None,
    ) -> bool:
        """Insert a ledger entry unless one exists."""
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT OR IGNORE INTO publish_ledger (
                    ledger_id, draft_id, platform, target_id, external_id, published_url, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    str(uuid.uuid4()),
                    draft_id,
                    platform,
                    target_id,
                    external_id,
                    published_url,
                    _ts(utc_now()),
                ),
            )
            inserted = cursor.rowcount > 0

        if not inserted:
            logger.debug(f"Ledger entry already present for ({draft_id}, {platform}, {target_id})")
        return inserted

    def list_ledger_entries(self, draft_id: str) -> List[PublishLedgerEntry]:
        """List the ledger entries of a draft."""
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM publish_ledger WHERE draft_id = ? ORDER BY created_at ASC, rowid ASC",
                (draft_id,),
            )
            return [self._row_to_ledger(row) for row in cursor.fetchall()]

    # === Statistics ===

    def get_stats(self) -> QueueStats:
        """Get publish queue statistics."""
        with self._cursor() as cursor:
            cursor.execute("SELECT status, COUNT(*) AS count FROM publish_jobs GROUP BY status")
            status_counts = {row["status"]: row["count"] for row in cursor.fetchall()}

            cursor.execute("SELECT COUNT(*) FROM publish_ledger")
            ledger_entries = cursor.fetchone()[0]

            cursor.execute(
                "SELECT MIN(created_at) FROM publish_jobs WHERE status = ?",
                (PublishJobStatus.QUEUED.value,),
            )
            oldest = cursor.fetchone()[0]

        oldest_age = None
        if oldest:
            oldest_age = (utc_now() - datetime.fromisoformat(oldest)).total_seconds()

        return QueueStats(
            total_jobs=sum(status_counts.values()),
            queued_jobs=status_counts.get(PublishJobStatus.QUEUED.value, 0),
            running_jobs=status_counts.get(PublishJobStatus.RUNNING.value, 0),
            done_jobs=status_counts.get(PublishJobStatus.DONE.value, 0),
            failed_jobs=status_counts.get(PublishJobStatus.FAILED.value, 0),
            ledger_entries=ledger_entries,
            oldest_queued_job_age_seconds=oldest_age,
        )

    # === Health Check ===

    def health_check(self) -> bool:
        """Check if the storage backend is healthy."""
        try:
            with self._cursor() as cursor:
                cursor.execute("SELECT 1")
            return True
        except sqlite3.Error as e:
            logger.error(f"SQLite health check failed: {e}")
            return False
