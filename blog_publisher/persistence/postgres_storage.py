"""PostgreSQL storage backend implementation.

Provides a robust persistence layer using PostgreSQL.
This is the recommended storage backend for production use.

Every state transition is a single conditional UPDATE ... RETURNING,
so concurrent dispatchers never both claim the same job.
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Generator, List, Optional

import psycopg2
import psycopg2.extras
import psycopg2.pool

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


class PostgresStorage(StorageBackend):
    """PostgreSQL-based storage backend.

    Uses connection pooling for efficient resource usage.
    """

    def __init__(self, config: StorageConfig):
        """Initialize PostgreSQL storage.

        Args:
            config: Storage configuration with connection_string.

        Raises:
            ValueError: If connection_string is not provided.
        """
        if not config.connection_string:
            raise ValueError("connection_string is required for PostgreSQL storage")

        self.config = config
        self._pool: Optional[Any] = None
        self._pool_lock = threading.RLock()
        self._initialized = False

        if config.auto_migrate:
            self.initialize()

    def _get_pool(self) -> Any:
        """Get or create the connection pool."""
        if self._pool is None:
            with self._pool_lock:
                if self._pool is None:
                    self._pool = psycopg2.pool.ThreadedConnectionPool(
                        minconn=1,
                        maxconn=self.config.pool_size,
                        dsn=self.config.connection_string,
                    )
        return self._pool

    @contextmanager
    def _connection(self) -> Generator[Any, None, None]:
        """Context manager for database connection from pool."""
        pool = self._get_pool()
        conn = pool.getconn()
        try:
            yield conn
        finally:
            pool.putconn(conn)

    @contextmanager
    def _cursor(self, commit: bool = True) -> Generator[Any, None, None]:
        """Context manager for database cursor with auto-commit."""
        with self._connection() as conn:
            cursor = conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if commit:
                    conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def initialize(self) -> None:
        """Initialize the database schema."""
        with self._pool_lock:
            if self._initialized:
                return

            with self._cursor() as cursor:
                # Create schema version table
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS schema_version (
                        version INTEGER PRIMARY KEY,
                        applied_at TIMESTAMPTZ NOT NULL
                    )
                """
                )

                # Check current version
                cursor.execute("SELECT MAX(version) FROM schema_version")
                row = cursor.fetchone()
                current_version = row["max"] if row and row["max"] else 0

                if current_version < SCHEMA_VERSION:
                    self._run_migrations(cursor, current_version)

            self._initialized = True
            logger.info("PostgreSQL storage initialized")

    def _run_migrations(self, cursor: Any, from_version: int) -> None:
        """Run database migrations."""
        if from_version < 1:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS publish_targets (
                    target_id TEXT PRIMARY KEY,
                    location_id TEXT NOT NULL,
                    platform TEXT NOT NULL,
                    config JSONB NOT NULL DEFAULT '{}'::jsonb,
                    is_active BOOLEAN,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
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
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
            """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS publish_jobs (
                    job_id UUID PRIMARY KEY,
                    seq BIGSERIAL,
                    draft_id TEXT NOT NULL,
                    location_id TEXT NOT NULL,
                    target_id TEXT NOT NULL,
                    platform TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'queued',
                    attempts INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
            """
            )

            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_jobs_draft_status
                ON publish_jobs(draft_id, location_id, status, created_at, seq)
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
                    ledger_id UUID PRIMARY KEY,
                    draft_id TEXT NOT NULL,
                    platform TEXT NOT NULL,
                    target_id TEXT NOT NULL,
                    external_id TEXT NOT NULL,
                    published_url TEXT,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    UNIQUE (draft_id, platform, target_id)
                )
            """
            )

            # Record migration
            cursor.execute(
                "INSERT INTO schema_version (version, applied_at) VALUES (%s, %s)",
                (1, utc_now()),
            )

            logger.info("Applied PostgreSQL migration version 1")

    def close(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None

    def _row_to_target(self, row: Dict[str, Any]) -> PublishTarget:
        """Convert a database row to a PublishTarget."""
        config = row.get("config")
        return PublishTarget(
            target_id=row["target_id"],
            location_id=row["location_id"],
            platform=row["platform"],
            config=config if isinstance(config, dict) else {},
            is_active=row["is_active"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_job(self, row: Dict[str, Any]) -> PublishJob:
        """Convert a database row to a PublishJob."""
        return PublishJob(
            job_id=str(row["job_id"]),
            draft_id=row["draft_id"],
            location_id=row["location_id"],
            target_id=row["target_id"],
            platform=row["platform"],
            status=PublishJobStatus(row["status"]),
            attempts=row["attempts"] or 0,
            last_error=row["last_error"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_ledger(self, row: Dict[str, Any]) -> PublishLedgerEntry:
        """Convert a database row to a PublishLedgerEntry."""
        return PublishLedgerEntry(
            ledger_id=str(row["ledger_id"]),
            draft_id=row["draft_id"],
            platform=row["platform"],
            target_id=row["target_id"],
            external_id=row["external_id"],
            published_url=row["published_url"],
            created_at=row["created_at"],
        )

    # === Target Registry ===

    def upsert_target(self, target: PublishTargetCreate) -> PublishTarget:
        """Create or replace a target."""
        now = utc_now()
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO publish_targets (
                    target_id, location_id, platform, config, is_active, created_at, updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (target_id) DO UPDATE SET
                    location_id = EXCLUDED.location_id,
                    platform = EXCLUDED.platform,
                    config = EXCLUDED.config,
                    is_active = EXCLUDED.is_active,
                    updated_at = EXCLUDED.updated_at
                RETURNING *
            """,
                (
                    target.target_id,
                    target.location_id,
                    target.platform,
                    psycopg2.extras.Json(target.config),
                    target.is_active,
                    now,
                    now,
                ),
            )
            row = cursor.fetchone()

        logger.debug(f"Upserted target {target.target_id} ({target.platform})")
        return self._row_to_target(row)

    def get_target(self, target_id: str) -> Optional[PublishTarget]:
        """Get a target by ID."""
        with self._cursor(commit=False) as cursor:
            cursor.execute("SELECT * FROM publish_targets WHERE target_id = %s", (target_id,))
            row = cursor.fetchone()
            if row:
                return self._row_to_target(row)
            return None

    def list_targets(self, location_id: str) -> List[PublishTarget]:
        """List all targets of a location."""
        with self._cursor(commit=False) as cursor:
            cursor.execute(
                "SELECT * FROM publish_targets WHERE location_id = %s ORDER BY created_at ASC",
                (location_id,),
            )
            return [self._row_to_target(row) for row in cursor.fetchall()]

    def get_active_targets(self, location_id: str) -> List[PublishTarget]:
        """List the active targets of a location."""
        with self._cursor(commit=False) as cursor:
            cursor.execute(
                """
                SELECT * FROM publish_targets
                WHERE location_id = %s
                  AND (is_active IS NULL OR is_active = TRUE)
                ORDER BY created_at ASC
            """,
                (location_id,),
            )
            return [self._row_to_target(row) for row in cursor.fetchall()]

    def deactivate_target(self, target_id: str) -> Optional[PublishTarget]:
        """Deactivate a target."""
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE publish_targets SET is_active = FALSE, updated_at = %s
                WHERE target_id = %s
                RETURNING *
            """,
                (utc_now(), target_id),
            )
            row = cursor.fetchone()

        if row is None:
            return None
        logger.debug(f"Deactivated target {target_id}")
        return self._row_to_target(row)

    # === Drafts ===

    def save_draft(self, draft: DraftCreate) -> PublishableDraft:
        """Create or replace a draft."""
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO blog_drafts (draft_id, location_id, title, content_html, updated_at)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (draft_id) DO UPDATE SET
                    location_id = EXCLUDED.location_id,
                    title = EXCLUDED.title,
                    content_html = EXCLUDED.content_html,
                    updated_at = EXCLUDED.updated_at
            """,
                (draft.draft_id, draft.location_id, draft.title, draft.content_html, utc_now()),
            )

        return PublishableDraft(
            draft_id=draft.draft_id,
            location_id=draft.location_id,
            title=draft.title,
            content=draft.content_html,
        )

    def get_publishable_draft(self, draft_id: str) -> Optional[PublishableDraft]:
        """Get a draft's publishable content."""
        with self._cursor(commit=False) as cursor:
            cursor.execute(
                "SELECT draft_id, location_id, title, content_html FROM blog_drafts WHERE draft_id = %s",
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
        now = utc_now()

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO publish_jobs (
                    job_id, draft_id, location_id, target_id, platform,
                    status, attempts, created_at, updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, 0, %s, %s)
                RETURNING *
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
            row = cursor.fetchone()

        logger.debug(f"Created job {job_id} for draft {job.draft_id} -> {job.platform}:{job.target_id}")
        return self._row_to_job(row)

    def get_job(self, job_id: str) -> Optional[PublishJob]:
        """Get a job by ID."""
        try:
            uuid.UUID(job_id)
        except ValueError:
            return None

        with self._cursor(commit=False) as cursor:
            cursor.execute("SELECT * FROM publish_jobs WHERE job_id = %s", (job_id,))
            row = cursor.fetchone()
            if row:
                return self._row_to_job(row)
            return None

    def list_queued_jobs(self, draft_id: str, location_id: str, limit: int = 10) -> List[PublishJob]:
        """List queued jobs of a draft, oldest first."""
        with self._cursor(commit=False) as cursor:
            cursor.execute(
                """
                SELECT * FROM publish_jobs
                WHERE draft_id = %s
                  AND location_id = %s
                  AND status = %s
                ORDER BY created_at ASC, seq ASC
                LIMIT %s
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
                SET status = %s, attempts = COALESCE(attempts, 0) + 1, updated_at = %s
                WHERE job_id = %s AND status = %s
                RETURNING *
            """,
                (PublishJobStatus.RUNNING.value, utc_now(), job_id, PublishJobStatus.QUEUED.value),
            )
            row = cursor.fetchone()

        return self._row_to_job(row) if row else None

    def _finish_job(
        self, job_id: str, status: PublishJobStatus, error_message: Optional[str] = None
    ) -> Optional[PublishJob]:
        """Apply a terminal transition to a queued or running job."""
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE publish_jobs
                SET status = %s, last_error = COALESCE(%s, last_error), updated_at = %s
                WHERE job_id = %s AND status IN (%s, %s)
                RETURNING *
            """,
                (
                    status.value,
                    error_message,
                    utc_now(),
                    job_id,
                    PublishJobStatus.QUEUED.value,
                    PublishJobStatus.RUNNING.value,
                ),
            )
            row = cursor.fetchone()

        return self._row_to_job(row) if row else None

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
            conditions.append("status = %s")
            params.append(status.value)
        if draft_id is not None:
            conditions.append("draft_id = %s")
            params.append(draft_id)
        if location_id is not None:
            conditions.append("location_id = %s")
            params.append(location_id)

        query = "SELECT * FROM publish_jobs"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY created_at DESC, seq DESC LIMIT %s OFFSET %s"
        params.extend([limit, offset])

        with self._cursor(commit=False) as cursor:
            cursor.execute(query, params)
            return [self._row_to_job(row) for row in cursor.fetchall()]

    def fail_stale_jobs(self, older_than_seconds: int, error_message: str) -> int:
        """Fail jobs stuck in running."""
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE publish_jobs
                SET status = %s, last_error = %s, updated_at = NOW()
                WHERE status = %s
                  AND updated_at < NOW() - make_interval(secs => %s)
            """,
                (
                    PublishJobStatus.FAILED.value,
                    error_message,
                    PublishJobStatus.RUNNING.value,
                    older_than_seconds,
                ),
            )
            count = cursor.rowcount

        if count:
            logger.info(f"Failed {count} stale running job(s)")
        return count

    # === Publish Ledger ===

    def get_ledger_entry(self, draft_id: str, platform: str, target_id: str) -> Optional[PublishLedgerEntry]:
        """Get the ledger entry for a triple."""
        with self._cursor(commit=False) as cursor:
            cursor.execute(
                """
                SELECT * FROM publish_ledger
                WHERE draft_id = %s AND platform = %s AND target_id = %s
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
                INSERT INTO publish_ledger (
                    ledger_id, draft_id, platform, target_id, external_id, published_url, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (draft_id, platform, target_id) DO NOTHING
            """,
                (
                    str(uuid.uuid4()),
                    draft_id,
                    platform,
                    target_id,
                    external_id,
                    published_url,
                    utc_now(),
                ),
            )
            inserted = cursor.rowcount > 0

        if not inserted:
            logger.debug(f"Ledger entry already present for ({draft_id}, {platform}, {target_id})")
        return inserted

    def list_ledger_entries(self, draft_id: str) -> List[PublishLedgerEntry]:
        """List the ledger entries of a draft."""
        with self._cursor(commit=False) as cursor:
            cursor.execute(
                "SELECT * FROM publish_ledger WHERE draft_id = %s ORDER BY created_at ASC",
                (draft_id,),
            )
            return [self._row_to_ledger(row) for row in cursor.fetchall()]

    # === Statistics ===

    def get_stats(self) -> QueueStats:
        """Get publish queue statistics."""
        with self._cursor(commit=False) as cursor:
            cursor.execute("SELECT status, COUNT(*) AS count FROM publish_jobs GROUP BY status")
            status_counts = {row["status"]: row["count"] for row in cursor.fetchall()}

            cursor.execute("SELECT COUNT(*) AS count FROM publish_ledger")
            ledger_entries = cursor.fetchone()["count"]

            cursor.execute(
                "SELECT MIN(created_at) AS oldest FROM publish_jobs WHERE status = %s",
                (PublishJobStatus.QUEUED.value,),
            )
            oldest: Optional[datetime] = cursor.fetchone()["oldest"]

        oldest_age = None
        if oldest is not None:
            oldest_age = (utc_now() - oldest).total_seconds()

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
            with self._cursor(commit=False) as cursor:
                cursor.execute("SELECT 1")
                return cursor.fetchone() is not None
        except psycopg2.Error as e:
            logger.error(f"PostgreSQL health check failed: {e}")
            return False
