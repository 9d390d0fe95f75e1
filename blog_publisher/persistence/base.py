"""Abstract base class for storage backends.

This module defines the API contract that all storage backends must implement.
"""

import abc
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

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


@dataclass
class StorageConfig:
    """Configuration for storage backends.

    Attributes:
        backend_type: Type of storage backend (memory, sqlite, postgres).
        connection_string: Database connection string (for SQL backends).
        db_path: File path for file-based backends (SQLite).
        pool_size: Connection pool size (for connection-pooled backends).
        auto_migrate: Whether to auto-run migrations on init.
        extra: Additional backend-specific configuration.
    """

    backend_type: str = "sqlite"
    connection_string: Optional[str] = None
    db_path: Optional[str] = None
    pool_size: int = 5
    auto_migrate: bool = True
    extra: Dict[str, Any] = field(default_factory=dict)


class StorageBackend(abc.ABC):
    """Abstract base class for storage backends.

    All storage backends must implement this interface to provide
    durable state for the publish job queue.

    The interface covers:
    - Target registry (per-location publish destinations)
    - Draft reads (publishable title and content)
    - Job store (queued work and its state machine)
    - Publish ledger (insert-if-absent, unique per draft/platform/target)
    - Statistics

    Every state-changing method is a single atomic statement against
    the underlying store; callers must not assume multi-call atomicity.
    """

    @abc.abstractmethod
    def initialize(self) -> None:
        """Initialize the storage backend.

        This should create tables/schemas if they don't exist
        and run any pending migrations.
        """
        pass

    @abc.abstractmethod
    def close(self) -> None:
        """Close the storage backend and release resources."""
        pass

    # === Target Registry ===

    @abc.abstractmethod
    def upsert_target(self, target: PublishTargetCreate) -> PublishTarget:
        """Create a target or replace its platform, config and active flag.

        Args:
            target: The target data.

        Returns:
            The stored PublishTarget.
        """
        pass

    @abc.abstractmethod
    def get_target(self, target_id: str) -> Optional[PublishTarget]:
        """Get a target by ID.

        Args:
            target_id: The target identifier.

        Returns:
            PublishTarget or None if not found.
        """
        pass

    @abc.abstractmethod
    def list_targets(self, location_id: str) -> List[PublishTarget]:
        """List all targets of a location, active or not.

        Args:
            location_id: The owning location.

        Returns:
            List of PublishTarget objects.
        """
        pass

    @abc.abstractmethod
    def get_active_targets(self, location_id: str) -> List[PublishTarget]:
        """List the active targets of a location.

        A target whose is_active flag is unset counts as active.

        Args:
            location_id: The owning location.

        Returns:
            List of active PublishTarget objects.
        """
        pass

    @abc.abstractmethod
    def deactivate_target(self, target_id: str) -> Optional[PublishTarget]:
        """Deactivate a target. Targets are never deleted.

        Args:
            target_id: The target identifier.

        Returns:
            Updated PublishTarget or None if not found.
        """
        pass

    # === Drafts ===

    @abc.abstractmethod
    def save_draft(self, draft: DraftCreate) -> PublishableDraft:
        """Create or replace a draft's publishable content.

        Args:
            draft: The draft data.

        Returns:
            The stored draft.
        """
        pass

    @abc.abstractmethod
    def get_publishable_draft(self, draft_id: str) -> Optional[PublishableDraft]:
        """Get a draft's title and rendered content.

        Args:
            draft_id: The draft identifier.

        Returns:
            PublishableDraft or None if not found.
        """
        pass

    # === Job Store ===

    @abc.abstractmethod
    def create_job(self, job: PublishJobCreate) -> PublishJob:
        """Insert a new queued job with zero attempts.

        Args:
            job: The job to create.

        Returns:
            The created PublishJob with generated ID and timestamps.
        """
        pass

    @abc.abstractmethod
    def get_job(self, job_id: str) -> Optional[PublishJob]:
        """Get a job by ID.

        Args:
            job_id: The job identifier.

        Returns:
            PublishJob or None if not found.
        """
        pass

    @abc.abstractmethod
    def list_queued_jobs(self, draft_id: str, location_id: str, limit: int = 10) -> List[PublishJob]:
        """List queued jobs of a draft, oldest first.

        Args:
            draft_id: The draft identifier.
            location_id: The owning location.
            limit: Maximum number of jobs.

        Returns:
            Jobs ordered by created_at ascending, insertion order on ties.
        """
        pass

    @abc.abstractmethod
    def claim_job(self, job_id: str) -> Optional[PublishJob]:
        """Move a job from queued to running and increment attempts.

        The transition is conditional: a job that is no longer queued
        is left untouched.

        Args:
            job_id: The job identifier.

        Returns:
            The running PublishJob, or None if the job was not queued.
        """
        pass

    @abc.abstractmethod
    def complete_job(self, job_id: str) -> Optional[PublishJob]:
        """Mark a queued or running job as done.

        Args:
            job_id: The job identifier.

        Returns:
            Updated PublishJob, or None if the job was not queued/running.
        """
        pass

    @abc.abstractmethod
    def fail_job(self, job_id: str, error_message: str) -> Optional[PublishJob]:
        """Mark a queued or running job as failed.

        Args:
            job_id: The job identifier.
            error_message: Stored as last_error.

        Returns:
            Updated PublishJob, or None if the job was not queued/running.
        """
        pass

    @abc.abstractmethod
    def list_jobs(
        self,
        status: Optional[PublishJobStatus] = None,
        draft_id: Optional[str] = None,
        location_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[PublishJob]:
        """List jobs with optional filters, newest first.

        Args:
            status: Optional status filter.
            draft_id: Optional draft filter.
            location_id: Optional location filter.
            limit: Maximum results to return.
            offset: Offset for pagination.

        Returns:
            List of PublishJob objects.
        """
        pass

    @abc.abstractmethod
    def fail_stale_jobs(self, older_than_seconds: int, error_message: str) -> int:
        """Fail jobs stuck in running longer than the threshold.

        Args:
            older_than_seconds: Age threshold based on updated_at.
            error_message: Stored as last_error.

        Returns:
            Number of jobs failed.
        """
        pass

    # === Publish Ledger ===

    @abc.abstractmethod
    def get_ledger_entry(self, draft_id: str, platform: str, target_id: str) -> Optional[PublishLedgerEntry]:
        """Get the ledger entry for a draft/platform/target triple.

        Args:
            draft_id: The draft identifier.
            platform: The platform name.
            target_id: The target identifier.

        Returns:
            PublishLedgerEntry or None if not published.
        """
        pass

    @abc.abstractmethod
    def record_ledger_entry(
        self,
        draft_id: str,
        platform: str,
        target_id: str,
        external_id: str,
        published_url: Optional[str] = None,
    ) -> bool:
        """Insert a ledger entry unless one exists for the triple.

        Args:
            draft_id: The draft identifier.
            platform: The platform name.
            target_id: The target identifier.
            external_id: Identifier assigned by the platform.
            published_url: Optional public URL.

        Returns:
            True if a row was inserted, False if one already existed.
        """
        pass

    @abc.abstractmethod
    def list_ledger_entries(self, draft_id: str) -> List[PublishLedgerEntry]:
        """List the ledger entries of a draft, oldest first.

        Args:
            draft_id: The draft identifier.

        Returns:
            List of PublishLedgerEntry objects.
        """
        pass

    def is_published(self, draft_id: str, platform: str, target_id: str) -> bool:
        """Check whether the ledger records this triple as published."""
        return self.get_ledger_entry(draft_id, platform, target_id) is not None

    # === Statistics ===

    @abc.abstractmethod
    def get_stats(self) -> QueueStats:
        """Get publish queue statistics.

        Returns:
            QueueStats with counts and metrics.
        """
        pass

    # === Health Check ===

    @abc.abstractmethod
    def health_check(self) -> bool:
        """Check if the storage backend is healthy.

        Returns:
            True if healthy, False otherwise.
        """
        pass
