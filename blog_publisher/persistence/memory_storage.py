"""In-memory storage backend implementation.

Provides a thread-safe in-memory store for testing and local development.

Note: Data is not persisted and will be lost on restart.
"""

import itertools
import logging
import threading
import uuid
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

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

LedgerKey = Tuple[str, str, str]


class MemoryStorage(StorageBackend):
    """In-memory storage backend.

    Every operation holds a single re-entrant lock, which gives each
    method the same atomicity a SQL backend gets from one statement.
    Returned models are copies; mutating them does not change the store.
    """

    def __init__(self, config: Optional[StorageConfig] = None):
        """Initialize in-memory storage.

        Args:
            config: Optional storage configuration.
        """
        self.config = config or StorageConfig(backend_type="memory")
        self._lock = threading.RLock()

        self._targets: Dict[str, PublishTarget] = {}
        self._drafts: Dict[str, PublishableDraft] = {}
        self._jobs: Dict[str, PublishJob] = {}
        self._ledger: Dict[LedgerKey, PublishLedgerEntry] = {}

        # Insertion order, used to break created_at ties
        self._job_sequence: Dict[str, int] = {}
        self._counter = itertools.count()

        self._initialized = False

        if self.config.auto_migrate:
            self.initialize()

    def initialize(self) -> None:
        """Initialize the in-memory store."""
        with self._lock:
            if self._initialized:
                return
            self._initialized = True
            logger.info("In-memory storage initialized")

    def close(self) -> None:
        """Close the store (no-op for memory backend)."""
        pass

    # === Target Registry ===

    def upsert_target(self, target: PublishTargetCreate) -> PublishTarget:
        """Create or replace a target."""
        with self._lock:
            now = utc_now()
            existing = self._targets.get(target.target_id)
            stored = PublishTarget(
                target_id=target.target_id,
                location_id=target.location_id,
                platform=target.platform,
                config=dict(target.config),
                is_active=target.is_active,
                created_at=existing.created_at if existing else now,
                updated_at=now,
            )
            self._targets[target.target_id] = stored
            logger.debug(f"Upserted target {target.target_id} ({target.platform})")
            return stored.model_copy(deep=True)

    def get_target(self, target_id: str) -> Optional[PublishTarget]:
        """Get a target by ID."""
        with self._lock:
            target = self._targets.get(target_id)
            return target.model_copy(deep=True) if target else None

    def list_targets(self, location_id: str) -> List[PublishTarget]:
        """List all targets of a location."""
        with self._lock:
            targets = [t for t in self._targets.values() if t.location_id == location_id]
            targets.sort(key=lambda t: t.created_at)
            return [t.model_copy(deep=True) for t in targets]

    def get_active_targets(self, location_id: str) -> List[PublishTarget]:
        """List the active targets of a location."""
        return [t for t in self.list_targets(location_id) if t.active]

    def deactivate_target(self, target_id: str) -> Optional[PublishTarget]:
        """Deactivate a target."""
        with self._lock:
            target = self._targets.get(target_id)
            if target is None:
                return None
            target.is_active = False
            target.updated_at = utc_now()
            logger.debug(f"Deactivated target {target_id}")
            return target.model_copy(deep=True)

    # === Drafts ===

    def save_draft(self, draft: DraftCreate) -> PublishableDraft:
        """Create or replace a draft."""
        with self._lock:
            stored = PublishableDraft(
                draft_id=draft.draft_id,
                location_id=draft.location_id,
                title=draft.title,
                content=draft.content_html,
            )
            self._drafts[draft.draft_id] = stored
            return stored.model_copy()

    def get_publishable_draft(self, draft_id: str) -> Optional[PublishableDraft]:
        """Get a draft's publishable content."""
        with self._lock:
            draft = self._drafts.get(draft_id)
            return draft.model_copy() if draft else None

    # === Job Store ===

    def create_job(self, job: PublishJobCreate) -> PublishJob:
        """Insert a new queued job."""
        with self._lock:
            job_id = str(uuid.uuid4())
            now = utc_now()
            stored = PublishJob(
                job_id=job_id,
                draft_id=job.draft_id,
                location_id=job.location_id,
                target_id=job.target_id,
                platform=job.platform,
                status=PublishJobStatus.QUEUED,
                attempts=0,
                created_at=now,
                updated_at=now,
            )
            self._jobs[job_id] = stored
            self._job_sequence[job_id] = next(self._counter)
            logger.debug(f"Created job {job_id} for draft {job.draft_id} -> {job.platform}:{job.target_id}")
            return stored.model_copy()

    def get_job(self, job_id: str) -> Optional[PublishJob]:
        """Get a job by ID."""
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy() if job else None

    def list_queued_jobs(self, draft_id: str, location_id: str, limit: int = 10) -> List[PublishJob]:
        """List queued jobs of a draft, oldest first."""
        with self._lock:
            jobs = [
                j
                for j in self._jobs.values()
                if j.draft_id == draft_id and j.location_id == location_id and j.status == PublishJobStatus.QUEUED
            ]
            jobs.sort(key=lambda j: (j.created_at, self._job_sequence[j.job_id]))
            return [j.model_copy() for j in jobs[: max(limit, 0)]]

    def claim_job(self, job_id: str) -> Optional[PublishJob]:
        """Move a queued job to running."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != PublishJobStatus.QUEUED:
                return None
            job.status = PublishJobStatus.RUNNING
            job.attempts += 1
            job.updated_at = utc_now()
            return job.model_copy()

    def _finish_job(
        self, job_id: str, status: PublishJobStatus, error_message: Optional[str] = None
    ) -> Optional[PublishJob]:
        """Apply a terminal transition to a queued or running job."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status not in (PublishJobStatus.QUEUED, PublishJobStatus.RUNNING):
                return None
            job.status = status
            if error_message is not None:
                job.last_error = error_message
            job.updated_at = utc_now()
            return job.model_copy()

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
        with self._lock:
            jobs = list(self._jobs.values())

            # Apply filters
            if status is not None:
                jobs = [j for j in jobs if j.status == status]
            if draft_id is not None:
                jobs = [j for j in jobs if j.draft_id == draft_id]
            if location_id is not None:
                jobs = [j for j in jobs if j.location_id == location_id]

            # Sort newest first
            jobs.sort(key=lambda j: (j.created_at, self._job_sequence[j.job_id]), reverse=True)

            return [j.model_copy() for j in jobs[offset : offset + limit]]

    def fail_stale_jobs(self, older_than_seconds: int, error_message: str) -> int:
        """Fail jobs stuck in running."""
        with self._lock:
            now = utc_now()
            threshold = now - timedelta(seconds=older_than_seconds)
            count = 0

            for job in self._jobs.values():
                if job.status == PublishJobStatus.RUNNING and job.updated_at < threshold:
                    job.status = PublishJobStatus.FAILED
                    job.last_error = error_message
                    job.updated_at = now
                    count += 1
                    logger.debug(f"Failed stale job {job.job_id}")

            return count

    # === Publish Ledger ===

    def get_ledger_entry(self, draft_id: str, platform: str, target_id: str) -> Optional[PublishLedgerEntry]:
        """Get the ledger entry for a triple."""
        with self._lock:
            entry = self._ledger.get((draft_id, platform, target_id))
            return entry.model_copy() if entry else None

    def record_ledger_entry(
        self,
        draft_id: str,
        platform: str,
        target_id: str,
        external_id: str,
        published_url: Optional[str] = None,
    ) -> bool:
        """Insert a ledger entry unless one exists."""
        key = (draft_id, platform, target_id)
        with self._lock:
            if key in self._ledger:
                logger.debug(f"Ledger entry already present for {key}")
                return False
            self._ledger[key] = PublishLedgerEntry(
                ledger_id=str(uuid.uuid4()),
                draft_id=draft_id,
                platform=platform,
                target_id=target_id,
                external_id=external_id,
                published_url=published_url,
                created_at=utc_now(),
            )
            return True

    def list_ledger_entries(self, draft_id: str) -> List[PublishLedgerEntry]:
        """List the ledger entries of a draft."""
        with self._lock:
            entries = [e for e in self._ledger.values() if e.draft_id == draft_id]
            entries.sort(key=lambda e: e.created_at)
            return [e.model_copy() for e in entries]

    # === Statistics ===

    def get_stats(self) -> QueueStats:
        """Get publish queue statistics."""
        with self._lock:
            status_counts: Dict[PublishJobStatus, int] = {}
            oldest_queued_age = None
            now = utc_now()

            for job in self._jobs.values():
                status_counts[job.status] = status_counts.get(job.status, 0) + 1

                if job.status == PublishJobStatus.QUEUED:
                    age = (now - job.created_at).total_seconds()
                    if oldest_queued_age is None or age > oldest_queued_age:
                        oldest_queued_age = age

            return QueueStats(
                total_jobs=len(self._jobs),
                queued_jobs=status_counts.get(PublishJobStatus.QUEUED, 0),
                running_jobs=status_counts.get(PublishJobStatus.RUNNING, 0),
                done_jobs=status_counts.get(PublishJobStatus.DONE, 0),
                failed_jobs=status_counts.get(PublishJobStatus.FAILED, 0),
                ledger_entries=len(self._ledger),
                oldest_queued_job_age_seconds=oldest_queued_age,
            )

    # === Health Check ===

    def health_check(self) -> bool:
        """Check if the storage backend is healthy."""
        return True
