"""Publish queue service: the approval entry point and operator actions."""

import logging
from typing import Any, Callable, List, Optional

from ..adapters.base import AdapterRegistry
from ..config import DEFAULT_DISPATCH_LIMIT, STALE_RUNNING_THRESHOLD_SECONDS
from ..metrics import record_job_enqueued, record_stale_jobs_recovered, update_queue_size
from ..persistence.base import StorageBackend
from ..persistence.models import (
    PublishJob,
    PublishJobCreate,
    PublishJobStatus,
    PublishLedgerEntry,
    QueueStats,
)
from .dispatch import dispatch_queued as _dispatch_queued
from .enqueue import enqueue as _enqueue
from .models import JobOutcome

logger = logging.getLogger(__name__)

STALE_RUNNING_JOB_ERROR = "stale_running_job"

BackgroundRunner = Callable[..., Any]


class PublishQueue:
    """Publish job queue bound to one storage backend and adapter registry.

    Example:
        queue = PublishQueue(create_storage(), create_default_registry())
        queue.on_draft_approved("draft-1", "loc-1")
    """

    def __init__(
        self,
        storage: StorageBackend,
        adapters: AdapterRegistry,
        dispatch_limit: int = DEFAULT_DISPATCH_LIMIT,
    ):
        self.storage = storage
        self.adapters = adapters
        self.dispatch_limit = dispatch_limit

    def on_draft_approved(
        self,
        draft_id: str,
        location_id: str,
        run_in_background: Optional[BackgroundRunner] = None,
    ) -> None:
        """Enqueue jobs for an approved draft and dispatch them.

        Enqueue runs inline. Dispatch is handed to ``run_in_background``
        when given (e.g. ``BackgroundTasks.add_task``), otherwise it runs
        inline too. Never raises.

        Args:
            draft_id: The approved draft.
            location_id: The draft's owning location.
            run_in_background: Optional ``fn(func, *args)`` scheduler.
        """
        try:
            self.enqueue(draft_id, location_id)

            if run_in_background is not None:
                run_in_background(self.dispatch_queued, draft_id, location_id)
            else:
                self.dispatch_queued(draft_id, location_id)
        except Exception:
            logger.exception(f"Publish hook failed for approved draft {draft_id}")

    def enqueue(self, draft_id: str, location_id: str) -> List[PublishJob]:
        """Create jobs for a draft's active, unpublished targets. Never raises."""
        return _enqueue(self.storage, draft_id, location_id)

    def dispatch_queued(
        self, draft_id: str, location_id: str, limit: Optional[int] = None
    ) -> List[JobOutcome]:
        """Run queued jobs of a draft, oldest first. Never raises."""
        return _dispatch_queued(
            self.storage,
            self.adapters,
            draft_id,
            location_id,
            limit=self.dispatch_limit if limit is None else limit,
        )

    # === Operator actions ===

    def requeue_job(self, job_id: str) -> Optional[PublishJob]:
        """Create a fresh queued job from a failed one.

        The source job stays failed. Nothing is created if the job is
        not failed or its target is already in the ledger.

        Returns:
            The new job, or None if the job is not eligible.
        """
        job = self.storage.get_job(job_id)
        if job is None:
            logger.info(f"Requeue: job {job_id} not found")
            return None
        if job.status != PublishJobStatus.FAILED:
            logger.info(f"Requeue: job {job_id} is {job.status.value}, not failed")
            return None
        if self.storage.is_published(job.draft_id, job.platform, job.target_id):
            logger.info(f"Requeue: draft {job.draft_id} already published to {job.platform}:{job.target_id}")
            return None

        new_job = self.storage.create_job(
            PublishJobCreate(
                draft_id=job.draft_id,
                location_id=job.location_id,
                target_id=job.target_id,
                platform=job.platform,
            )
        )
        record_job_enqueued(new_job.platform)
        logger.info(f"Requeued failed job {job_id} as {new_job.job_id}")
        return new_job

    def recover_stale_jobs(self, older_than_seconds: int = STALE_RUNNING_THRESHOLD_SECONDS) -> int:
        """Fail jobs stuck in running. They are never requeued.

        Returns:
            Number of jobs failed.
        """
        count = self.storage.fail_stale_jobs(older_than_seconds, STALE_RUNNING_JOB_ERROR)
        record_stale_jobs_recovered(count)
        if count:
            logger.warning(f"Failed {count} job(s) running longer than {older_than_seconds}s")
        return count

    # === Read helpers ===

    def get_job(self, job_id: str) -> Optional[PublishJob]:
        return self.storage.get_job(job_id)

    def list_jobs(
        self,
        status: Optional[PublishJobStatus] = None,
        draft_id: Optional[str] = None,
        location_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[PublishJob]:
        return self.storage.list_jobs(
            status=status, draft_id=draft_id, location_id=location_id, limit=limit, offset=offset
        )

    def list_ledger(self, draft_id: str) -> List[PublishLedgerEntry]:
        return self.storage.list_ledger_entries(draft_id)

    def get_stats(self) -> QueueStats:
        """Get queue statistics and refresh the queue size gauges."""
        stats = self.storage.get_stats()
        update_queue_size(PublishJobStatus.QUEUED.value, stats.queued_jobs)
        update_queue_size(PublishJobStatus.RUNNING.value, stats.running_jobs)
        update_queue_size(PublishJobStatus.DONE.value, stats.done_jobs)
        update_queue_size(PublishJobStatus.FAILED.value, stats.failed_jobs)
        return stats
