"""Dispatch step and the per-job state machine.

A job moves queued -> running -> done | failed. Each transition is a
single conditional storage update, and done/failed are terminal. The
ledger is checked before any adapter call and written before the job
is marked done.
"""

import logging
from typing import List, Optional

from ..adapters.base import AdapterRegistry, NotFoundError, PublishError, PublishResult
from ..config import DEFAULT_DISPATCH_LIMIT
from ..metrics import (
    record_adapter_error,
    record_job_status_change,
    record_ledger_write,
    track_job_execution,
    traced,
)
from ..persistence.base import StorageBackend
from ..persistence.models import PublishJob, PublishJobStatus
from ..utils import normalize_platform, normalize_target_id, truncate_error
from .models import JobOutcome, JobOutcomeKind, StepResult

logger = logging.getLogger(__name__)


def describe_exception(exc: BaseException) -> str:
    """Render an exception as a last_error message.

    PublishError messages are already greppable codes and are kept as
    is; anything else is prefixed with its class name.
    """
    if isinstance(exc, PublishError):
        return str(exc)
    message = str(exc)
    return f"{type(exc).__name__}: {message}" if message else type(exc).__name__


def _mark_done(storage: StorageBackend, job: PublishJob, from_status: str) -> None:
    try:
        if storage.complete_job(job.job_id) is None:
            logger.warning(f"Job {job.job_id} was no longer queued/running, not marked done")
            return
        record_job_status_change(from_status, PublishJobStatus.DONE.value)
    except Exception:
        logger.exception(f"Could not mark job {job.job_id} done")


def _mark_failed(storage: StorageBackend, job: PublishJob, from_status: str, message: str) -> None:
    try:
        if storage.fail_job(job.job_id, message) is None:
            logger.warning(f"Job {job.job_id} was no longer queued/running, not marked failed")
            return
        record_job_status_change(from_status, PublishJobStatus.FAILED.value)
    except Exception:
        logger.exception(f"Could not mark job {job.job_id} failed")


def _claim(storage: StorageBackend, job: PublishJob) -> Optional[str]:
    """Move the job to running.

    Returns:
        The status the job is leaving, or None if another dispatcher
        already owns it. A failing claim write is logged and the
        attempt goes ahead from queued.
    """
    try:
        claimed = storage.claim_job(job.job_id)
    except Exception:
        logger.exception(f"Could not mark job {job.job_id} running, continuing")
        return PublishJobStatus.QUEUED.value

    if claimed is None:
        return None
    record_job_status_change(PublishJobStatus.QUEUED.value, PublishJobStatus.RUNNING.value)
    return PublishJobStatus.RUNNING.value


def _publish(storage: StorageBackend, adapters: AdapterRegistry, job: PublishJob, platform: str) -> PublishResult:
    adapter = adapters.require(platform)

    target = storage.get_target(job.target_id)
    if target is None:
        raise NotFoundError("publish_target_missing")

    draft = storage.get_publishable_draft(job.draft_id)
    if draft is None:
        raise NotFoundError("draft_missing")

    return adapter.publish(target, draft, job)


def run_job(storage: StorageBackend, adapters: AdapterRegistry, job: PublishJob) -> JobOutcome:
    """Run one job through the state machine. Never raises.

    Args:
        storage: The storage backend.
        adapters: Platform adapters.
        job: A job read as queued.

    Returns:
        JobOutcome describing what happened.
    """
    platform = normalize_platform(job.platform)
    target_id = normalize_target_id(job.target_id)
    outcome = JobOutcome(job_id=job.job_id, platform=platform, target_id=target_id, kind=JobOutcomeKind.SKIPPED)

    with track_job_execution(job.job_id, platform) as tracking:
        from_status = _claim(storage, job)
        if from_status is None:
            logger.info(f"Job {job.job_id} already claimed elsewhere, skipping")
            tracking["status"] = JobOutcomeKind.SKIPPED.value
            return outcome

        try:
            already = storage.get_ledger_entry(job.draft_id, platform, target_id)
            if already is not None:
                logger.info(f"Job {job.job_id}: draft {job.draft_id} already published to {platform}:{target_id}")
                _mark_done(storage, job, from_status)
                tracking["status"] = JobOutcomeKind.ALREADY_PUBLISHED.value
                outcome.kind = JobOutcomeKind.ALREADY_PUBLISHED
                outcome.external_id = already.external_id
                outcome.published_url = already.published_url
                return outcome

            result = _publish(storage, adapters, job, platform)
        except Exception as e:
            message = truncate_error(describe_exception(e))
            record_adapter_error(platform, type(e).__name__)
            logger.warning(f"Publish job {job.job_id} ({platform}:{target_id}) failed: {message}")
            _mark_failed(storage, job, from_status, message)
            tracking.update(status=JobOutcomeKind.FAILED.value, error=message)
            outcome.kind = JobOutcomeKind.FAILED
            outcome.error = message
            return outcome

        try:
            inserted = storage.record_ledger_entry(
                job.draft_id,
                platform,
                target_id,
                result.external_id,
                result.published_url,
            )
        except Exception as e:
            message = truncate_error(f"ledger_write_failed: {describe_exception(e)}")
            record_ledger_write("error")
            logger.error(f"Publish job {job.job_id} published as {result.external_id} but ledger write failed: {e}")
            _mark_failed(storage, job, from_status, message)
            tracking.update(status=JobOutcomeKind.FAILED.value, error=message)
            outcome.kind = JobOutcomeKind.FAILED
            outcome.error = message
            outcome.external_id = result.external_id
            return outcome

        record_ledger_write("inserted" if inserted else "duplicate")
        _mark_done(storage, job, from_status)
        logger.info(f"Publish job {job.job_id} done: {platform}:{target_id} -> {result.external_id}")

        tracking["status"] = JobOutcomeKind.PUBLISHED.value
        outcome.kind = JobOutcomeKind.PUBLISHED
        outcome.external_id = result.external_id
        outcome.published_url = result.published_url
        return outcome


@traced("publish_queue.dispatch")
def try_dispatch(
    storage: StorageBackend,
    adapters: AdapterRegistry,
    draft_id: str,
    location_id: str,
    limit: int = DEFAULT_DISPATCH_LIMIT,
) -> StepResult[List[JobOutcome]]:
    """Run up to ``limit`` queued jobs of a draft, oldest first.

    Jobs run sequentially; a failing job never stops the batch.

    Returns:
        StepResult with one outcome per job run.
    """
    try:
        jobs = storage.list_queued_jobs(draft_id, location_id, limit=limit)
    except Exception as e:
        return StepResult.from_exception(e)

    outcomes: List[JobOutcome] = []
    for job in jobs:
        try:
            outcomes.append(run_job(storage, adapters, job))
        except Exception:
            logger.exception(f"Unexpected error running publish job {job.job_id}")

    return StepResult.success(outcomes)


def dispatch_queued(
    storage: StorageBackend,
    adapters: AdapterRegistry,
    draft_id: str,
    location_id: str,
    limit: int = DEFAULT_DISPATCH_LIMIT,
) -> List[JobOutcome]:
    """Dispatch queued jobs for a draft. Never raises.

    Returns:
        Outcomes of the jobs run, empty if the jobs could not be read.
    """
    result = try_dispatch(storage, adapters, draft_id, location_id, limit=limit)
    if not result.ok:
        logger.warning(f"Dispatch failed for draft {draft_id} ({location_id}): {result.error_type}: {result.error}")
        return []

    outcomes = result.value or []
    if outcomes:
        failed = sum(1 for o in outcomes if o.kind == JobOutcomeKind.FAILED)
        logger.info(f"Dispatched {len(outcomes)} job(s) for draft {draft_id}, {failed} failed")
    return outcomes
