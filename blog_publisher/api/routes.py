"""API routes for the publish job queue.

This module defines the RESTful endpoints for:
- The draft-approved hook
- Operator inspection and re-drive of jobs
- Publish target setup
- Stats and health
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status

from ..persistence.models import PublishJob, PublishJobStatus, PublishTarget, PublishTargetCreate, QueueStats
from ..queue import PublishQueue
from ..utils import normalize_platform
from .dependencies import get_publish_queue
from .models import (
    DispatchRequest,
    DispatchResponse,
    DraftApprovedRequest,
    DraftApprovedResponse,
    HealthResponse,
    JobListResponse,
    LedgerResponse,
    RecoverStaleRequest,
    RecoverStaleResponse,
    TargetListResponse,
    TargetUpsertRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1")


# === Drafts ===


@router.post(
    "/drafts/{draft_id}/approved",
    response_model=DraftApprovedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["drafts"],
    summary="Draft approved hook",
    description="Enqueue publish jobs for an approved draft and dispatch them in the background.",
)
def draft_approved(
    draft_id: str,
    request: DraftApprovedRequest,
    background_tasks: BackgroundTasks,
    queue: PublishQueue = Depends(get_publish_queue),
) -> DraftApprovedResponse:
    """Accept an approval; never fails because of publishing."""
    queue.on_draft_approved(draft_id, request.location_id, run_in_background=background_tasks.add_task)
    return DraftApprovedResponse(draft_id=draft_id, location_id=request.location_id)


@router.post(
    "/drafts/{draft_id}/dispatch",
    response_model=DispatchResponse,
    tags=["drafts"],
    summary="Dispatch queued jobs now",
)
def dispatch_draft(
    draft_id: str,
    request: DispatchRequest,
    queue: PublishQueue = Depends(get_publish_queue),
) -> DispatchResponse:
    """Run a draft's queued jobs inline and report their outcomes."""
    outcomes = queue.dispatch_queued(draft_id, request.location_id, limit=request.limit)
    return DispatchResponse(draft_id=draft_id, outcomes=outcomes)


@router.get(
    "/drafts/{draft_id}/ledger",
    response_model=LedgerResponse,
    tags=["drafts"],
    summary="Publish ledger of a draft",
)
def get_draft_ledger(
    draft_id: str,
    queue: PublishQueue = Depends(get_publish_queue),
) -> LedgerResponse:
    return LedgerResponse(draft_id=draft_id, entries=queue.list_ledger(draft_id))


# === Jobs ===


@router.get(
    "/jobs",
    response_model=JobListResponse,
    tags=["jobs"],
    summary="List publish jobs",
    description="List jobs newest first, optionally filtered by status, draft or location.",
)
def list_jobs(
    status_filter: Optional[PublishJobStatus] = Query(None, alias="status"),
    draft_id: Optional[str] = Query(None),
    location_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    queue: PublishQueue = Depends(get_publish_queue),
) -> JobListResponse:
    jobs = queue.list_jobs(
        status=status_filter, draft_id=draft_id, location_id=location_id, limit=limit, offset=offset
    )
    return JobListResponse(jobs=jobs, count=len(jobs), limit=limit, offset=offset)


@router.post(
    "/jobs/recover-stale",
    response_model=RecoverStaleResponse,
    tags=["jobs"],
    summary="Fail jobs stuck in running",
)
def recover_stale_jobs(
    request: RecoverStaleRequest,
    queue: PublishQueue = Depends(get_publish_queue),
) -> RecoverStaleResponse:
    count = queue.recover_stale_jobs(request.older_than_seconds)
    return RecoverStaleResponse(failed_jobs=count)


@router.get(
    "/jobs/{job_id}",
    response_model=PublishJob,
    tags=["jobs"],
    summary="Get a publish job",
)
def get_job(
    job_id: str,
    queue: PublishQueue = Depends(get_publish_queue),
) -> PublishJob:
    job = queue.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return job


@router.post(
    "/jobs/{job_id}/requeue",
    response_model=PublishJob,
    status_code=status.HTTP_201_CREATED,
    tags=["jobs"],
    summary="Requeue a failed job",
    description="Create a fresh queued job from a failed one whose target is not yet in the ledger.",
)
def requeue_job(
    job_id: str,
    queue: PublishQueue = Depends(get_publish_queue),
) -> PublishJob:
    job = queue.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")

    new_job = queue.requeue_job(job_id)
    if new_job is None:
        raise HTTPException(
            status_code=409,
            detail=f"Job {job_id} is not eligible for requeue (status: {job.status.value})",
        )
    return new_job


# === Targets ===


@router.put(
    "/targets/{target_id}",
    response_model=PublishTarget,
    tags=["targets"],
    summary="Create or replace a publish target",
)
def upsert_target(
    target_id: str,
    request: TargetUpsertRequest,
    queue: PublishQueue = Depends(get_publish_queue),
) -> PublishTarget:
    target = queue.storage.upsert_target(
        PublishTargetCreate(
            target_id=target_id,
            location_id=request.location_id,
            platform=normalize_platform(request.platform),
            config=request.config,
            is_active=request.is_active,
        )
    )
    logger.info(f"Target {target_id} ({target.platform}) saved for location {target.location_id}")
    return target


@router.post(
    "/targets/{target_id}/deactivate",
    response_model=PublishTarget,
    tags=["targets"],
    summary="Deactivate a publish target",
)
def deactivate_target(
    target_id: str,
    queue: PublishQueue = Depends(get_publish_queue),
) -> PublishTarget:
    target = queue.storage.deactivate_target(target_id)
    if target is None:
        raise HTTPException(status_code=404, detail=f"Target {target_id} not found")
    logger.info(f"Target {target_id} deactivated")
    return target


@router.get(
    "/locations/{location_id}/targets",
    response_model=TargetListResponse,
    tags=["targets"],
    summary="List a location's publish targets",
)
def list_location_targets(
    location_id: str,
    queue: PublishQueue = Depends(get_publish_queue),
) -> TargetListResponse:
    return TargetListResponse(location_id=location_id, targets=queue.storage.list_targets(location_id))


# === Stats & Health ===


@router.get(
    "/stats",
    response_model=QueueStats,
    tags=["stats"],
    summary="Publish queue statistics",
)
def get_stats(queue: PublishQueue = Depends(get_publish_queue)) -> QueueStats:
    return queue.get_stats()


@router.get(
    "/health",
    response_model=HealthResponse,
    tags=["stats"],
    summary="Health check",
)
def health(queue: PublishQueue = Depends(get_publish_queue)) -> HealthResponse:
    healthy = queue.storage.health_check()
    return HealthResponse(
        status="healthy" if healthy else "degraded",
        storage=healthy,
        platforms=queue.adapters.platforms,
    )
