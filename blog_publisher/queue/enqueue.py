"""Enqueue step: fan an approved draft out into one job per active target."""

import logging
from typing import List

from ..metrics import record_job_enqueued, traced
from ..persistence.base import StorageBackend
from ..persistence.models import PublishJob, PublishJobCreate
from ..utils import normalize_platform, normalize_target_id
from .models import StepResult

logger = logging.getLogger(__name__)


@traced("publish_queue.enqueue")
def try_enqueue(storage: StorageBackend, draft_id: str, location_id: str) -> StepResult[List[PublishJob]]:
    """Create queued jobs for every active target not yet published.

    Targets with an empty platform or target id are skipped, as are
    targets the ledger already records for this draft. Jobs created
    before a failure are kept.

    Args:
        storage: The storage backend.
        draft_id: The approved draft.
        location_id: The draft's owning location.

    Returns:
        StepResult with the created jobs.
    """
    created: List[PublishJob] = []
    try:
        targets = storage.get_active_targets(location_id)
        logger.debug(f"Enqueue for draft {draft_id}: {len(targets)} active target(s) in {location_id}")

        for target in targets:
            platform = normalize_platform(target.platform)
            target_id = normalize_target_id(target.target_id)
            if not platform or not target_id:
                logger.debug(f"Skipping target with empty platform or id: {target.target_id!r}")
                continue

            if storage.is_published(draft_id, platform, target_id):
                logger.debug(f"Draft {draft_id} already published to {platform}:{target_id}")
                continue

            job = storage.create_job(
                PublishJobCreate(
                    draft_id=draft_id,
                    location_id=location_id,
                    target_id=target_id,
                    platform=platform,
                )
            )
            record_job_enqueued(platform)
            created.append(job)
    except Exception as e:
        logger.debug(f"Enqueue for draft {draft_id} stopped after {len(created)} job(s)")
        return StepResult.from_exception(e)

    return StepResult.success(created)


def enqueue(storage: StorageBackend, draft_id: str, location_id: str) -> List[PublishJob]:
    """Enqueue publish jobs for a draft. Never raises.

    Returns:
        The created jobs, empty if the step failed.
    """
    result = try_enqueue(storage, draft_id, location_id)
    if not result.ok:
        logger.warning(f"Enqueue failed for draft {draft_id} ({location_id}): {result.error_type}: {result.error}")
        return []

    jobs = result.value or []
    logger.info(f"Enqueued {len(jobs)} publish job(s) for draft {draft_id}")
    return jobs
