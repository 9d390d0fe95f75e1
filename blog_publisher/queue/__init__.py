"""Publish job queue.

Usage:
    from blog_publisher.queue import PublishQueue

    queue = PublishQueue(storage, adapters)
    queue.on_draft_approved(draft_id, location_id, run_in_background=background_tasks.add_task)
"""

from .dispatch import describe_exception, dispatch_queued, run_job, try_dispatch
from .enqueue import enqueue, try_enqueue
from .models import JobOutcome, JobOutcomeKind, StepResult
from .service import STALE_RUNNING_JOB_ERROR, PublishQueue

__all__ = [
    "JobOutcome",
    "JobOutcomeKind",
    "PublishQueue",
    "STALE_RUNNING_JOB_ERROR",
    "StepResult",
    "describe_exception",
    "dispatch_queued",
    "enqueue",
    "run_job",
    "try_dispatch",
    "try_enqueue",
]
