"""Persistence models for publish targets, jobs, the ledger and drafts.

These models describe the durable state of the publish job queue:
- Targets: where a location's content can be published
- Jobs: one unit of work per (draft, target) pair
- Ledger: record of successful publishes, the idempotency source of truth
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class PublishJobStatus(str, Enum):
    """Status of a publish job."""

    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATUSES = (PublishJobStatus.DONE, PublishJobStatus.FAILED)


class PublishTargetCreate(BaseModel):
    """Input model for creating or replacing a publish target.

    Attributes:
        target_id: Unique target identifier.
        location_id: Owning location (tenant).
        platform: Platform name (e.g. 'ghl', 'wordpress').
        config: Platform-specific configuration.
        is_active: Whether the target is active. None means active.
    """

    target_id: str = Field(min_length=1)
    location_id: str = Field(min_length=1)
    platform: str = Field(min_length=1)
    config: Dict[str, Any] = Field(default_factory=dict)
    is_active: Optional[bool] = True


class PublishTarget(BaseModel):
    """A configured publish destination.

    Attributes:
        target_id: Unique target identifier.
        location_id: Owning location (tenant).
        platform: Platform name.
        config: Platform-specific configuration.
        is_active: True, False, or None (legacy rows, treated as active).
        created_at: Creation timestamp.
        updated_at: Last update timestamp.
    """

    target_id: str
    location_id: str
    platform: str
    config: Dict[str, Any] = Field(default_factory=dict)
    is_active: Optional[bool] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def active(self) -> bool:
        """Whether the target takes part in enqueue."""
        return self.is_active is None or bool(self.is_active)


class PublishJobCreate(BaseModel):
    """Input model for creating a publish job."""

    draft_id: str
    location_id: str
    target_id: str
    platform: str


class PublishJob(BaseModel):
    """A publish attempt for one draft and one target.

    Attributes:
        job_id: Unique job identifier.
        draft_id: The draft being published.
        location_id: Owning location.
        target_id: Destination target.
        platform: Denormalized target platform.
        status: Current job status.
        attempts: Number of times the job was picked up.
        last_error: Last failure message (set only on failed).
        created_at: Job creation timestamp.
        updated_at: Last update timestamp.
    """

    job_id: str
    draft_id: str
    location_id: str
    target_id: str
    platform: str
    status: PublishJobStatus = PublishJobStatus.QUEUED
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class PublishLedgerEntry(BaseModel):
    """A successful publish, unique per (draft_id, platform, target_id).

    Attributes:
        ledger_id: Unique entry identifier.
        draft_id: The published draft.
        platform: The platform published to.
        target_id: The target published to.
        external_id: Identifier assigned by the platform.
        published_url: Public URL, if one could be derived.
        created_at: When the entry was written.
    """

    ledger_id: str
    draft_id: str
    platform: str
    target_id: str
    external_id: str
    published_url: Optional[str] = None
    created_at: datetime


class DraftCreate(BaseModel):
    """Input model for seeding a draft.

    Drafts are owned by the editorial side of the system; the queue
    only reads them.
    """

    draft_id: str = Field(min_length=1)
    location_id: str = Field(min_length=1)
    title: str = ""
    content_html: str = ""


class PublishableDraft(BaseModel):
    """The parts of a draft needed to publish it."""

    draft_id: str
    location_id: str
    title: str
    content: str


class QueueStats(BaseModel):
    """Aggregated publish queue statistics.

    Attributes:
        total_jobs: Total number of jobs.
        queued_jobs: Jobs waiting to be dispatched.
        running_jobs: Jobs currently running.
        done_jobs: Successfully published jobs.
        failed_jobs: Failed jobs.
        ledger_entries: Total ledger rows.
        oldest_queued_job_age_seconds: Age of the oldest queued job.
    """

    total_jobs: int = 0
    queued_jobs: int = 0
    running_jobs: int = 0
    done_jobs: int = 0
    failed_jobs: int = 0
    ledger_entries: int = 0
    oldest_queued_job_age_seconds: Optional[float] = None
