"""Request and response models for the publish queue API."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..config import STALE_RUNNING_THRESHOLD_SECONDS
from ..persistence.models import PublishJob, PublishLedgerEntry, PublishTarget
from ..queue.models import JobOutcome


class DraftApprovedRequest(BaseModel):
    """Body of the draft-approved hook."""

    location_id: str = Field(min_length=1)


class DraftApprovedResponse(BaseModel):
    """Acknowledgement of the draft-approved hook.

    The hook always succeeds; publish failures are recorded on jobs.
    """

    accepted: bool = True
    draft_id: str
    location_id: str


class DispatchRequest(BaseModel):
    """Body of the operator dispatch action."""

    location_id: str = Field(min_length=1)
    limit: Optional[int] = Field(default=None, ge=1, le=100)


class DispatchResponse(BaseModel):
    """Result of an operator dispatch."""

    draft_id: str
    outcomes: List[JobOutcome] = Field(default_factory=list)


class JobListResponse(BaseModel):
    """A page of jobs."""

    jobs: List[PublishJob]
    count: int
    limit: int
    offset: int


class LedgerResponse(BaseModel):
    """Ledger entries of a draft."""

    draft_id: str
    entries: List[PublishLedgerEntry]


class RecoverStaleRequest(BaseModel):
    """Body of the stale-running sweep."""

    older_than_seconds: int = Field(default=STALE_RUNNING_THRESHOLD_SECONDS, ge=0)


class RecoverStaleResponse(BaseModel):
    """Result of the stale-running sweep."""

    failed_jobs: int


class TargetUpsertRequest(BaseModel):
    """Body of the target upsert action."""

    location_id: str = Field(min_length=1)
    platform: str = Field(min_length=1)
    config: Dict[str, Any] = Field(default_factory=dict)
    is_active: Optional[bool] = True


class TargetListResponse(BaseModel):
    """Targets of a location."""

    location_id: str
    targets: List[PublishTarget]


class HealthResponse(BaseModel):
    """Service health."""

    status: str
    storage: bool
    platforms: List[str]
