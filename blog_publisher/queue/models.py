"""Result models for the publish queue steps.

Internal steps never raise to their callers; they return a StepResult
and the public boundaries decide how to log it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


@dataclass(frozen=True)
class StepResult(Generic[T]):
    """Success or failure of an internal queue step.

    Attributes:
        ok: Whether the step succeeded.
        value: The step's value on success.
        error: Error description on failure.
        error_type: Exception class name on failure.
    """

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @classmethod
    def success(cls, value: T) -> "StepResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str, error_type: Optional[str] = None) -> "StepResult[T]":
        return cls(ok=False, error=error, error_type=error_type)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "StepResult[T]":
        return cls(ok=False, error=str(exc) or type(exc).__name__, error_type=type(exc).__name__)


class JobOutcomeKind(str, Enum):
    """What happened to a job during one dispatch."""

    PUBLISHED = "published"
    ALREADY_PUBLISHED = "already_published"
    FAILED = "failed"
    SKIPPED = "skipped"


class JobOutcome(BaseModel):
    """Per-job result of a dispatch run.

    Attributes:
        job_id: The job identifier.
        platform: The job's platform.
        target_id: The job's target.
        kind: What happened.
        error: Stored last_error when the job failed.
        external_id: Platform post id when published.
        published_url: Public URL when known.
    """

    job_id: str
    platform: str
    target_id: str
    kind: JobOutcomeKind
    error: Optional[str] = None
    external_id: Optional[str] = None
    published_url: Optional[str] = None
