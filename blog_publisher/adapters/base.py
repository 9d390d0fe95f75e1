"""Publish adapter contract, errors and the adapter registry.

An adapter turns one (target, draft, job) triple into one post on an
external platform. Adapters raise a PublishError subclass whose message
is stored verbatim (truncated) as the job's last_error, so messages are
short, greppable codes followed by optional detail.
"""

import abc
import logging
from typing import Any, Dict, Iterator, List, Optional

from pydantic import BaseModel

from ..config import ERROR_BODY_SNIPPET_LENGTH
from ..persistence.models import PublishableDraft, PublishJob, PublishTarget
from ..utils import normalize_platform

logger = logging.getLogger(__name__)


class PublishResult(BaseModel):
    """Outcome of a successful publish.

    Attributes:
        external_id: Identifier of the post on the platform.
        published_url: Public URL of the post, if known.
    """

    external_id: str
    published_url: Optional[str] = None


class PublishError(Exception):
    """Base class for publish failures.

    Attributes:
        code: Stable error code, the first token of the message.
    """

    def __init__(self, code: str, detail: Optional[str] = None):
        self.code = code
        self.detail = detail
        message = code if detail is None else f"{code}: {detail}"
        super().__init__(message)


class ConfigurationError(PublishError):
    """Target configuration or credentials are missing or invalid."""


class NotFoundError(PublishError):
    """A record the job depends on (target, draft) does not exist."""


class PlatformHTTPError(PublishError):
    """The platform answered with a non-2xx status."""

    def __init__(self, code: str, status_code: int, body: str = ""):
        self.status_code = status_code
        super().__init__(f"{code}_{status_code}", body_snippet(body))


class ResponseShapeError(PublishError):
    """The platform answered 2xx but the body is not what was expected."""


class UnsupportedPlatformError(PublishError):
    """No adapter is registered for the job's platform."""

    def __init__(self, platform: str):
        self.platform = platform
        super().__init__("unsupported platform", platform or "<empty>")


def body_snippet(text: Optional[str], max_length: int = ERROR_BODY_SNIPPET_LENGTH) -> str:
    """Cut a response body down for inclusion in an error message."""
    return str(text or "")[:max_length]


def config_str(config: Dict[str, Any], *keys: str) -> str:
    """Return the first non-empty, trimmed string value among keys."""
    for key in keys:
        value = str(config.get(key) or "").strip()
        if value:
            return value
    return ""


class PublishAdapter(abc.ABC):
    """Abstract base class for platform publish adapters.

    Subclasses set ``platform`` and implement ``publish``.
    """

    platform: str = ""

    @abc.abstractmethod
    def publish(self, target: PublishTarget, draft: PublishableDraft, job: PublishJob) -> PublishResult:
        """Publish a draft to a target.

        Args:
            target: The destination, with its platform config.
            draft: The draft title and rendered content.
            job: The job being run.

        Returns:
            PublishResult with the platform's post identifier.

        Raises:
            PublishError: On any configuration or platform failure.
            requests.RequestException: On network failure.
        """
        pass


class AdapterRegistry:
    """Explicit mapping of platform name to adapter.

    Built once at startup and passed to the queue by reference.
    Platform names are normalized on both registration and lookup.
    """

    def __init__(self, adapters: Optional[Dict[str, PublishAdapter]] = None):
        self._adapters: Dict[str, PublishAdapter] = {}
        for platform, adapter in (adapters or {}).items():
            self.register(platform, adapter)

    def register(self, platform: str, adapter: PublishAdapter) -> None:
        """Register an adapter, replacing any existing one for the platform."""
        key = normalize_platform(platform)
        if not key:
            raise ValueError("platform name must not be empty")
        if key in self._adapters:
            logger.warning(f"Replacing adapter for platform {key}")
        self._adapters[key] = adapter

    def get(self, platform: str) -> Optional[PublishAdapter]:
        """Look up the adapter for a platform, or None."""
        return self._adapters.get(normalize_platform(platform))

    def require(self, platform: str) -> PublishAdapter:
        """Look up the adapter for a platform.

        Raises:
            UnsupportedPlatformError: If none is registered.
        """
        adapter = self.get(platform)
        if adapter is None:
            raise UnsupportedPlatformError(normalize_platform(platform))
        return adapter

    @property
    def platforms(self) -> List[str]:
        """Registered platform names, sorted."""
        return sorted(self._adapters)

    def __contains__(self, platform: object) -> bool:
        return isinstance(platform, str) and self.get(platform) is not None

    def __iter__(self) -> Iterator[str]:
        return iter(self.platforms)

    def __len__(self) -> int:
        return len(self._adapters)
