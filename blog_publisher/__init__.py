"""Blog Publisher package.

Publish job queue for approved blog drafts: fans a draft out to every
active publish target of its location, runs each publish at most once
and records results in a ledger so retries never double-publish.

Requires Python 3.9 or higher.
"""

from .adapters import (
    AdapterRegistry,
    GHLAdapter,
    PublishAdapter,
    PublishError,
    PublishResult,
    WordPressAdapter,
    create_default_registry,
)
from .persistence import (
    PublishJob,
    PublishJobStatus,
    PublishLedgerEntry,
    PublishTarget,
    StorageBackend,
    create_storage,
)
from .queue import JobOutcome, JobOutcomeKind, PublishQueue, StepResult

__version__ = "0.1.0"

__all__ = [
    # Queue
    "PublishQueue",
    "JobOutcome",
    "JobOutcomeKind",
    "StepResult",
    # Adapters
    "AdapterRegistry",
    "GHLAdapter",
    "PublishAdapter",
    "PublishError",
    "PublishResult",
    "WordPressAdapter",
    "create_default_registry",
    # Persistence
    "PublishJob",
    "PublishJobStatus",
    "PublishLedgerEntry",
    "PublishTarget",
    "StorageBackend",
    "create_storage",
]
