"""Dependency injection for the API layer.

This module provides the publish queue to the route handlers.
"""

from typing import Generator, Optional

from ..adapters import create_default_registry
from ..persistence import create_storage
from ..queue import PublishQueue

# Global instance (can be replaced for testing)
_publish_queue: Optional[PublishQueue] = None


def get_publish_queue() -> Generator[PublishQueue, None, None]:
    """Get the publish queue instance.

    This is a FastAPI dependency. The default queue uses
    environment-detected storage and the built-in adapters.
    """
    global _publish_queue
    if _publish_queue is None:
        _publish_queue = PublishQueue(create_storage(), create_default_registry())
    yield _publish_queue


def set_publish_queue(queue: PublishQueue) -> None:
    """Set the publish queue instance (for testing)."""
    global _publish_queue
    _publish_queue = queue


def reset_dependencies() -> None:
    """Reset all dependencies to None (for testing)."""
    global _publish_queue
    if _publish_queue:
        _publish_queue.storage.close()
        _publish_queue = None
