"""Platform publish adapters.

Usage:
    from blog_publisher.adapters import create_default_registry

    adapters = create_default_registry()
    adapter = adapters.get("ghl")
"""

from typing import Optional

import requests

from .base import (
    AdapterRegistry,
    ConfigurationError,
    NotFoundError,
    PlatformHTTPError,
    PublishAdapter,
    PublishError,
    PublishResult,
    ResponseShapeError,
    UnsupportedPlatformError,
)
from .ghl import GHLAdapter
from .wordpress import WordPressAdapter


def create_default_registry(session: Optional[requests.Session] = None) -> AdapterRegistry:
    """Build the registry of built-in adapters sharing one HTTP session.

    Args:
        session: Optional requests session; a new one is created if None.

    Returns:
        AdapterRegistry with the ghl and wordpress adapters.
    """
    session = session or requests.Session()
    registry = AdapterRegistry()
    registry.register(GHLAdapter.platform, GHLAdapter(session=session))
    registry.register(WordPressAdapter.platform, WordPressAdapter(session=session))
    return registry


__all__ = [
    "AdapterRegistry",
    "ConfigurationError",
    "GHLAdapter",
    "NotFoundError",
    "PlatformHTTPError",
    "PublishAdapter",
    "PublishError",
    "PublishResult",
    "ResponseShapeError",
    "UnsupportedPlatformError",
    "WordPressAdapter",
    "create_default_registry",
]
