"""API layer for the Blog Publisher.

This module provides the RESTful API endpoints for the draft-approved
hook, operator job actions and publish target setup.
"""

from .app import create_app
from .dependencies import get_publish_queue, reset_dependencies, set_publish_queue
from .routes import router

__all__ = [
    "create_app",
    "router",
    "get_publish_queue",
    "set_publish_queue",
    "reset_dependencies",
]
