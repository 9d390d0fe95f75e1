"""Configuration settings for the Blog Publisher."""

import os
from typing import Optional

# Maximum number of queued jobs run by one dispatch call
DEFAULT_DISPATCH_LIMIT: int = int(os.environ.get("BLOG_PUBLISHER_DISPATCH_LIMIT", "10"))

# last_error is truncated to this many characters
LAST_ERROR_MAX_LENGTH: int = 500

# Response bodies quoted in adapter errors are cut to this length
ERROR_BODY_SNIPPET_LENGTH: int = 300

# Timeout for outbound platform HTTP calls (in seconds)
HTTP_TIMEOUT_SECONDS: float = float(os.environ.get("BLOG_PUBLISHER_HTTP_TIMEOUT", "30"))

# Jobs left in "running" longer than this are considered stale (in seconds)
STALE_RUNNING_THRESHOLD_SECONDS: int = 900

# Default SQLite database location
DEFAULT_DB_PATH: str = "./data/blog_publisher.db"

# GHL (CRM blog) API settings
GHL_API_BASE_URL: str = os.environ.get("GHL_API_BASE_URL", "https://services.leadconnectorhq.com")
GHL_API_VERSION: str = "2021-07-28"
GHL_DEFAULT_TITLE: str = "New Blog Post"
GHL_DEFAULT_DESCRIPTION: str = "Published via Blog Publisher"

# WordPress settings
WP_DEFAULT_STATUS: str = "publish"
WP_DEFAULT_TITLE: str = "Blog article"


def get_publisher_token_key() -> Optional[str]:
    """Get the secret used to encrypt target credentials.

    Read at call time, not at import.

    Returns:
        The key string, or None if not configured.
    """
    value = os.environ.get("PUBLISHER_TOKEN_KEY", "").strip()
    return value or None


def get_ghl_fallback_token() -> Optional[str]:
    """Get the legacy global GHL token used when a target has none.

    Returns:
        The token string, or None if not configured.
    """
    value = os.environ.get("GHL_BLOG_TOKEN_ID", "").strip()
    return value or None
