"""Utility functions for the Blog Publisher."""

from datetime import datetime, timezone
from typing import Any, Optional

from slugify import slugify as python_slugify

from .config import LAST_ERROR_MAX_LENGTH


def utc_now() -> datetime:
    """Get current datetime in UTC with timezone info."""
    return datetime.now(timezone.utc)


def slugify(text: str, max_length: int = 100) -> str:
    """Convert text to a URL-friendly slug.

    Args:
        text: The text to convert to a slug.
        max_length: Maximum length of the slug (default: 100).

    Returns:
        A URL-friendly slug version of the text.
    """
    return python_slugify(text, max_length=max_length)


def normalize_platform(value: Any) -> str:
    """Normalize a platform name (trimmed, lowercase).

    Args:
        value: Raw platform value, possibly None.

    Returns:
        Normalized platform name, empty string if absent.
    """
    return str(value or "").strip().lower()


def normalize_target_id(value: Any) -> str:
    """Normalize a target identifier (trimmed).

    Args:
        value: Raw target id, possibly None.

    Returns:
        Normalized target id, empty string if absent.
    """
    return str(value or "").strip()


def truncate_error(message: Optional[str], max_length: int = LAST_ERROR_MAX_LENGTH) -> str:
    """Truncate an error message for storage in last_error.

    Args:
        message: The error message.
        max_length: Maximum stored length.

    Returns:
        The message, cut to max_length characters.
    """
    text = str(message or "publish_failed")
    if len(text) <= max_length:
        return text
    return text[:max_length]
