"""Publish adapter for WordPress sites via the REST API.

Authenticates with an application password (HTTP basic auth) and
creates the post in a single request.
"""

import json
import logging
from typing import Any, Dict, Optional

import requests

from ..config import HTTP_TIMEOUT_SECONDS, WP_DEFAULT_STATUS, WP_DEFAULT_TITLE
from ..crypto import decrypt_secret_fail_open
from ..persistence.models import PublishableDraft, PublishJob, PublishTarget
from ..utils import slugify
from .base import (
    ConfigurationError,
    PlatformHTTPError,
    PublishAdapter,
    PublishResult,
    ResponseShapeError,
    body_snippet,
    config_str,
)

logger = logging.getLogger(__name__)


class WordPressAdapter(PublishAdapter):
    """Publishes drafts to a WordPress site.

    Target config keys:
        wp_base_url: Site root, e.g. ``https://example.com``.
        wp_username: WordPress user owning the application password.
        wp_app_password_enc: Encrypted application password.
        wp_default_status: Post status, ``publish`` unless set.
        categories, tags: Optional lists of term ids.
        published_url_template: Used when the response carries no link.
    """

    platform = "wordpress"

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = HTTP_TIMEOUT_SECONDS):
        self.session = session or requests.Session()
        self.timeout = timeout

    def publish(self, target: PublishTarget, draft: PublishableDraft, job: PublishJob) -> PublishResult:
        cfg: Dict[str, Any] = target.config or {}

        base_url = config_str(cfg, "wp_base_url").rstrip("/")
        if not base_url:
            raise ConfigurationError("wp_base_url_missing")

        username = config_str(cfg, "wp_username")
        if not username:
            raise ConfigurationError("wp_username_missing")

        password = decrypt_secret_fail_open(cfg.get("wp_app_password_enc"))
        if not password:
            raise ConfigurationError("wp_app_password_missing")

        title = (draft.title or "").strip() or WP_DEFAULT_TITLE
        payload: Dict[str, Any] = {
            "title": title,
            "content": draft.content or "",
            "status": config_str(cfg, "wp_default_status") or WP_DEFAULT_STATUS,
            "slug": slugify(title),
        }
        for key in ("categories", "tags"):
            if isinstance(cfg.get(key), list) and cfg[key]:
                payload[key] = cfg[key]

        response = self.session.post(
            f"{base_url}/wp-json/wp/v2/posts",
            auth=(username, password),
            headers={"accept": "application/json"},
            json=payload,
            timeout=self.timeout,
        )
        if not 200 <= response.status_code < 300:
            raise PlatformHTTPError("wp_create_post_failed", response.status_code, response.text)

        try:
            data = json.loads(response.text)
        except (TypeError, ValueError):
            data = None

        post_id = data.get("id") if isinstance(data, dict) else None
        if not post_id:
            raise ResponseShapeError("wp_create_post_no_id_shape", body_snippet(response.text))

        external_id = str(post_id)
        published_url = str(data.get("link") or "").strip() or None
        if published_url is None:
            template = config_str(cfg, "published_url_template")
            published_url = template.replace("{id}", external_id) if template else None

        logger.info(f"Published draft {draft.draft_id} to WordPress {base_url} as post {external_id}")
        return PublishResult(external_id=external_id, published_url=published_url)
