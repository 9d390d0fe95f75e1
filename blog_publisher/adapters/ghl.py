"""Publish adapter for the GHL (LeadConnector) blog API.

Publishing is a three step exchange:

1. ``POST /blogs/posts`` creates the post as a DRAFT and returns its id.
2. ``PUT /blogs/posts/<id>`` sends the full HTML body and flips the
   status to PUBLISHED.
3. If the update response does not echo the body back, ``GET`` the post
   and fail unless the persisted body is non-empty.

Target config keys:
    blog_id (or blogId): required.
    location_id: used when the job carries no location.
    token_id_enc: encrypted API token; GHL_BLOG_TOKEN_ID is the fallback.
    description, categories, default_category_id, tags, author,
    default_author_id, urlSlug, canonicalLink, imageUrl, imageAltText,
    published_url_template: optional.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import requests

from ..config import (
    GHL_API_BASE_URL,
    GHL_API_VERSION,
    GHL_DEFAULT_DESCRIPTION,
    GHL_DEFAULT_TITLE,
    HTTP_TIMEOUT_SECONDS,
    get_ghl_fallback_token,
)
from ..crypto import decrypt_secret_fail_open
from ..persistence.models import PublishableDraft, PublishJob, PublishTarget
from ..utils import slugify, utc_now
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


def _parse_json(text: str) -> Optional[Any]:
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def _first(data: Any, *keys: str) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    for key in keys:
        value = data.get(key)
        if value:
            return str(value)
    return None


def extract_post_id(data: Any) -> Optional[str]:
    """Find the post id in a create-post response.

    Checks the top-level shapes first, then the ``post`` and
    ``blogPost`` wrappers.
    """
    if not isinstance(data, dict):
        return None
    return (
        _first(data, "_id", "id", "postId", "blogPostId")
        or _first(data.get("post"), "_id", "id")
        or _first(data.get("blogPost"), "_id", "id")
    )


def extract_raw_html(data: Any) -> str:
    """Find the persisted HTML body in an update or get-post response."""
    if not isinstance(data, dict):
        return ""
    for source in (data.get("blogPost"), data):
        if isinstance(source, dict):
            for key in ("rawHTML", "rawHtml"):
                value = source.get(key)
                if value is not None:
                    return str(value)
    return ""


def _is_success(response: requests.Response) -> bool:
    return 200 <= response.status_code < 300


class GHLAdapter(PublishAdapter):
    """Publishes drafts to a GHL blog."""

    platform = "ghl"

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        base_url: str = GHL_API_BASE_URL,
        timeout: float = HTTP_TIMEOUT_SECONDS,
    ):
        self.session = session or requests.Session()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _headers(self, token_id: str, with_body: bool = True) -> Dict[str, str]:
        headers = {
            "accept": "application/json, text/plain, */*",
            "channel": "APP",
            "source": "WEB_USER",
            "token-id": token_id,
            "Version": GHL_API_VERSION,
        }
        if with_body:
            headers["content-type"] = "application/json"
        return headers

    def _resolve_token(self, config: Dict[str, Any]) -> str:
        token = decrypt_secret_fail_open(config.get("token_id_enc"))
        token = str(token or get_ghl_fallback_token() or "").strip()
        if not token:
            raise ConfigurationError("missing_token_id")
        return token

    def _categories(self, config: Dict[str, Any]) -> List[Any]:
        categories = config.get("categories")
        if isinstance(categories, list):
            return categories
        default_category = config_str(config, "default_category_id")
        return [default_category] if default_category else []

    def publish(self, target: PublishTarget, draft: PublishableDraft, job: PublishJob) -> PublishResult:
        """Create, fill and verify a GHL blog post."""
        cfg = target.config or {}

        blog_id = config_str(cfg, "blog_id", "blogId")
        if not blog_id:
            raise ConfigurationError("ghl_blog_id_missing")

        location_id = str(job.location_id or "").strip() or config_str(cfg, "location_id")
        if not location_id:
            raise ConfigurationError("ghl_location_id_missing")

        token_id = self._resolve_token(cfg)

        title = (draft.title or "").strip() or GHL_DEFAULT_TITLE
        description = config_str(cfg, "description") or GHL_DEFAULT_DESCRIPTION

        # Step 1: create the post as a draft
        create_payload = {
            "status": "DRAFT",
            "locationId": location_id,
            "blogId": blog_id,
            "title": title,
            "description": description,
        }
        response = self.session.post(
            f"{self.base_url}/blogs/posts",
            headers=self._headers(token_id),
            json=create_payload,
            timeout=self.timeout,
        )
        if not _is_success(response):
            raise PlatformHTTPError("ghl_create_post_failed", response.status_code, response.text)

        external_id = extract_post_id(_parse_json(response.text))
        if not external_id:
            raise ResponseShapeError("ghl_create_post_no_id_shape", body_snippet(response.text))

        logger.debug(f"Created GHL post {external_id} for draft {draft.draft_id}")

        # Step 2: send the body and publish
        html = (draft.content or "").strip()
        if not html:
            raise ResponseShapeError("ghl_update_aborted_empty_html")

        post_url = f"{self.base_url}/blogs/posts/{external_id}"
        update_payload = {
            "categories": self._categories(cfg),
            "tags": cfg.get("tags") or [],
            "archived": False,
            "type": "manual",
            "status": "PUBLISHED",
            "locationId": location_id,
            "blogId": blog_id,
            "title": title,
            "description": description,
            "urlSlug": config_str(cfg, "urlSlug") or slugify(title),
            "author": config_str(cfg, "author", "default_author_id") or None,
            "canonicalLink": cfg.get("canonicalLink") or None,
            "publishedAt": utc_now().isoformat(),
            "scheduledAt": None,
            "imageAltText": cfg.get("imageAltText") or title,
            "imageUrl": cfg.get("imageUrl") or None,
            "rawHTML": html,
            "externalFonts": [],
            "readTimeInMinutes": 0,
            "wordCount": len(html.split()),
            "isAutoSave": False,
        }
        response = self.session.put(
            post_url,
            headers=self._headers(token_id),
            json=update_payload,
            timeout=self.timeout,
        )
        if not _is_success(response):
            raise PlatformHTTPError("ghl_update_failed", response.status_code, response.text)

        # Step 3: make sure the body was persisted
        if not extract_raw_html(_parse_json(response.text)).strip():
            response = self.session.get(
                post_url,
                headers=self._headers(token_id, with_body=False),
                timeout=self.timeout,
            )
            if not _is_success(response):
                raise PlatformHTTPError("ghl_verify_failed", response.status_code, response.text)
            if not extract_raw_html(_parse_json(response.text)).strip():
                raise ResponseShapeError("ghl_update_persisted_empty_rawHTML", f"sent_len={len(html)}")

        template = config_str(cfg, "published_url_template")
        published_url = template.replace("{id}", external_id) if template else None

        logger.info(f"Published draft {draft.draft_id} to GHL blog {blog_id} as {external_id}")
        return PublishResult(external_id=external_id, published_url=published_url)
