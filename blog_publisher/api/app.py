"""FastAPI application factory for the Blog Publisher API.

This module provides the main application factory with OpenAPI documentation,
CORS configuration, and middleware setup.
"""

import logging
import time
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from ..metrics import set_system_info, track_api_request
from ..queue import PublishQueue
from .dependencies import set_publish_queue
from .routes import router

logger = logging.getLogger(__name__)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware for recording HTTP request metrics."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process the request and record metrics."""
        start_time = time.time()

        response = await call_next(request)

        duration = time.time() - start_time
        # Label by route template to keep ids out of the label set
        route = request.scope.get("route")
        endpoint = getattr(route, "path", None) or "unmatched"
        track_api_request(request.method, endpoint, response.status_code, duration)

        return response


def create_app(
    queue: Optional[PublishQueue] = None,
    title: str = "Blog Publisher API",
    description: str = "Publish job queue that fans approved blog drafts out to configured platforms",
    version: str = "0.1.0",
    enable_cors: bool = True,
    cors_origins: Optional[list] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        queue: Optional publish queue; the default is built lazily from the environment.
        title: API title for OpenAPI docs.
        description: API description for OpenAPI docs.
        version: API version.
        enable_cors: Whether to enable CORS middleware.
        cors_origins: List of allowed CORS origins.

    Returns:
        Configured FastAPI application.
    """
    if queue is not None:
        set_publish_queue(queue)

    app = FastAPI(
        title=title,
        description=description,
        version=version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        openapi_tags=[
            {"name": "drafts", "description": "Draft approval hook and per-draft publishing"},
            {"name": "jobs", "description": "Publish job inspection and operator actions"},
            {"name": "targets", "description": "Publish target setup"},
            {"name": "stats", "description": "Queue statistics and health"},
        ],
    )

    # Add CORS middleware
    if enable_cors:
        origins = cors_origins or ["*"]
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Add observability middleware
    app.add_middleware(MetricsMiddleware)

    # Include API routes
    app.include_router(router)

    # Root endpoint
    @app.get("/", tags=["root"])
    async def root() -> dict:
        """Root endpoint with API information."""
        return {
            "name": title,
            "version": version,
            "docs": "/docs",
            "openapi": "/openapi.json",
        }

    # Metrics endpoint
    @app.get("/metrics", tags=["observability"])
    async def metrics() -> Response:
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Exception handlers
    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    set_system_info(version=version)
    logger.info(f"Created FastAPI app: {title} v{version}")
    return app
