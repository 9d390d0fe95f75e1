"""Prometheus metrics and OpenTelemetry tracing for the Blog Publisher.

This module provides observability instrumentation for the publish queue:
- Prometheus metrics for system monitoring
- OpenTelemetry tracing for request correlation and debugging

Usage:
    from blog_publisher.metrics import (
        jobs_enqueued_total,
        job_status_changes_total,
        job_duration_seconds,
        get_tracer,
    )

    # Metrics are updated by the queue and the API
    # Access metrics endpoint at /metrics on the API server
"""

import logging
import time
from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Dict, Generator, Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from prometheus_client import Counter, Gauge, Histogram, Info

logger = logging.getLogger(__name__)

# ============================================================================
# Prometheus Metrics Definitions
# ============================================================================

# --- Job Metrics ---
jobs_enqueued_total = Counter(
    "blog_publisher_jobs_enqueued_total",
    "Total number of publish jobs enqueued",
    ["platform"],
)

job_status_changes_total = Counter(
    "blog_publisher_job_status_changes_total",
    "Total number of publish job status changes",
    ["from_status", "to_status"],
)

job_duration_seconds = Histogram(
    "blog_publisher_job_duration_seconds",
    "Publish job execution duration in seconds",
    ["platform", "status"],
    buckets=(0.1, 0.5, 1, 2.5, 5, 10, 30, 60, 120),
)

jobs_in_progress = Gauge(
    "blog_publisher_jobs_in_progress",
    "Number of publish jobs currently running in this process",
)

adapter_errors_total = Counter(
    "blog_publisher_adapter_errors_total",
    "Total number of publish adapter errors",
    ["platform", "error_type"],
)

# --- Ledger Metrics ---
ledger_writes_total = Counter(
    "blog_publisher_ledger_writes_total",
    "Total number of publish ledger writes",
    ["result"],  # inserted, duplicate, error
)

# --- Queue Metrics ---
queue_size = Gauge(
    "blog_publisher_queue_size",
    "Number of publish jobs per status",
    ["status"],
)

stale_jobs_recovered_total = Counter(
    "blog_publisher_stale_jobs_recovered_total",
    "Total number of running jobs failed by the stale sweep",
)

# --- API Metrics ---
api_requests_total = Counter(
    "blog_publisher_api_requests_total",
    "Total number of API requests",
    ["method", "endpoint", "status_code"],
)

api_request_duration_seconds = Histogram(
    "blog_publisher_api_request_duration_seconds",
    "API request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# --- System Info ---
system_info = Info(
    "blog_publisher_system",
    "Blog Publisher system information",
)


# ============================================================================
# OpenTelemetry Tracing
# ============================================================================

_tracer: Optional[trace.Tracer] = None


def get_tracer(name: str = "blog_publisher") -> trace.Tracer:
    """Get or create an OpenTelemetry tracer.

    Without a configured SDK the API returns a no-op tracer.

    Args:
        name: The name of the tracer (typically the module name).

    Returns:
        An OpenTelemetry tracer.
    """
    global _tracer

    if _tracer is None:
        _tracer = trace.get_tracer(name)
    return _tracer


# ============================================================================
# Instrumentation Helpers
# ============================================================================


@contextmanager
def track_job_execution(job_id: str, platform: str) -> Generator[Dict[str, Any], None, None]:
    """Context manager to track publish job metrics and tracing.

    Yields a dict the caller fills with ``status`` (and ``error`` on
    failure); the duration histogram is labelled with that status.

    Args:
        job_id: The job identifier.
        platform: The job's platform.

    Example:
        with track_job_execution(job.job_id, job.platform) as tracking:
            ...
            tracking["status"] = "done"
    """
    tracer = get_tracer()
    start_time = time.time()
    tracking: Dict[str, Any] = {"status": "unknown", "error": None}

    jobs_in_progress.inc()

    try:
        with tracer.start_as_current_span(
            "publish_job.run",
            attributes={"job.id": job_id, "job.platform": platform},
        ) as span:
            try:
                yield tracking
            except Exception as e:
                tracking["status"] = "error"
                span.record_exception(e)
                raise
            finally:
                span.set_attribute("job.status", str(tracking["status"]))
                if tracking.get("error"):
                    span.set_status(Status(StatusCode.ERROR, str(tracking["error"])))
    finally:
        duration = time.time() - start_time
        job_duration_seconds.labels(platform=platform, status=str(tracking["status"])).observe(duration)
        jobs_in_progress.dec()


def track_api_request(method: str, endpoint: str, status_code: int, duration: float) -> None:
    """Record API request metrics.

    Args:
        method: HTTP method.
        endpoint: Request endpoint.
        status_code: Response status code.
        duration: Request duration in seconds.
    """
    api_requests_total.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
    api_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(duration)


def record_job_enqueued(platform: str) -> None:
    """Record a job enqueue.

    Args:
        platform: The job's platform.
    """
    jobs_enqueued_total.labels(platform=platform).inc()


def record_job_status_change(from_status: str, to_status: str) -> None:
    """Record a job status change metric.

    Args:
        from_status: Previous job status.
        to_status: New job status.
    """
    job_status_changes_total.labels(from_status=from_status, to_status=to_status).inc()


def record_adapter_error(platform: str, error_type: str) -> None:
    """Record a publish adapter failure.

    Args:
        platform: The job's platform.
        error_type: Exception class name.
    """
    adapter_errors_total.labels(platform=platform, error_type=error_type).inc()


def record_ledger_write(result: str) -> None:
    """Record a ledger write.

    Args:
        result: One of inserted, duplicate, error.
    """
    ledger_writes_total.labels(result=result).inc()


def record_stale_jobs_recovered(count: int) -> None:
    """Record jobs failed by the stale sweep."""
    if count > 0:
        stale_jobs_recovered_total.inc(count)


def update_queue_size(status: str, size: int) -> None:
    """Update the queue size gauge.

    Args:
        status: The job status (queued, running, done, failed).
        size: The current size.
    """
    queue_size.labels(status=status).set(size)


def set_system_info(version: str = "0.1.0", **kwargs: Any) -> None:
    """Set system information.

    Args:
        version: The application version.
        **kwargs: Additional info to include.
    """
    info = {"version": version}
    info.update(kwargs)
    system_info.info(info)


def traced(
    name: Optional[str] = None,
    attributes: Optional[dict] = None,
) -> Callable:
    """Decorator to add tracing to a function.

    Args:
        name: Span name (defaults to function name).
        attributes: Additional span attributes.

    Returns:
        Decorated function.

    Example:
        @traced("queue.enqueue")
        def try_enqueue(...):
            ...
    """

    def decorator(func: Callable) -> Callable:
        span_name = name or func.__name__

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            tracer = get_tracer()
            with tracer.start_as_current_span(span_name, attributes=attributes or {}):
                return func(*args, **kwargs)

        return wrapper

    return decorator


# ============================================================================
# Exports
# ============================================================================

__all__ = [
    # Prometheus metrics
    "jobs_enqueued_total",
    "job_status_changes_total",
    "job_duration_seconds",
    "jobs_in_progress",
    "adapter_errors_total",
    "ledger_writes_total",
    "queue_size",
    "stale_jobs_recovered_total",
    "api_requests_total",
    "api_request_duration_seconds",
    "system_info",
    # OpenTelemetry
    "get_tracer",
    # Instrumentation helpers
    "track_job_execution",
    "track_api_request",
    "record_job_enqueued",
    "record_job_status_change",
    "record_adapter_error",
    "record_ledger_write",
    "record_stale_jobs_recovered",
    "update_queue_size",
    "set_system_info",
    "traced",
]
