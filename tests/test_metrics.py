"""Tests for the Prometheus metrics and OpenTelemetry tracing module."""

import pytest
from prometheus_client import REGISTRY

from blog_publisher.adapters import AdapterRegistry, PublishAdapter, PublishResult
from blog_publisher.metrics import (
    get_tracer,
    record_adapter_error,
    record_job_enqueued,
    record_job_status_change,
    record_ledger_write,
    record_stale_jobs_recovered,
    set_system_info,
    traced,
    track_api_request,
    track_job_execution,
    update_queue_size,
)
from blog_publisher.persistence import DraftCreate, MemoryStorage, PublishTargetCreate
from blog_publisher.queue import PublishQueue


def sample(name, **labels):
    """Read a metric sample, treating a missing series as zero."""
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestPrometheusMetrics:
    """Tests for Prometheus metrics instrumentation."""

    def test_record_job_enqueued(self):
        before = sample("blog_publisher_jobs_enqueued_total", platform="metrics-test")
        record_job_enqueued("metrics-test")
        record_job_enqueued("metrics-test")
        assert sample("blog_publisher_jobs_enqueued_total", platform="metrics-test") == before + 2

    def test_record_job_status_change(self):
        labels = {"from_status": "queued", "to_status": "running"}
        before = sample("blog_publisher_job_status_changes_total", **labels)
        record_job_status_change("queued", "running")
        assert sample("blog_publisher_job_status_changes_total", **labels) == before + 1

    def test_record_adapter_error(self):
        labels = {"platform": "metrics-test", "error_type": "RuntimeError"}
        before = sample("blog_publisher_adapter_errors_total", **labels)
        record_adapter_error("metrics-test", "RuntimeError")
        assert sample("blog_publisher_adapter_errors_total", **labels) == before + 1

    def test_record_ledger_write(self):
        before = sample("blog_publisher_ledger_writes_total", result="duplicate")
        record_ledger_write("duplicate")
        assert sample("blog_publisher_ledger_writes_total", result="duplicate") == before + 1

    def test_record_stale_jobs_recovered(self):
        before = sample("blog_publisher_stale_jobs_recovered_total")
        record_stale_jobs_recovered(0)
        record_stale_jobs_recovered(3)
        assert sample("blog_publisher_stale_jobs_recovered_total") == before + 3

    def test_update_queue_size(self):
        update_queue_size("queued", 10)
        assert sample("blog_publisher_queue_size", status="queued") == 10
        update_queue_size("queued", 4)
        assert sample("blog_publisher_queue_size", status="queued") == 4

    def test_track_api_request(self):
        labels = {"method": "GET", "endpoint": "/metrics-test", "status_code": "200"}
        before = sample("blog_publisher_api_requests_total", **labels)
        track_api_request("GET", "/metrics-test", 200, 0.05)
        assert sample("blog_publisher_api_requests_total", **labels) == before + 1

    def test_set_system_info(self):
        set_system_info(version="9.9.9", storage="memory")
        assert sample("blog_publisher_system_info", version="9.9.9", storage="memory") == 1


class TestJobTracking:
    """Tests for the job execution context manager."""

    def test_duration_labelled_with_status(self):
        labels = {"platform": "metrics-test", "status": "published"}
        before = sample("blog_publisher_job_duration_seconds_count", **labels)

        with track_job_execution("job-1", "metrics-test") as tracking:
            tracking["status"] = "published"

        assert sample("blog_publisher_job_duration_seconds_count", **labels) == before + 1

    def test_in_progress_gauge_restored(self):
        before = sample("blog_publisher_jobs_in_progress")
        with track_job_execution("job-2", "metrics-test"):
            assert sample("blog_publisher_jobs_in_progress") == before + 1
        assert sample("blog_publisher_jobs_in_progress") == before

    def test_exception_propagates(self):
        labels = {"platform": "metrics-test", "status": "error"}
        before = sample("blog_publisher_job_duration_seconds_count", **labels)

        with pytest.raises(RuntimeError):
            with track_job_execution("job-3", "metrics-test"):
                raise RuntimeError("boom")

        assert sample("blog_publisher_job_duration_seconds_count", **labels) == before + 1


class TestTracing:
    """Tests for OpenTelemetry tracing."""

    def test_get_tracer(self):
        tracer = get_tracer()
        assert tracer is get_tracer()
        with tracer.start_as_current_span("test-span") as span:
            span.set_attribute("key", "value")

    def test_traced_decorator(self):
        @traced("test.function", attributes={"component": "test"})
        def add(a, b):
            return a + b

        assert add(2, 3) == 5
        assert add.__name__ == "add"

    def test_traced_propagates_exceptions(self):
        @traced()
        def broken():
            raise ValueError("bad")

        with pytest.raises(ValueError):
            broken()


class TestQueueInstrumentation:
    """The queue reports what it does through the metrics above."""

    def test_dispatch_records_metrics(self):
        class MetricsAdapter(PublishAdapter):
            platform = "metrics-queue"

            def publish(self, target, draft, job):
                return PublishResult(external_id="ext-1")

        storage = MemoryStorage()
        storage.save_draft(DraftCreate(draft_id="D1", location_id="L1", title="T", content_html="<p>x</p>"))
        storage.upsert_target(PublishTargetCreate(target_id="T1", location_id="L1", platform="metrics-queue"))
        queue = PublishQueue(storage, AdapterRegistry({"metrics-queue": MetricsAdapter()}))

        enqueued_before = sample("blog_publisher_jobs_enqueued_total", platform="metrics-queue")
        inserted_before = sample("blog_publisher_ledger_writes_total", result="inserted")

        queue.on_draft_approved("D1", "L1")
        queue.get_stats()

        assert sample("blog_publisher_jobs_enqueued_total", platform="metrics-queue") == enqueued_before + 1
        assert sample("blog_publisher_ledger_writes_total", result="inserted") == inserted_before + 1
        assert sample("blog_publisher_queue_size", status="done") == 1
