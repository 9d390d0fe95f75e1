"""Tests for the publish job queue."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from blog_publisher.adapters import AdapterRegistry, ConfigurationError, PublishAdapter, PublishResult
from blog_publisher.persistence import (
    DraftCreate,
    MemoryStorage,
    PublishJobCreate,
    PublishJobStatus,
    PublishTargetCreate,
)
from blog_publisher.queue import (
    STALE_RUNNING_JOB_ERROR,
    JobOutcomeKind,
    PublishQueue,
    StepResult,
    describe_exception,
    dispatch_queued,
    enqueue,
    run_job,
    try_dispatch,
    try_enqueue,
)
from blog_publisher.utils import utc_now


class FakeAdapter(PublishAdapter):
    """Adapter that records calls and returns or raises on demand."""

    def __init__(self, platform="ghl", error=None, fail_for=None, calls=None):
        self.platform = platform
        self.error = error
        self.fail_for = set(fail_for or [])
        self.calls = calls if calls is not None else []

    def publish(self, target, draft, job):
        self.calls.append(job.target_id)
        if self.error is not None and (not self.fail_for or job.target_id in self.fail_for):
            raise self.error
        return PublishResult(external_id=f"ext-{job.target_id}", published_url=f"https://blog/{job.target_id}")


@pytest.fixture
def storage():
    """Create an in-memory storage."""
    return MemoryStorage()


@pytest.fixture
def ghl_adapter():
    """A working adapter for the ghl platform."""
    return FakeAdapter("ghl")


@pytest.fixture
def adapters(ghl_adapter):
    """Registry with the working ghl adapter only."""
    return AdapterRegistry({"ghl": ghl_adapter})


@pytest.fixture
def queue(storage, adapters):
    """Create a publish queue."""
    return PublishQueue(storage, adapters)


def add_target(storage, target_id, platform="ghl", location_id="L1", is_active=True):
    return storage.upsert_target(
        PublishTargetCreate(target_id=target_id, location_id=location_id, platform=platform, is_active=is_active)
    )


def add_draft(storage, draft_id="D1", location_id="L1"):
    return storage.save_draft(
        DraftCreate(draft_id=draft_id, location_id=location_id, title="Title", content_html="<p>Body</p>")
    )


def jobs_by_target(storage, draft_id="D1"):
    return {job.target_id: job for job in storage.list_jobs(draft_id=draft_id)}


class TestStepResult:
    """Tests for StepResult values."""

    def test_success(self):
        result = StepResult.success([1, 2])
        assert result.ok
        assert result.value == [1, 2]
        assert result.error is None

    def test_from_exception(self):
        result = StepResult.from_exception(RuntimeError("db down"))
        assert not result.ok
        assert result.error == "db down"
        assert result.error_type == "RuntimeError"

    def test_describe_exception(self):
        assert describe_exception(ConfigurationError("ghl_blog_id_missing")) == "ghl_blog_id_missing"
        assert describe_exception(RuntimeError("boom")) == "RuntimeError: boom"
        assert describe_exception(TimeoutError()) == "TimeoutError"


class TestEnqueue:
    """Tests for the enqueue step."""

    def test_one_job_per_active_target(self, storage):
        add_target(storage, "T1")
        add_target(storage, "T2", platform="wordpress")
        add_target(storage, "T3", is_active=False)
        add_target(storage, "T4", location_id="L2")

        jobs = enqueue(storage, "D1", "L1")

        assert {j.target_id for j in jobs} == {"T1", "T2"}
        for job in jobs:
            assert job.status == PublishJobStatus.QUEUED
            assert job.attempts == 0
            assert job.draft_id == "D1"
            assert job.location_id == "L1"

    def test_unset_active_flag_is_enqueued(self, storage):
        add_target(storage, "legacy", is_active=None)
        jobs = enqueue(storage, "D1", "L1")
        assert [j.target_id for j in jobs] == ["legacy"]

    def test_platform_and_target_normalized(self, storage):
        add_target(storage, " T1 ", platform="  GHL ")
        jobs = enqueue(storage, "D1", "L1")
        assert jobs[0].platform == "ghl"
        assert jobs[0].target_id == "T1"

    def test_blank_platform_or_target_skipped(self, storage):
        add_target(storage, "T1", platform="   ")
        add_target(storage, "   ")
        assert enqueue(storage, "D1", "L1") == []
        assert storage.list_jobs() == []

    def test_published_targets_skipped(self, storage):
        add_target(storage, "T1")
        add_target(storage, "T2")
        storage.record_ledger_entry("D1", "ghl", "T1", "ext-1")

        jobs = enqueue(storage, "D1", "L1")

        assert [j.target_id for j in jobs] == ["T2"]

    def test_no_targets(self, storage):
        assert enqueue(storage, "D1", "L1") == []

    def test_enqueue_is_fail_open(self, storage):
        add_target(storage, "T1")
        storage.get_active_targets = MagicMock(side_effect=RuntimeError("db down"))

        result = try_enqueue(storage, "D1", "L1")
        assert not result.ok
        assert result.error_type == "RuntimeError"

        assert enqueue(storage, "D1", "L1") == []

    def test_repeated_enqueue_before_dispatch_duplicates(self, storage):
        add_target(storage, "T1")
        enqueue(storage, "D1", "L1")
        enqueue(storage, "D1", "L1")
        assert len(storage.list_jobs(draft_id="D1")) == 2


class TestDispatch:
    """Tests for the dispatch loop and the per-job state machine."""

    def test_happy_path(self, storage, adapters, ghl_adapter):
        add_draft(storage)
        add_target(storage, "T1")
        enqueue(storage, "D1", "L1")

        outcomes = dispatch_queued(storage, adapters, "D1", "L1")

        assert [o.kind for o in outcomes] == [JobOutcomeKind.PUBLISHED]
        job = jobs_by_target(storage)["T1"]
        assert job.status == PublishJobStatus.DONE
        assert job.attempts == 1
        assert job.last_error is None

        entry = storage.get_ledger_entry("D1", "ghl", "T1")
        assert entry.external_id == "ext-T1"
        assert entry.published_url == "https://blog/T1"
        assert ghl_adapter.calls == ["T1"]

    def test_fifo_order(self, storage, adapters, ghl_adapter):
        add_draft(storage)
        for target_id in ["T1", "T2", "T3"]:
            storage.upsert_target(PublishTargetCreate(target_id=target_id, location_id="L1", platform="ghl"))
            storage.create_job(PublishJobCreate(draft_id="D1", location_id="L1", target_id=target_id, platform="ghl"))

        dispatch_queued(storage, adapters, "D1", "L1")

        assert ghl_adapter.calls == ["T1", "T2", "T3"]

    def test_limit(self, storage, adapters, ghl_adapter):
        add_draft(storage)
        for i in range(5):
            add_target(storage, f"T{i}")
        enqueue(storage, "D1", "L1")

        outcomes = dispatch_queued(storage, adapters, "D1", "L1", limit=2)

        assert len(outcomes) == 2
        assert len(storage.list_queued_jobs("D1", "L1")) == 3

    def test_one_failure_does_not_stop_batch(self, storage):
        calls = []
        adapter = FakeAdapter("ghl", error=RuntimeError("boom"), fail_for={"T1"}, calls=calls)
        adapters = AdapterRegistry({"ghl": adapter})
        add_draft(storage)
        for target_id in ["T1", "T2", "T3"]:
            add_target(storage, target_id)
        enqueue(storage, "D1", "L1")

        outcomes = dispatch_queued(storage, adapters, "D1", "L1")

        assert len(outcomes) == 3
        assert calls == ["T1", "T2", "T3"]
        jobs = jobs_by_target(storage)
        assert jobs["T1"].status == PublishJobStatus.FAILED
        assert jobs["T1"].last_error == "RuntimeError: boom"
        assert jobs["T2"].status == PublishJobStatus.DONE
        assert jobs["T3"].status == PublishJobStatus.DONE
        assert not storage.is_published("D1", "ghl", "T1")

    def test_publish_error_message_kept(self, storage):
        adapters = AdapterRegistry({"ghl": FakeAdapter("ghl", error=ConfigurationError("ghl_blog_id_missing"))})
        add_draft(storage)
        add_target(storage, "T1")
        enqueue(storage, "D1", "L1")

        outcomes = dispatch_queued(storage, adapters, "D1", "L1")

        assert outcomes[0].error == "ghl_blog_id_missing"
        assert jobs_by_target(storage)["T1"].last_error == "ghl_blog_id_missing"

    def test_unsupported_platform(self, storage, adapters, ghl_adapter):
        add_draft(storage)
        add_target(storage, "T2", platform="wordpress")
        enqueue(storage, "D1", "L1")

        outcomes = dispatch_queued(storage, adapters, "D1", "L1")

        job = jobs_by_target(storage)["T2"]
        assert job.status == PublishJobStatus.FAILED
        assert "wordpress" in job.last_error
        assert job.last_error == "unsupported platform: wordpress"
        assert outcomes[0].kind == JobOutcomeKind.FAILED
        assert ghl_adapter.calls == []

    def test_mixed_platforms_example(self, storage):
        crm = FakeAdapter("crm")
        adapters = AdapterRegistry({"crm": crm})
        add_draft(storage)
        add_target(storage, "T1", platform="crm")
        add_target(storage, "T2", platform="wordpress")

        enqueue(storage, "D1", "L1")
        dispatch_queued(storage, adapters, "D1", "L1")

        jobs = jobs_by_target(storage)
        assert jobs["T1"].status == PublishJobStatus.DONE
        assert jobs["T2"].status == PublishJobStatus.FAILED
        assert jobs["T2"].last_error == "unsupported platform: wordpress"
        entries = storage.list_ledger_entries("D1")
        assert [(e.platform, e.target_id) for e in entries] == [("crm", "T1")]

    def test_ledger_short_circuit(self, storage, adapters, ghl_adapter):
        add_draft(storage)
        add_target(storage, "T1")
        enqueue(storage, "D1", "L1")
        storage.record_ledger_entry("D1", "ghl", "T1", "earlier")

        outcomes = dispatch_queued(storage, adapters, "D1", "L1")

        assert outcomes[0].kind == JobOutcomeKind.ALREADY_PUBLISHED
        assert outcomes[0].external_id == "earlier"
        assert jobs_by_target(storage)["T1"].status == PublishJobStatus.DONE
        assert ghl_adapter.calls == []
        assert len(storage.list_ledger_entries("D1")) == 1

    def test_duplicate_jobs_publish_once(self, storage, adapters, ghl_adapter):
        add_draft(storage)
        add_target(storage, "T1")
        enqueue(storage, "D1", "L1")
        enqueue(storage, "D1", "L1")

        outcomes = dispatch_queued(storage, adapters, "D1", "L1")

        assert [o.kind for o in outcomes] == [JobOutcomeKind.PUBLISHED, JobOutcomeKind.ALREADY_PUBLISHED]
        assert ghl_adapter.calls == ["T1"]
        assert len(storage.list_ledger_entries("D1")) == 1

    def test_job_claimed_elsewhere_is_skipped(self, storage, adapters, ghl_adapter):
        add_draft(storage)
        add_target(storage, "T1")
        job = enqueue(storage, "D1", "L1")[0]
        storage.claim_job(job.job_id)

        outcome = run_job(storage, adapters, job)

        assert outcome.kind == JobOutcomeKind.SKIPPED
        assert ghl_adapter.calls == []
        assert storage.get_job(job.job_id).status == PublishJobStatus.RUNNING

    def test_claim_write_failure_is_best_effort(self, storage, adapters, ghl_adapter):
        add_draft(storage)
        add_target(storage, "T1")
        job = enqueue(storage, "D1", "L1")[0]
        storage.claim_job = MagicMock(side_effect=RuntimeError("locked"))

        outcome = run_job(storage, adapters, job)

        assert outcome.kind == JobOutcomeKind.PUBLISHED
        assert storage.get_job(job.job_id).status == PublishJobStatus.DONE

    def test_missing_target(self, storage, adapters, ghl_adapter):
        add_draft(storage)
        storage.create_job(PublishJobCreate(draft_id="D1", location_id="L1", target_id="gone", platform="ghl"))

        dispatch_queued(storage, adapters, "D1", "L1")

        job = jobs_by_target(storage)["gone"]
        assert job.status == PublishJobStatus.FAILED
        assert job.last_error == "publish_target_missing"
        assert ghl_adapter.calls == []

    def test_missing_draft(self, storage, adapters, ghl_adapter):
        add_target(storage, "T1")
        enqueue(storage, "D1", "L1")

        dispatch_queued(storage, adapters, "D1", "L1")

        assert jobs_by_target(storage)["T1"].last_error == "draft_missing"
        assert ghl_adapter.calls == []

    def test_ledger_write_failure_fails_job(self, storage, adapters, ghl_adapter):
        add_draft(storage)
        add_target(storage, "T1")
        enqueue(storage, "D1", "L1")
        storage.record_ledger_entry = MagicMock(side_effect=RuntimeError("disk full"))

        outcomes = dispatch_queued(storage, adapters, "D1", "L1")

        job = jobs_by_target(storage)["T1"]
        assert job.status == PublishJobStatus.FAILED
        assert job.last_error == "ledger_write_failed: RuntimeError: disk full"
        assert outcomes[0].external_id == "ext-T1"

    def test_ledger_race_still_done(self, storage, adapters):
        add_draft(storage)
        add_target(storage, "T1")
        enqueue(storage, "D1", "L1")
        storage.record_ledger_entry = MagicMock(return_value=False)

        outcomes = dispatch_queued(storage, adapters, "D1", "L1")

        assert outcomes[0].kind == JobOutcomeKind.PUBLISHED
        assert jobs_by_target(storage)["T1"].status == PublishJobStatus.DONE

    def test_status_write_failure_is_swallowed(self, storage, adapters):
        add_draft(storage)
        add_target(storage, "T1")
        job = enqueue(storage, "D1", "L1")[0]
        storage.complete_job = MagicMock(side_effect=RuntimeError("db down"))

        outcome = run_job(storage, adapters, job)

        assert outcome.kind == JobOutcomeKind.PUBLISHED
        assert storage.get_job(job.job_id).status == PublishJobStatus.RUNNING
        assert storage.is_published("D1", "ghl", "T1")

    def test_last_error_truncated(self, storage):
        adapters = AdapterRegistry({"ghl": FakeAdapter("ghl", error=ValueError("x" * 2000))})
        add_draft(storage)
        add_target(storage, "T1")
        enqueue(storage, "D1", "L1")

        dispatch_queued(storage, adapters, "D1", "L1")

        last_error = jobs_by_target(storage)["T1"].last_error
        assert len(last_error) == 500
        assert last_error.startswith("ValueError: xxx")

    def test_dispatch_is_fail_open(self, storage, adapters):
        storage.list_queued_jobs = MagicMock(side_effect=RuntimeError("db down"))

        result = try_dispatch(storage, adapters, "D1", "L1")
        assert not result.ok
        assert result.error == "db down"

        assert dispatch_queued(storage, adapters, "D1", "L1") == []

    def test_terminal_jobs_are_not_redispatched(self, storage, adapters, ghl_adapter):
        add_draft(storage)
        add_target(storage, "T1")
        enqueue(storage, "D1", "L1")
        dispatch_queued(storage, adapters, "D1", "L1")

        assert dispatch_queued(storage, adapters, "D1", "L1") == []
        assert ghl_adapter.calls == ["T1"]


class TestPublishQueue:
    """Tests for the queue service entry point and operator actions."""

    def test_on_draft_approved_inline(self, storage, queue, ghl_adapter):
        add_draft(storage)
        add_target(storage, "T1")

        queue.on_draft_approved("D1", "L1")

        assert jobs_by_target(storage)["T1"].status == PublishJobStatus.DONE
        assert ghl_adapter.calls == ["T1"]

    def test_on_draft_approved_background(self, storage, queue, ghl_adapter):
        add_draft(storage)
        add_target(storage, "T1")
        scheduled = []

        queue.on_draft_approved("D1", "L1", run_in_background=lambda func, *args: scheduled.append((func, args)))

        assert jobs_by_target(storage)["T1"].status == PublishJobStatus.QUEUED
        assert ghl_adapter.calls == []
        assert len(scheduled) == 1

        func, args = scheduled[0]
        func(*args)
        assert jobs_by_target(storage)["T1"].status == PublishJobStatus.DONE

    def test_on_draft_approved_never_raises(self, storage, queue):
        add_target(storage, "T1")

        def broken_runner(func, *args):
            raise RuntimeError("no workers")

        queue.on_draft_approved("D1", "L1", run_in_background=broken_runner)

        storage.get_active_targets = MagicMock(side_effect=RuntimeError("db down"))
        queue.on_draft_approved("D1", "L1")

    def test_idempotent_after_publish(self, storage, queue):
        add_draft(storage)
        add_target(storage, "T1")
        queue.on_draft_approved("D1", "L1")

        assert queue.enqueue("D1", "L1") == []
        assert len(storage.list_jobs(draft_id="D1")) == 1

    def test_requeue_failed_job(self, storage, queue):
        add_target(storage, "T1")
        queue.on_draft_approved("D1", "L1")
        failed = jobs_by_target(storage)["T1"]
        assert failed.last_error == "draft_missing"

        new_job = queue.requeue_job(failed.job_id)

        assert new_job is not None
        assert new_job.job_id != failed.job_id
        assert new_job.status == PublishJobStatus.QUEUED
        assert new_job.target_id == "T1"
        assert storage.get_job(failed.job_id).status == PublishJobStatus.FAILED

        add_draft(storage)
        queue.dispatch_queued("D1", "L1")
        assert storage.get_job(new_job.job_id).status == PublishJobStatus.DONE

    def test_requeue_rejects_non_failed(self, storage, queue):
        add_target(storage, "T1")
        job = queue.enqueue("D1", "L1")[0]
        assert queue.requeue_job(job.job_id) is None
        assert queue.requeue_job("missing") is None

    def test_requeue_rejects_published(self, storage, queue):
        add_target(storage, "T1")
        job = queue.enqueue("D1", "L1")[0]
        storage.fail_job(job.job_id, "timeout")
        storage.record_ledger_entry("D1", "ghl", "T1", "ext")

        assert queue.requeue_job(job.job_id) is None

    def test_recover_stale_jobs(self, storage, queue, monkeypatch):
        add_target(storage, "T1")
        add_target(storage, "T2")
        jobs = queue.enqueue("D1", "L1")

        monkeypatch.setattr(
            "blog_publisher.persistence.memory_storage.utc_now", lambda: utc_now() - timedelta(hours=2)
        )
        storage.claim_job(jobs[0].job_id)
        monkeypatch.undo()

        assert queue.recover_stale_jobs(900) == 1

        stale = storage.get_job(jobs[0].job_id)
        assert stale.status == PublishJobStatus.FAILED
        assert stale.last_error == STALE_RUNNING_JOB_ERROR
        assert storage.get_job(jobs[1].job_id).status == PublishJobStatus.QUEUED
        assert len(storage.list_jobs()) == 2

    def test_stats_and_reads(self, storage, queue):
        add_draft(storage)
        add_target(storage, "T1")
        add_target(storage, "T2", platform="wordpress")
        queue.on_draft_approved("D1", "L1")

        stats = queue.get_stats()
        assert stats.total_jobs == 2
        assert stats.done_jobs == 1
        assert stats.failed_jobs == 1
        assert stats.ledger_entries == 1

        assert len(queue.list_jobs(status=PublishJobStatus.FAILED)) == 1
        assert [e.target_id for e in queue.list_ledger("D1")] == ["T1"]
