"""Step definitions for publish job queue BDD tests."""

import pytest
from pytest_bdd import given, parsers, scenarios, then, when

from blog_publisher.adapters import AdapterRegistry, PublishAdapter, PublishResult
from blog_publisher.persistence import DraftCreate, MemoryStorage, PublishJobStatus, PublishTargetCreate
from blog_publisher.queue import PublishQueue

scenarios("../features/publish_queue.feature")


class CountingAdapter(PublishAdapter):
    """Adapter that counts calls and can fail the first few."""

    def __init__(self, platform, failures=0, message="boom"):
        self.platform = platform
        self.failures = failures
        self.message = message
        self.calls = 0

    def publish(self, target, draft, job):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(self.message)
        return PublishResult(external_id=f"{self.platform}-{job.target_id}")


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def registry():
    return AdapterRegistry()


@pytest.fixture
def queue(storage, registry):
    return PublishQueue(storage, registry)


def job_for_target(storage, target_id):
    jobs = [j for j in storage.list_jobs() if j.target_id == target_id]
    assert jobs, f"no job for target {target_id}"
    return jobs[0]


# Given steps
@given(parsers.parse('a draft "{draft_id}" in location "{location_id}"'))
def seed_draft(storage, draft_id, location_id):
    storage.save_draft(DraftCreate(draft_id=draft_id, location_id=location_id, title="Title", content_html="<p>x</p>"))


@given(parsers.parse('an active "{platform}" target "{target_id}" in location "{location_id}"'))
def active_target(storage, platform, target_id, location_id):
    storage.upsert_target(PublishTargetCreate(target_id=target_id, location_id=location_id, platform=platform))


@given(parsers.parse('an inactive "{platform}" target "{target_id}" in location "{location_id}"'))
def inactive_target(storage, platform, target_id, location_id):
    storage.upsert_target(
        PublishTargetCreate(target_id=target_id, location_id=location_id, platform=platform, is_active=False)
    )


@given(parsers.parse('a working "{platform}" adapter'))
def working_adapter(registry, platform):
    registry.register(platform, CountingAdapter(platform))


@given(parsers.parse('a "{platform}" adapter that fails once with "{message}"'))
def flaky_adapter(registry, platform, message):
    registry.register(platform, CountingAdapter(platform, failures=1, message=message))


# When steps
@when(parsers.parse('draft "{draft_id}" is approved in location "{location_id}"'))
def approve_draft(queue, draft_id, location_id):
    queue.on_draft_approved(draft_id, location_id)


@when(parsers.parse('the failed job for target "{target_id}" is requeued and dispatched'))
def requeue_and_dispatch(queue, storage, target_id):
    failed = job_for_target(storage, target_id)
    new_job = queue.requeue_job(failed.job_id)
    assert new_job is not None
    queue.dispatch_queued(new_job.draft_id, new_job.location_id)


# Then steps
@then(parsers.parse('job for target "{target_id}" is "{status}"'))
def job_has_status(storage, target_id, status):
    assert job_for_target(storage, target_id).status == PublishJobStatus(status)


@then(parsers.parse('job for target "{target_id}" failed with error "{error}"'))
def job_failed_with(storage, target_id, error):
    job = job_for_target(storage, target_id)
    assert job.status == PublishJobStatus.FAILED
    assert job.last_error == error


@then(parsers.parse('there is no job for target "{target_id}"'))
def no_job_for_target(storage, target_id):
    assert [j for j in storage.list_jobs() if j.target_id == target_id] == []


@then(parsers.parse('there is {count:d} job for draft "{draft_id}"'))
def job_count(storage, count, draft_id):
    assert len(storage.list_jobs(draft_id=draft_id)) == count


@then(parsers.parse('the ledger for draft "{draft_id}" has {count:d} entries'))
def ledger_count(storage, draft_id, count):
    assert len(storage.list_ledger_entries(draft_id)) == count


@then(parsers.parse('the "{platform}" adapter was called {count:d} times'))
def adapter_calls(registry, platform, count):
    assert registry.get(platform).calls == count
