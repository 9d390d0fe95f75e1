"""Tests for the operator CLI."""

import json

import pytest

from blog_publisher.__main__ import build_parser, main
from blog_publisher.crypto import decrypt_secret
from blog_publisher.persistence import (
    DraftCreate,
    PublishJobStatus,
    PublishTargetCreate,
    create_storage,
)


@pytest.fixture
def db_path(tmp_path):
    """SQLite database seeded with a draft and a misconfigured WordPress target."""
    path = str(tmp_path / "publisher.db")
    storage = create_storage("sqlite", db_path=path)
    storage.save_draft(DraftCreate(draft_id="D1", location_id="L1", title="Hello", content_html="<p>Hi</p>"))
    storage.upsert_target(PublishTargetCreate(target_id="T1", location_id="L1", platform="wordpress"))
    storage.close()
    return path


def run(db_path, *args):
    return main(["--storage", "sqlite", "--db-path", db_path, *args])


def load_jobs(db_path):
    storage = create_storage("sqlite", db_path=db_path)
    try:
        return storage.list_jobs(draft_id="D1")
    finally:
        storage.close()


class TestParser:
    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_approve_requires_location(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["approve", "D1"])

    def test_defaults(self):
        args = build_parser().parse_args(["recover-stale"])
        assert args.older_than == 900
        assert args.storage is None


class TestCommands:
    def test_approve_fails_job_without_config(self, db_path, capsys):
        assert run(db_path, "approve", "D1", "--location", "L1") == 0

        out = capsys.readouterr().out
        assert "failed" in out
        assert "wp_base_url_missing" in out

        jobs = load_jobs(db_path)
        assert len(jobs) == 1
        assert jobs[0].status == PublishJobStatus.FAILED
        assert jobs[0].attempts == 1

    def test_jobs_json(self, db_path, capsys):
        run(db_path, "approve", "D1", "--location", "L1")
        capsys.readouterr()

        assert run(db_path, "jobs", "--status", "failed", "--json") == 0
        jobs = json.loads(capsys.readouterr().out)
        assert [j["target_id"] for j in jobs] == ["T1"]
        assert jobs[0]["last_error"] == "wp_base_url_missing"

    def test_requeue(self, db_path, capsys):
        run(db_path, "approve", "D1", "--location", "L1")
        failed = load_jobs(db_path)[0]

        assert run(db_path, "requeue", failed.job_id) == 0
        assert "Requeued as" in capsys.readouterr().out

        jobs = load_jobs(db_path)
        assert sorted(j.status.value for j in jobs) == ["failed", "queued"]

        assert run(db_path, "dispatch", "D1", "--location", "L1") == 0
        assert "wp_base_url_missing" in capsys.readouterr().out

    def test_requeue_not_eligible(self, db_path, capsys):
        assert run(db_path, "requeue", "missing") == 1
        assert "not eligible" in capsys.readouterr().out

    def test_dispatch_nothing_queued(self, db_path, capsys):
        assert run(db_path, "dispatch", "D1", "--location", "L1") == 0
        assert "No queued jobs" in capsys.readouterr().out

    def test_ledger_empty(self, db_path, capsys):
        assert run(db_path, "ledger", "D1") == 0
        assert "No ledger entries" in capsys.readouterr().out

    def test_stats(self, db_path, capsys):
        run(db_path, "approve", "D1", "--location", "L1")
        capsys.readouterr()

        assert run(db_path, "stats") == 0
        stats = json.loads(capsys.readouterr().out)
        assert stats["total_jobs"] == 1
        assert stats["failed_jobs"] == 1

    def test_recover_stale(self, db_path, capsys):
        assert run(db_path, "recover-stale", "--older-than", "60") == 0
        assert "Failed 0 stale" in capsys.readouterr().out

    def test_platforms(self, db_path, capsys):
        assert run(db_path, "platforms") == 0
        out = capsys.readouterr().out
        assert "ghl" in out
        assert "wordpress" in out

    def test_encrypt_secret(self, monkeypatch, capsys):
        monkeypatch.setenv("PUBLISHER_TOKEN_KEY", "cli-key")
        assert main(["encrypt-secret", "s3cret"]) == 0
        token = capsys.readouterr().out.strip()
        assert decrypt_secret(token, key="cli-key") == "s3cret"

    def test_encrypt_secret_without_key(self, monkeypatch, capsys):
        monkeypatch.delenv("PUBLISHER_TOKEN_KEY", raising=False)
        assert main(["encrypt-secret", "s3cret"]) == 1
        assert "missing_env_PUBLISHER_TOKEN_KEY" in capsys.readouterr().out
