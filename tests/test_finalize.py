"""Tests for run finalization and retention."""

from datetime import timedelta

import pytest

from resume_import.imports.finalize import finalize_run_if_complete
from resume_import.models import ImportItem, ImportRun
from resume_import.models.base import utc_now


class TestFinalizeRunIfComplete:
    def test_noop_while_items_pending(self, db, make_run, make_item):
        run = make_run()
        make_item(run, status="completed")
        make_item(run, status="pending")

        result = finalize_run_if_complete(db, run.id)

        assert result.finalized is False
        assert result.pending_items == 1
        assert db.query(ImportItem).filter(ImportItem.run_id == run.id).count() == 2

    def test_noop_while_ai_jobs_active(self, db, make_run, make_item, make_ai_job):
        run = make_run()
        make_item(run, status="processing", resume_id=3)
        make_ai_job(run, 3, status="retry", attempts=1, next_retry_at=utc_now() + timedelta(minutes=1))

        result = finalize_run_if_complete(db, run.id)

        assert result.finalized is False
        assert result.pending_ai_jobs == 1

    def test_noop_before_scan_listed_anything(self, db, make_run):
        run = make_run()

        assert finalize_run_if_complete(db, run.id).finalized is False
        db.expire_all()
        assert db.get(ImportRun, run.id).status == "running"

    def test_noop_for_non_running_run(self, db, make_run, make_item):
        run = make_run(status="canceled")
        make_item(run, status="completed")
        assert finalize_run_if_complete(db, run.id).finalized is False
        assert finalize_run_if_complete(db, "no-such-run").finalized is False

    def test_succeeds_with_one_completed_item(self, db, make_run, make_item, make_ai_job):
        started = utc_now() - timedelta(seconds=30)
        run = make_run(started_at=started, total_messages=3, processed_messages=3)
        make_item(run, status="completed")
        make_item(run, status="failed", last_error="ingest failed")
        make_item(run, status="completed", resume_id=9)
        make_ai_job(run, 9, status="succeeded", attempts=1)

        result = finalize_run_if_complete(db, run.id)

        assert result.finalized is True
        assert result.status == "succeeded"
        assert (result.completed_count, result.failed_count) == (2, 1)

        db.expire_all()
        stored = db.get(ImportRun, run.id)
        assert stored.status == "succeeded"
        assert stored.progress == pytest.approx(1.0)
        assert stored.processed_messages == 2
        assert stored.last_error is None
        assert stored.finished_at is not None
        assert stored.processing_duration_ms >= 30_000
        assert stored.summary["totals"] == {"totalMessages": 3, "processedMessages": 2, "failedMessages": 1}
        assert stored.summary["itemFailures"] == [{"messageId": "msg-2", "error": "ingest failed"}]
        assert db.query(ImportItem).filter(ImportItem.run_id == run.id).count() == 0

    def test_all_failed_sets_aggregate_error(self, db, make_run, make_item):
        run = make_run(total_messages=2, processed_messages=2)
        make_item(run, status="failed", last_error="a")
        make_item(run, status="failed", last_error="b")

        result = finalize_run_if_complete(db, run.id)

        assert result.status == "failed"
        db.expire_all()
        stored = db.get(ImportRun, run.id)
        assert stored.last_error == "All 2 items failed. Check item errors for details."
        assert "2 email(s) failed during import" in stored.summary["warnings"]

    def test_idempotent(self, db, make_run, make_item):
        run = make_run()
        make_item(run, status="completed")

        assert finalize_run_if_complete(db, run.id).finalized is True
        assert finalize_run_if_complete(db, run.id).finalized is False
        db.expire_all()
        assert db.get(ImportRun, run.id).status == "succeeded"

    def test_duration_falls_back_to_created_at(self, db, make_run, make_item):
        run = make_run(started_at=None, created_at=utc_now() - timedelta(seconds=5))
        make_item(run, status="completed")

        finalize_run_if_complete(db, run.id)

        db.expire_all()
        assert db.get(ImportRun, run.id).processing_duration_ms >= 5_000

    def test_custom_summary_builder(self, db, make_run, make_item):
        run = make_run()
        make_item(run, status="completed")
        seen = {}

        def builder(session, **kwargs):
            seen.update(kwargs)
            return {"custom": True}

        finalize_run_if_complete(db, run.id, summary_builder=builder)

        assert seen["run_id"] == run.id
        assert seen["processed_messages"] == 1
        db.expire_all()
        assert db.get(ImportRun, run.id).summary == {"custom": True}


class TestRetention:
    def test_prunes_terminal_runs_beyond_limit(self, db, make_run, make_item):
        now = utc_now()
        old = [
            make_run(status="succeeded", finished_at=now - timedelta(days=10 - i))
            for i in range(3)
        ]
        run = make_run()
        make_item(run, status="completed")

        result = finalize_run_if_complete(db, run.id, keep_runs=2)

        assert result.pruned_runs == 2
        db.expire_all()
        remaining = {r.id for r in db.query(ImportRun).all()}
        assert remaining == {run.id, old[2].id}

    def test_active_runs_never_pruned(self, db, make_posting, make_run, make_item):
        run = make_run()
        make_item(run, status="completed")
        other_job = make_posting("Other")
        other_running = make_run(job_id=other_job.id)

        finalize_run_if_complete(db, run.id, keep_runs=0)

        db.expire_all()
        assert db.get(ImportRun, other_running.id) is not None
