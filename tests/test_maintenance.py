"""Tests for stale claim recovery and stuck run reaping."""

from datetime import timedelta

from resume_import.imports.maintenance import fail_stuck_runs, release_stale_claims
from resume_import.models import ImportItem, ImportRun, ResumeAiJob
from resume_import.models.base import utc_now
from resume_import.storage import ai_jobs as ai_job_store


class TestReleaseStaleClaims:
    def test_old_claim_returns_to_retry(self, db, config, make_run, make_item, make_ai_job):
        run = make_run()
        item = make_item(run, status="processing", resume_id=3, gpt_status="in_progress")
        long_ago = utc_now() - timedelta(milliseconds=config.worker.stale_claim_ms + 60_000)
        job = make_ai_job(run, 3, status="processing", attempts=1, last_started_at=long_ago)

        counts = release_stale_claims(db, config)

        assert counts == {"released": 1, "failed": 0}
        db.expire_all()
        stored = db.get(ResumeAiJob, job.id)
        assert stored.status == "retry"
        assert stored.next_retry_at is not None
        assert stored.attempts == 1
        assert db.get(ImportItem, item.id).gpt_status == "queued"

    def test_exhausted_claim_fails(self, db, config, make_run, make_item, make_ai_job):
        run = make_run()
        make_item(run, status="processing", resume_id=3)
        long_ago = utc_now() - timedelta(hours=1)
        job = make_ai_job(run, 3, status="processing", attempts=config.worker.max_attempts, last_started_at=long_ago)

        counts = release_stale_claims(db, config)

        assert counts == {"released": 0, "failed": 1}
        db.expire_all()
        assert db.get(ResumeAiJob, job.id).status == "failed"
        # Only item was failed, so the run finalizes as failed
        assert db.get(ImportRun, run.id).status == "failed"

    def test_fresh_claim_left_alone(self, db, config, make_run, make_ai_job):
        run = make_run()
        job = make_ai_job(run, 3, status="processing", attempts=1, last_started_at=utc_now())

        assert release_stale_claims(db, config) == {"released": 0, "failed": 0}
        db.expire_all()
        assert db.get(ResumeAiJob, job.id).status == "processing"

    def test_claim_renewed_during_sweep_is_kept(
        self, db, session_factory, config, make_run, make_item, make_ai_job, monkeypatch
    ):
        run = make_run()
        make_item(run, status="processing", resume_id=1)
        make_item(run, status="processing", resume_id=2)
        long_ago = utc_now() - timedelta(milliseconds=config.worker.stale_claim_ms + 60_000)
        make_ai_job(run, 1, status="processing", attempts=1, last_started_at=long_ago)
        second = make_ai_job(run, 2, status="processing", attempts=1, last_started_at=long_ago)
        find_stale = ai_job_store.stale_claims

        def stale_then_reclaimed(session, started_before):
            found = find_stale(session, started_before)
            # Another sweep releases both, then a live worker claims the second job again
            other = session_factory()
            try:
                for claim in found:
                    ai_job_store.release_claim(
                        other, claim, utc_now(), started_before, config.worker.max_attempts, "stale"
                    )
                assert ai_job_store.claim(other, second.id, "retry", 1, utc_now())
                other.commit()
            finally:
                other.close()
            return found

        monkeypatch.setattr(ai_job_store, "stale_claims", stale_then_reclaimed)

        assert release_stale_claims(db, config) == {"released": 0, "failed": 0}
        db.expire_all()
        stored = db.get(ResumeAiJob, second.id)
        assert stored.status == "processing"
        assert stored.attempts == 2


class TestFailStuckRuns:
    def test_marks_old_running_runs_failed(self, db, make_posting, make_run, make_item):
        stuck = make_run(started_at=utc_now() - timedelta(hours=5))
        item = make_item(stuck, status="pending")
        recent = make_run(job_id=make_posting("Recent").id)

        failed = fail_stuck_runs(db, older_than_hours=2)

        assert failed == [stuck.id]
        db.expire_all()
        stored = db.get(ImportRun, stuck.id)
        assert stored.status == "failed"
        assert "marked failed by cleanup" in stored.last_error
        assert stored.finished_at is not None
        assert db.get(ImportItem, item.id).status == "canceled"
        assert db.get(ImportRun, recent.id).status == "running"
