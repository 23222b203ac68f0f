"""Tests for cancellation."""

import pytest

from resume_import.errors import NotFoundError
from resume_import.imports.cancel import cancel_run
from resume_import.models import ImportItem, ImportRun


class TestCancelRun:
    def test_cancel_running_run_cancels_open_items(self, db, make_run, make_item):
        run = make_run()
        pending = [make_item(run, status="pending") for _ in range(3)]
        done = make_item(run, status="completed")

        canceled = cancel_run(db, run.id)

        assert canceled.status == "canceled"
        assert canceled.finished_at is not None
        assert canceled.processing_duration_ms >= 0
        db.expire_all()
        for item in pending:
            assert db.get(ImportItem, item.id).status == "canceled"
        assert db.get(ImportItem, done.id).status == "completed"

    def test_cancel_enqueued_run(self, db, make_run):
        run = make_run(status="enqueued")
        assert cancel_run(db, run.id).status == "canceled"

    def test_unknown_run_raises(self, db):
        with pytest.raises(NotFoundError):
            cancel_run(db, "missing")

    @pytest.mark.parametrize("status", ["succeeded", "failed", "canceled"])
    def test_terminal_run_raises(self, db, make_run, status):
        run = make_run(status=status)
        with pytest.raises(NotFoundError):
            cancel_run(db, run.id)
        db.expire_all()
        assert db.get(ImportRun, run.id).status == status

    def test_canceled_run_frees_the_job_for_a_new_import(self, db, make_run, job_posting):
        from resume_import.imports.enqueue import enqueue_run
        run = make_run()
        cancel_run(db, run.id)
        new_run = enqueue_run(db, job_posting.id, "jobs@example.com", "backend engineer")
        assert new_run.status == "enqueued"
