"""Tests for enqueueing imports."""

import pytest

from resume_import.errors import ConflictError, NotFoundError, ValidationError
from resume_import.imports.enqueue import default_search_text, enqueue_run
from resume_import.models import ImportRun


def _enqueue(db, job_id, **kwargs):
    kwargs.setdefault("mailbox", "jobs@example.com")
    kwargs.setdefault("search_text", "backend engineer")
    return enqueue_run(db, job_id, **kwargs)


class TestEnqueueRun:
    def test_creates_enqueued_run(self, db, job_posting):
        run = _enqueue(db, job_posting.id, options={"max_emails": 50, "mode": "deep-scan"}, requested_by="hr@example.com")

        assert run.status == "enqueued"
        assert run.progress == 0.0
        assert run.attempts == 0
        assert run.processed_messages == 0
        assert run.total_messages == 0
        assert run.max_emails == 50
        assert run.meta == {"mode": "deep-scan", "lookback_days": 90}
        assert run.requested_by == "hr@example.com"
        assert len(run.id) == 36

    def test_default_max_emails(self, db, job_posting):
        run = _enqueue(db, job_posting.id, default_max_emails=200)
        assert run.max_emails == 200

    def test_second_enqueue_conflicts_with_existing_id(self, db, job_posting):
        first = _enqueue(db, job_posting.id)

        with pytest.raises(ConflictError) as exc_info:
            _enqueue(db, job_posting.id)

        assert exc_info.value.existing_run_id == first.id
        assert exc_info.value.existing_status == "enqueued"
        assert exc_info.value.race is False
        assert db.query(ImportRun).filter(ImportRun.job_id == job_posting.id).count() == 1

    def test_running_run_also_conflicts(self, db, make_run, job_posting):
        running = make_run(status="running")
        with pytest.raises(ConflictError) as exc_info:
            _enqueue(db, job_posting.id)
        assert exc_info.value.existing_run_id == running.id
        assert exc_info.value.existing_status == "running"

    def test_terminal_runs_do_not_block(self, db, make_run, job_posting):
        make_run(status="succeeded")
        make_run(status="canceled")
        run = _enqueue(db, job_posting.id)
        assert run.status == "enqueued"

    def test_lost_race_reports_winner(self, db, session_factory, job_posting, monkeypatch):
        # A competing enqueue commits between our existence check and our insert
        other = session_factory()
        winner = ImportRun(job_id=job_posting.id, mailbox="a@example.com", search_text="xx", status="enqueued")
        other.add(winner)

        from resume_import.storage import runs as run_store
        real_find = run_store.find_active_run
        calls = {"n": 0}

        def find_then_commit_competitor(session, job_id):
            calls["n"] += 1
            if calls["n"] == 1:
                other.commit()
                return None
            return real_find(session, job_id)

        monkeypatch.setattr(run_store, "find_active_run", find_then_commit_competitor)

        with pytest.raises(ConflictError) as exc_info:
            _enqueue(db, job_posting.id)

        assert exc_info.value.race is True
        assert exc_info.value.existing_run_id == winner.id
        assert db.query(ImportRun).filter(ImportRun.job_id == job_posting.id).count() == 1
        other.close()

    def test_unknown_job_raises_not_found(self, db):
        with pytest.raises(NotFoundError):
            _enqueue(db, 9999)

    @pytest.mark.parametrize("kwargs", [
        {"mailbox": "not-an-email"},
        {"mailbox": ""},
        {"search_text": " x "},
        {"options": {"max_emails": 0}},
        {"options": {"max_emails": 5001}},
        {"options": {"max_emails": "10"}},
        {"options": {"mode": "full-text"}},
        {"options": {"lookback_days": 0}},
    ])
    def test_invalid_input_raises_validation_error(self, db, job_posting, kwargs):
        with pytest.raises(ValidationError):
            _enqueue(db, job_posting.id, **kwargs)
        assert db.query(ImportRun).count() == 0

    def test_on_enqueued_called_with_run_id(self, db, job_posting):
        seen = []
        run = _enqueue(db, job_posting.id, on_enqueued=seen.append)
        assert seen == [run.id]

    def test_on_enqueued_failure_does_not_fail_enqueue(self, db, job_posting):
        def broken_trigger(run_id):
            raise RuntimeError("dispatcher unreachable")

        run = _enqueue(db, job_posting.id, on_enqueued=broken_trigger)
        assert db.get(ImportRun, run.id).status == "enqueued"


class TestDefaultSearchText:
    def test_prefers_application_query(self, db, job_posting):
        assert default_search_text(db, job_posting.id) == "backend engineer resume"

    def test_falls_back_to_title(self, db, make_posting):
        posting = make_posting(title="Data Analyst")
        assert default_search_text(db, posting.id) == "Data Analyst"

    def test_unknown_job_is_empty(self, db):
        assert default_search_text(db, 424242) == ""
