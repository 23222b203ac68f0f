"""Shared fixtures: a throwaway SQLite database per test plus row factories."""

import os
import tempfile

import pytest

from resume_import.config import AppConfig
from resume_import.mailbox.provider import AttachmentInfo, DiscoveredMessage, IngestResult
from resume_import.models import ImportItem, ImportRun, JobPosting, ResumeAiJob
from resume_import.models.base import init_db, make_engine, make_session_factory, utc_now


@pytest.fixture
def engine():
    """Create a temporary database for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        eng = make_engine(f"sqlite:///{os.path.join(tmpdir, 'test.db')}")
        init_db(eng)
        yield eng
        eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def config():
    config = AppConfig()
    config.worker.concurrency = 2
    config.store.retry_base_delay_ms = 1
    return config


@pytest.fixture
def make_posting(db):
    def _make(title="Backend Engineer", **fields):
        posting = JobPosting(
            title=title,
            description=fields.pop("description", "Build and run our APIs."),
            requirements=fields.pop("requirements", "Python, SQL"),
            **fields,
        )
        db.add(posting)
        db.commit()
        return posting
    return _make


@pytest.fixture
def job_posting(make_posting):
    return make_posting(application_query="backend engineer resume")


@pytest.fixture
def make_run(db, job_posting):
    def _make(status="running", job_id=None, **fields):
        run = ImportRun(
            job_id=job_id or job_posting.id,
            mailbox="jobs@example.com",
            search_text="backend engineer",
            status=status,
            started_at=fields.pop("started_at", utc_now() if status != "enqueued" else None),
            **fields,
        )
        db.add(run)
        db.commit()
        return run
    return _make


@pytest.fixture
def make_item(db):
    counter = {"n": 0}

    def _make(run, status="pending", resume_id=None, **fields):
        counter["n"] += 1
        item = ImportItem(
            run_id=run.id,
            job_id=run.job_id,
            external_message_id=fields.pop("external_message_id", f"msg-{counter['n']}"),
            status=status,
            resume_id=resume_id,
            **fields,
        )
        db.add(item)
        db.commit()
        return item
    return _make


@pytest.fixture
def make_ai_job(db):
    def _make(run, resume_id, status="pending", attempts=0, **fields):
        job = ResumeAiJob(
            run_id=run.id,
            job_id=run.job_id,
            resume_id=resume_id,
            status=status,
            attempts=attempts,
            **fields,
        )
        db.add(job)
        db.commit()
        return job
    return _make


class FakeScanner:
    """In-memory mailbox: a fixed listing plus per-message ingest results."""

    def __init__(self, messages=None, ingest_results=None, scan_error=None):
        self.messages = list(messages or [])
        self.ingest_results = dict(ingest_results or {})
        self.scan_error = scan_error
        self.scan_calls = []
        self.ingested = []

    def scan(self, mailbox, search_text, limit, mode, lookback_days):
        self.scan_calls.append((mailbox, search_text, limit, mode, lookback_days))
        if self.scan_error is not None:
            raise self.scan_error
        return list(self.messages)

    @staticmethod
    def message(message_id, attachments=None, **fields):
        return DiscoveredMessage(
            external_message_id=message_id,
            thread_id=fields.pop("thread_id", f"thread-{message_id}"),
            attachments=attachments if attachments is not None else [],
            **fields,
        )

    @staticmethod
    def attachment(name="resume.pdf", size=100_000, is_file=True):
        return AttachmentInfo(id=f"att-{name}", name=name, content_type="application/octet-stream", size=size, is_file=is_file)

    def ingest(self, mailbox, message, job_id):
        self.ingested.append(message.external_message_id)
        result = self.ingest_results.get(message.external_message_id)
        if isinstance(result, Exception):
            raise result
        if result is None:
            return IngestResult()
        return result


@pytest.fixture
def fake_scanner():
    return FakeScanner
