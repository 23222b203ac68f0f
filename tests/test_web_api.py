"""Tests for the HTTP API."""

import inspect

import pytest
from fastapi.testclient import TestClient

from resume_import.mailbox.provider import IngestResult
from resume_import.models import ImportRun
from resume_import.web.app import create_app
from resume_import.web.imports import enqueue_import, preview_import_route


@pytest.fixture
def triggered():
    return []


@pytest.fixture
def make_client(config, session_factory, triggered):
    def _make(scanner=None, parse_resume=None):
        app = create_app(
            config,
            session_factory,
            scanner=scanner,
            parse_resume=parse_resume,
            dispatch_trigger=triggered.append,
        )
        return TestClient(app)
    return _make


@pytest.fixture
def client(make_client):
    return make_client()


class TestEnqueueRoute:
    def test_enqueue_returns_run(self, client, job_posting, triggered):
        response = client.post(
            f"/api/jobs/{job_posting.id}/import-emails",
            json={"mailbox": "jobs@example.com", "search_text": "python developer", "max_emails": 25},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "enqueued"
        assert triggered == [data["run_id"]]

    def test_search_text_defaults_to_posting_query(self, client, db, job_posting):
        response = client.post(f"/api/jobs/{job_posting.id}/import-emails", json={"mailbox": "jobs@example.com"})
        run = db.get(ImportRun, response.json()["run_id"])
        assert run.search_text == "backend engineer resume"

    def test_conflict(self, client, job_posting):
        body = {"mailbox": "jobs@example.com"}
        first = client.post(f"/api/jobs/{job_posting.id}/import-emails", json=body).json()

        response = client.post(f"/api/jobs/{job_posting.id}/import-emails", json=body)

        assert response.status_code == 409
        data = response.json()
        assert data["existing_run_id"] == first["run_id"]
        assert data["existing_status"] == "enqueued"
        assert "error" in data

    def test_unknown_job(self, client):
        response = client.post("/api/jobs/999/import-emails", json={"mailbox": "jobs@example.com", "search_text": "abc"})
        assert response.status_code == 404

    def test_validation_error(self, client, job_posting):
        response = client.post(
            f"/api/jobs/{job_posting.id}/import-emails",
            json={"mailbox": "jobs@example.com", "mode": "everything"},
        )
        assert response.status_code == 422
        assert response.json()["kind"] == "validation"

    def test_non_object_body(self, client, job_posting):
        response = client.post(f"/api/jobs/{job_posting.id}/import-emails", json=["jobs@example.com"])
        assert response.status_code == 422


class TestRunRoutes:
    def test_status_and_cancel(self, client, make_run):
        run = make_run()

        assert client.get(f"/api/import-runs/{run.id}").json()["status"] == "running"

        response = client.post(f"/api/import-runs/{run.id}/cancel")
        assert response.status_code == 200
        assert response.json() == {"run_id": run.id, "status": "canceled"}

        assert client.post(f"/api/import-runs/{run.id}/cancel").status_code == 404

    def test_unknown_run(self, client):
        assert client.get("/api/import-runs/nope").status_code == 404
        assert client.post("/api/import-runs/nope/cancel").status_code == 404
        assert client.delete("/api/import-runs/nope/summary").status_code == 404

    def test_summary_and_clear(self, client, db, make_run):
        run = make_run(status="succeeded", summary={"warnings": ["x"]})

        summary = client.get("/api/import-runs/summary").json()
        assert [r["id"] for r in summary["recent_done"]] == [run.id]

        response = client.delete(f"/api/import-runs/{run.id}/summary")
        assert response.json() == {"success": True}
        db.expire_all()
        assert db.get(ImportRun, run.id).summary is None


class TestPipelineRoutes:
    def test_dispatch_and_scan(self, make_client, make_run, fake_scanner):
        run = make_run(status="enqueued")
        scanner = fake_scanner(
            messages=[fake_scanner.message("m1", [fake_scanner.attachment()])],
            ingest_results={"m1": IngestResult(resume_id=11)},
        )
        client = make_client(scanner=scanner)

        data = client.post("/api/import-emails/dispatch").json()

        assert data["status"] == "dispatched"
        assert data["run_id"] == run.id
        assert data["scan"]["resumes"] == 1

        assert client.get("/api/import-emails/dispatch").json()["status"] == "none"

    def test_ai_worker_drains_jobs(self, make_client, make_run, make_item, make_ai_job):
        run = make_run(total_messages=1, processed_messages=1)
        make_item(run, status="processing", resume_id=11)
        make_ai_job(run, 11)
        client = make_client(parse_resume=lambda resume_id, job_context, timeout_ms, run_id: True)

        data = client.post("/api/import-emails/ai", params={"concurrency": 1}).json()

        assert data["succeeded"] == 1
        assert data["status"] == "ok"
        assert client.get(f"/api/import-runs/{run.id}").json()["status"] == "succeeded"

    def test_ai_worker_without_parser(self, client):
        assert client.post("/api/import-emails/ai").status_code == 503

    def test_preview(self, make_client, job_posting, fake_scanner):
        scanner = fake_scanner(messages=[fake_scanner.message("m1", [fake_scanner.attachment()])])
        client = make_client(scanner=scanner)

        data = client.post(
            f"/api/jobs/{job_posting.id}/import-emails/preview", json={"mailbox": "jobs@example.com"}
        ).json()

        assert data["estimated_eligible"] == 1
        assert data["is_estimate"] is True

    def test_preview_rejects_bad_max_emails(self, make_client, job_posting, fake_scanner):
        scanner = fake_scanner()
        client = make_client(scanner=scanner)

        response = client.post(
            f"/api/jobs/{job_posting.id}/import-emails/preview",
            json={"mailbox": "jobs@example.com", "max_emails": "abc"},
        )

        assert response.status_code == 422
        assert scanner.scan_calls == []

    def test_mailbox_routes_run_off_the_event_loop(self):
        # Scans and DB writes block, so these must be sync handlers run in the threadpool
        assert not inspect.iscoroutinefunction(enqueue_import)
        assert not inspect.iscoroutinefunction(preview_import_route)

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}
