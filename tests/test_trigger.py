"""Tests for the fire-and-forget dispatch trigger."""

import threading
import time

from resume_import.imports import trigger as trigger_module
from resume_import.imports.trigger import make_dispatch_trigger
from resume_import.models import ImportRun


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


class TestDispatchTrigger:
    def test_in_process_dispatch_then_scan(self, db, config, session_factory, make_run):
        run = make_run(status="enqueued")
        scanned = []
        trigger = make_dispatch_trigger(config, session_factory, after_dispatch=scanned.append)

        trigger(run.id)

        assert _wait_for(lambda: scanned == [run.id])
        db.expire_all()
        assert db.get(ImportRun, run.id).status == "running"

    def test_posts_to_trigger_url(self, config, session_factory, monkeypatch):
        config.dispatch.trigger_url = "http://dispatcher.internal/api/import-emails/dispatch"
        posted = []
        done = threading.Event()

        def fake_post(url, session=None, timeout=30, **kwargs):
            posted.append((url, timeout, kwargs["json"]))
            done.set()
            return None

        monkeypatch.setattr(trigger_module, "safe_post", fake_post)

        make_dispatch_trigger(config, session_factory)("run-1")

        assert done.wait(5)
        assert posted == [(config.dispatch.trigger_url, config.dispatch.trigger_timeout, {"run_id": "run-1"})]

    def test_dispatch_failure_is_contained(self, config, monkeypatch):
        done = threading.Event()

        def broken_factory():
            done.set()
            raise RuntimeError("no database")

        trigger = make_dispatch_trigger(config, broken_factory)
        trigger("run-2")
        assert done.wait(5)
