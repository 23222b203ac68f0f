"""Tests for the scheduler safety net."""

import pytest

from resume_import.scheduler import (
    DISPATCH_JOB_ID,
    WORKER_JOB_ID,
    get_scheduler_info,
    init_scheduler,
    shutdown_scheduler,
)


@pytest.fixture
def scheduler_config(config):
    config.scheduler.interval_seconds = 3600
    yield config
    shutdown_scheduler()


class TestScheduler:
    def test_registers_dispatch_and_worker_jobs(self, scheduler_config, session_factory):
        init_scheduler(scheduler_config, session_factory, parse_resume=lambda *args: True)

        info = get_scheduler_info()

        assert info["running"] is True
        assert {job["id"] for job in info["jobs"]} == {DISPATCH_JOB_ID, WORKER_JOB_ID}

    def test_no_parser_means_no_worker_job(self, scheduler_config, session_factory):
        init_scheduler(scheduler_config, session_factory)
        assert [job["id"] for job in get_scheduler_info()["jobs"]] == [DISPATCH_JOB_ID]

    def test_stopped_scheduler_info(self):
        shutdown_scheduler()
        assert get_scheduler_info() == {"running": False, "jobs": []}
