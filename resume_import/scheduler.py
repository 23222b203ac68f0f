"""APScheduler safety net: periodically dispatches runs and drains AI jobs.

All state lives in the database; the scheduler is just one more trigger and
can run next to HTTP or cron invocations.
"""

import logging
import traceback
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MISSED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import sessionmaker

from resume_import.config import AppConfig
from resume_import.imports.worker import ParseResume
from resume_import.mailbox.provider import MailboxScanner

logger = logging.getLogger("resume_import.scheduler")

DISPATCH_JOB_ID = "import_dispatch"
WORKER_JOB_ID = "import_ai_worker"

_scheduler: BackgroundScheduler | None = None


def _job_listener(event):
    """Log scheduler job events for debugging."""
    if event.exception:
        logger.error("Scheduled job %s FAILED: %s", event.job_id, event.exception)
        logger.error("Traceback: %s", event.traceback)
    elif hasattr(event, "job_id"):
        if event.code == EVENT_JOB_MISSED:
            logger.warning("Scheduled job %s MISSED its fire time", event.job_id)
        else:
            logger.debug("Scheduled job %s executed successfully", event.job_id)


def _dispatch_wrapper(session_factory, config, scanner) -> None:
    from resume_import.pipeline import run_dispatch_cycle
    try:
        result = run_dispatch_cycle(session_factory, config, scanner)
        if result["status"] != "none":
            logger.info("Scheduled dispatch: %s", result)
    except Exception:
        logger.error("Scheduled dispatch failed\n%s", traceback.format_exc())
        raise


def _worker_wrapper(session_factory, parse_resume, config) -> None:
    from resume_import.pipeline import run_worker_cycle
    try:
        run_worker_cycle(session_factory, parse_resume, config, trigger="scheduler")
    except Exception:
        logger.error("Scheduled AI worker slice failed\n%s", traceback.format_exc())
        raise


def init_scheduler(
    config: AppConfig,
    session_factory: sessionmaker,
    parse_resume: Optional[ParseResume] = None,
    scanner: Optional[MailboxScanner] = None,
) -> BackgroundScheduler:
    global _scheduler
    if _scheduler is not None:
        return _scheduler

    _scheduler = BackgroundScheduler()
    _scheduler.add_listener(_job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED)

    interval = IntervalTrigger(seconds=max(1, config.scheduler.interval_seconds))
    _scheduler.add_job(
        _dispatch_wrapper,
        trigger=interval,
        args=[session_factory, config, scanner],
        id=DISPATCH_JOB_ID,
        name="Dispatch enqueued imports",
        coalesce=True,
        max_instances=1,
        replace_existing=True,
    )
    if parse_resume is not None:
        _scheduler.add_job(
            _worker_wrapper,
            trigger=IntervalTrigger(seconds=max(1, config.scheduler.interval_seconds)),
            args=[session_factory, parse_resume, config],
            id=WORKER_JOB_ID,
            name="Drain resume AI jobs",
            coalesce=True,
            max_instances=1,
            replace_existing=True,
        )
    else:
        logger.warning("No resume parser configured; AI worker job not scheduled")

    _scheduler.start()
    logger.info("APScheduler started (every %ds)", config.scheduler.interval_seconds)
    return _scheduler


def shutdown_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("APScheduler stopped")


def get_scheduler_info() -> dict:
    """Return diagnostic info about the scheduler state."""
    if _scheduler is None:
        return {"running": False, "jobs": []}
    jobs = []
    for job in _scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run_time": str(job.next_run_time) if job.next_run_time else None,
            "trigger": str(job.trigger),
        })
    return {
        "running": _scheduler.running,
        "jobs": jobs,
    }
