"""Recovery for work abandoned by crashed invocations."""

import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from resume_import.config import AppConfig
from resume_import.imports.progress import refresh_run_progress
from resume_import.models.base import utc_now
from resume_import.models.resume_ai_job import AI_FAILED
from resume_import.storage import ai_jobs as ai_job_store
from resume_import.storage import items as item_store
from resume_import.storage import runs as run_store
from resume_import.utils.logging_config import log_metric

logger = logging.getLogger("resume_import.maintenance")

DEFAULT_STUCK_RUN_HOURS = 2


def release_stale_claims(db: Session, config: AppConfig) -> dict:
    """Give AI jobs stuck in processing past the stale-claim window back to the queue."""
    now = utc_now()
    cutoff = now - timedelta(milliseconds=config.worker.stale_claim_ms)
    released = 0
    failed = 0
    touched_runs = set()

    for job in ai_job_store.stale_claims(db, cutoff):
        reason = f"Claim abandoned after {config.worker.stale_claim_ms}ms without a result"
        status = ai_job_store.release_claim(db, job, now, cutoff, config.worker.max_attempts, reason)
        if status is None:
            db.rollback()
            continue
        if status == AI_FAILED:
            item_store.mirror_failure(db, job.run_id, job.resume_id, job.attempts, now, reason)
            failed += 1
        else:
            item_store.mirror_retry(db, job.run_id, job.resume_id, job.attempts, now, reason, now)
            released += 1
        db.commit()
        touched_runs.add(job.run_id)
        log_metric("gpt_worker_claim_released", job_id=job.id, run_id=job.run_id, status=status)

    for run_id in touched_runs:
        refresh_run_progress(db, run_id, keep_runs=config.retention.keep_runs_per_job)

    if released or failed:
        logger.info("Released %d stale claim(s), failed %d", released, failed)
    return {"released": released, "failed": failed}


def fail_stuck_runs(db: Session, older_than_hours: float = DEFAULT_STUCK_RUN_HOURS) -> list[str]:
    """Mark runs running for longer than ``older_than_hours`` as failed."""
    now = utc_now()
    cutoff = now - timedelta(hours=older_than_hours)
    failed_ids = []
    for run in run_store.stuck_running(db, cutoff):
        reason = f"Run exceeded {older_than_hours:g}h without finishing; marked failed by cleanup"
        if run_store.mark_failed(db, run, now, reason):
            item_store.cancel_open(db, run.id)
            db.commit()
            failed_ids.append(run.id)
            logger.warning("[run:%s] Marked stuck run as failed", run.id)
        else:
            db.rollback()
    return failed_ids
