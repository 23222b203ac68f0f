"""Cancel an enqueued or running import."""

import logging

from sqlalchemy.orm import Session

from resume_import.errors import NotFoundError
from resume_import.models import ImportRun
from resume_import.models.base import utc_now
from resume_import.models.import_run import ACTIVE_RUN_STATUSES, RUN_CANCELED
from resume_import.storage import items as item_store
from resume_import.storage import runs as run_store

logger = logging.getLogger("resume_import.cancel")


def cancel_run(db: Session, run_id: str) -> ImportRun:
    """Cancel a live run and its open items.

    AI jobs already claimed keep running; their item updates are guarded by
    item status and the run is no longer running, so their results go nowhere.
    Unclaimed AI jobs are never picked up because the run isn't running.
    """
    run = run_store.get_run(db, run_id)
    if run is None:
        raise NotFoundError(f"Import run {run_id} not found")

    finished_at = utc_now()
    canceled = run_store.transition(db, run_id, ACTIVE_RUN_STATUSES, {
        ImportRun.status: RUN_CANCELED,
        ImportRun.finished_at: finished_at,
        ImportRun.processing_duration_ms: run_store.duration_ms(run, finished_at),
    })
    if not canceled:
        db.rollback()
        raise NotFoundError(f"Import run {run_id} is not enqueued or running")

    item_count = item_store.cancel_open(db, run_id)
    db.commit()
    db.refresh(run)

    logger.info("[run:%s] Canceled (%d open item(s) canceled)", run_id, item_count)
    return run
