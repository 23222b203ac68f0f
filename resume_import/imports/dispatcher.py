"""Dispatcher: promote the oldest enqueued run to running.

Any number of dispatchers may run at once; the promotion is one guarded
UPDATE, so exactly one of them wins and the rest report ``race_lost``.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from resume_import.models import ImportRun
from resume_import.models.base import utc_now
from resume_import.models.import_run import RUN_ENQUEUED, RUN_RUNNING
from resume_import.storage import runs as run_store

logger = logging.getLogger("resume_import.dispatcher")

DISPATCHED = "dispatched"
NONE = "none"
RACE_LOST = "race_lost"
BUSY = "busy"


@dataclass
class DispatchResult:
    status: str
    run_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {"status": self.status, "run_id": self.run_id}


def dispatch(db: Session, single_runner: bool = False) -> DispatchResult:
    if single_runner:
        running = run_store.first_running(db)
        if running is not None:
            return DispatchResult(BUSY, running.id)

    candidate = run_store.oldest_enqueued(db)
    if candidate is None:
        return DispatchResult(NONE)

    promoted = run_store.transition(db, candidate.id, (RUN_ENQUEUED,), {
        ImportRun.status: RUN_RUNNING,
        ImportRun.started_at: utc_now(),
        ImportRun.attempts: ImportRun.attempts + 1,
    })
    if not promoted:
        db.rollback()
        logger.info("[run:%s] Dispatch race lost", candidate.id)
        return DispatchResult(RACE_LOST, candidate.id)

    db.commit()
    logger.info("[run:%s] Dispatched import for job %d", candidate.id, candidate.job_id)
    return DispatchResult(DISPATCHED, candidate.id)
