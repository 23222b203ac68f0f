"""Run progress: 10% for scanning the mailbox, 90% for parsing the resumes."""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from resume_import.imports.finalize import finalize_run_if_complete
from resume_import.models.import_run import RUN_RUNNING, ImportRun
from resume_import.storage import ai_jobs as ai_job_store
from resume_import.storage import runs as run_store

logger = logging.getLogger("resume_import.progress")

EMAIL_STAGE_WEIGHT = 0.1
AI_STAGE_WEIGHT = 0.9


@dataclass
class AiStats:
    total: int = 0
    completed: int = 0
    active: int = 0


def _non_negative(value) -> float:
    if value is None:
        return 0
    return max(0, value)


def compute_progress(
    total_messages: Optional[int],
    processed_messages: Optional[int],
    total_ai_jobs: Optional[int],
    completed_ai_jobs: Optional[int],
) -> float:
    total_emails = _non_negative(total_messages)
    processed = _non_negative(processed_messages)
    ai_total = _non_negative(total_ai_jobs)
    ai_completed = _non_negative(completed_ai_jobs)

    if total_emails > 0:
        email_ratio = min(processed / total_emails, 1)
    else:
        email_ratio = 1 if processed > 0 else 0

    if ai_total > 0:
        ai_ratio = min(ai_completed / ai_total, 1)
    elif total_emails > 0:
        # No resumes spawned yet: parsing tracks the scan
        ai_ratio = email_ratio
    else:
        ai_ratio = 1 if (processed > 0 or ai_completed > 0) else 0

    progress = EMAIL_STAGE_WEIGHT * email_ratio + AI_STAGE_WEIGHT * ai_ratio
    return max(0.0, min(float(progress), 1.0))


def get_ai_stats_for_runs(db: Session, run_ids: Iterable[str]) -> dict[str, AiStats]:
    unique_ids = list(dict.fromkeys(r for r in run_ids if r))
    raw = ai_job_store.stats_for_runs(db, unique_ids)
    return {run_id: AiStats(**counts) for run_id, counts in raw.items()}


def get_ai_stats_for_run(db: Session, run_id: str) -> AiStats:
    if not run_id:
        return AiStats()
    return get_ai_stats_for_runs(db, [run_id]).get(run_id, AiStats())


def progress_for_run(db: Session, run: ImportRun) -> float:
    stats = get_ai_stats_for_run(db, run.id)
    return compute_progress(run.total_messages, run.processed_messages, stats.total, stats.completed)


def refresh_run_progress(
    db: Session,
    run_id: str,
    finalize: bool = True,
    keep_runs: Optional[int] = 10,
) -> Optional[float]:
    """Recompute and store a running run's progress, then try to finalize it.

    Returns the new progress, or None when the run is not running.
    """
    run = run_store.get_run(db, run_id)
    if run is None or run.status != RUN_RUNNING:
        return None

    progress = progress_for_run(db, run)
    if not run_store.update_running(db, run_id, {ImportRun.progress: progress}):
        db.rollback()
        return None
    db.commit()
    logger.debug("[run:%s] Progress %.3f", run_id, progress)

    if finalize:
        finalize_run_if_complete(db, run_id, keep_runs=keep_runs)

    return progress
