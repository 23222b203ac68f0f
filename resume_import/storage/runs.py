"""Run store: queries and conditional transitions on import runs.

Functions here never commit; the calling service owns the transaction.
Every transition names the statuses it expects and reports whether a row
actually moved.
"""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from resume_import.models import ImportRun
from resume_import.models.base import as_utc
from resume_import.models.import_run import (
    ACTIVE_RUN_STATUSES,
    RUN_ENQUEUED,
    RUN_FAILED,
    RUN_RUNNING,
    TERMINAL_RUN_STATUSES,
)


def get_run(db: Session, run_id: str) -> Optional[ImportRun]:
    return db.query(ImportRun).filter(ImportRun.id == run_id).first()


def find_active_run(db: Session, job_id: int) -> Optional[ImportRun]:
    """Return the enqueued or running run for a job posting, if any."""
    return db.query(ImportRun).filter(
        ImportRun.job_id == job_id,
        ImportRun.status.in_(ACTIVE_RUN_STATUSES),
    ).first()


def oldest_enqueued(db: Session) -> Optional[ImportRun]:
    return db.query(ImportRun).filter(
        ImportRun.status == RUN_ENQUEUED
    ).order_by(ImportRun.created_at.asc(), ImportRun.id.asc()).first()


def first_running(db: Session) -> Optional[ImportRun]:
    return db.query(ImportRun).filter(
        ImportRun.status == RUN_RUNNING
    ).order_by(ImportRun.started_at.desc()).first()


def transition(
    db: Session,
    run_id: str,
    expected: Iterable[str],
    values: dict,
) -> bool:
    """Move a run out of one of ``expected`` statuses. False means someone else got there first."""
    count = db.query(ImportRun).filter(
        ImportRun.id == run_id,
        ImportRun.status.in_(tuple(expected)),
    ).update(values, synchronize_session=False)
    return count == 1


def update_running(db: Session, run_id: str, values: dict) -> bool:
    """Write counters/progress only while the run is still running."""
    return transition(db, run_id, (RUN_RUNNING,), values)


def duration_ms(run: ImportRun, finished_at: datetime) -> int:
    """Milliseconds from start (or creation, if never started) to ``finished_at``."""
    start = as_utc(run.started_at) or as_utc(run.created_at) or finished_at
    return max(0, int((finished_at - start).total_seconds() * 1000))


def list_by_status(
    db: Session,
    statuses: Iterable[str],
    newest_first: bool = False,
    order_by: str = "created_at",
    limit: Optional[int] = None,
) -> list[ImportRun]:
    column = getattr(ImportRun, order_by)
    query = db.query(ImportRun).filter(ImportRun.status.in_(tuple(statuses)))
    query = query.order_by(column.desc() if newest_first else column.asc())
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def prune_terminal_runs(db: Session, job_id: int, keep: int) -> int:
    """Delete terminal runs of a job beyond the newest ``keep`` (by finished_at)."""
    old_ids = [
        row.id
        for row in db.query(ImportRun.id).filter(
            ImportRun.job_id == job_id,
            ImportRun.status.in_(TERMINAL_RUN_STATUSES),
        ).order_by(ImportRun.finished_at.desc(), ImportRun.created_at.desc()).offset(max(0, keep)).all()
    ]
    if not old_ids:
        return 0
    return db.query(ImportRun).filter(ImportRun.id.in_(old_ids)).delete(synchronize_session=False)


def stuck_running(db: Session, started_before: datetime) -> list[ImportRun]:
    return db.query(ImportRun).filter(
        ImportRun.status == RUN_RUNNING,
        ImportRun.started_at < started_before,
    ).all()


def mark_failed(db: Session, run: ImportRun, finished_at: datetime, reason: str) -> bool:
    return transition(db, run.id, (RUN_RUNNING,), {
        ImportRun.status: RUN_FAILED,
        ImportRun.finished_at: finished_at,
        ImportRun.processing_duration_ms: duration_ms(run, finished_at),
        ImportRun.last_error: reason[:500],
    })
