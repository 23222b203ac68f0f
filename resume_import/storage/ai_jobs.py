"""AI job store: candidate selection, optimistic claims and guarded outcomes.

A claim is a single UPDATE guarded by the status and attempts observed at
selection time, so at most one worker can own a given attempt. Outcome writes
are guarded by the claimed attempt; a miss means another owner took over and
the result is discarded.

Selections return plain snapshots, not ORM rows. A rollback expires ORM rows
and a reload would swap the observed values for the current ones.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from resume_import.models import ImportRun, ResumeAiJob
from resume_import.models.import_run import RUN_RUNNING
from resume_import.models.resume_ai_job import (
    ACTIVE_AI_STATUSES,
    AI_FAILED,
    AI_PENDING,
    AI_PROCESSING,
    AI_RETRY,
    CLAIMABLE_AI_STATUSES,
    TERMINAL_AI_STATUSES,
)


@dataclass(frozen=True)
class CandidateJob:
    """A claimable job as it looked when it was selected."""

    id: int
    run_id: str
    job_id: int
    resume_id: int
    status: str
    attempts: int


@dataclass(frozen=True)
class StaleClaim:
    id: int
    run_id: str
    resume_id: int
    attempts: int
    last_started_at: datetime


def create_pending(db: Session, run_id: str, job_id: int, resume_id: int) -> Optional[ResumeAiJob]:
    """Add a pending AI job unless the run already has one for this resume."""
    existing = db.query(ResumeAiJob).filter(
        ResumeAiJob.run_id == run_id,
        ResumeAiJob.resume_id == resume_id,
    ).first()
    if existing is not None:
        return None
    job = ResumeAiJob(run_id=run_id, job_id=job_id, resume_id=resume_id, status=AI_PENDING, attempts=0)
    db.add(job)
    return job


def _running_run_ids():
    return select(ImportRun.id).where(ImportRun.status == RUN_RUNNING)


def select_candidates(
    db: Session,
    now: datetime,
    limit: int,
    exclude_ids: Iterable[int] = (),
) -> list[CandidateJob]:
    """Claimable jobs whose run is running, due first, oldest first."""
    query = db.query(
        ResumeAiJob.id,
        ResumeAiJob.run_id,
        ResumeAiJob.job_id,
        ResumeAiJob.resume_id,
        ResumeAiJob.status,
        ResumeAiJob.attempts,
    ).filter(
        ResumeAiJob.status.in_(CLAIMABLE_AI_STATUSES),
        or_(ResumeAiJob.next_retry_at.is_(None), ResumeAiJob.next_retry_at <= now),
        ResumeAiJob.run_id.in_(_running_run_ids()),
    )
    exclude = tuple(exclude_ids)
    if exclude:
        query = query.filter(ResumeAiJob.id.notin_(exclude))
    rows = query.order_by(
        ResumeAiJob.next_retry_at.asc().nulls_first(),
        ResumeAiJob.created_at.asc(),
        ResumeAiJob.id.asc(),
    ).limit(limit).all()
    return [
        CandidateJob(
            id=row.id,
            run_id=row.run_id,
            job_id=row.job_id,
            resume_id=row.resume_id,
            status=row.status,
            attempts=row.attempts or 0,
        )
        for row in rows
    ]


def claim(db: Session, job_id: int, observed_status: str, observed_attempts: int, now: datetime) -> bool:
    if observed_status not in CLAIMABLE_AI_STATUSES:
        return False
    count = db.query(ResumeAiJob).filter(
        ResumeAiJob.id == job_id,
        ResumeAiJob.status == observed_status,
        ResumeAiJob.attempts == observed_attempts,
    ).update({
        ResumeAiJob.status: AI_PROCESSING,
        ResumeAiJob.last_started_at: now,
        ResumeAiJob.attempts: observed_attempts + 1,
        ResumeAiJob.updated_at: now,
    }, synchronize_session=False)
    return count == 1


def record_outcome(db: Session, job_id: int, claimed_attempts: int, values: dict) -> bool:
    """Write a parse outcome if this worker still owns the claimed attempt."""
    count = db.query(ResumeAiJob).filter(
        ResumeAiJob.id == job_id,
        ResumeAiJob.status == AI_PROCESSING,
        ResumeAiJob.attempts == claimed_attempts,
    ).update(values, synchronize_session=False)
    return count == 1


def stats_for_runs(db: Session, run_ids: Iterable[str]) -> dict[str, dict[str, int]]:
    """Per run: total jobs, completed (succeeded/failed) and active (pending/processing/retry)."""
    ids = tuple(run_ids)
    stats = {run_id: {"total": 0, "completed": 0, "active": 0} for run_id in ids}
    if not ids:
        return stats
    rows = db.query(ResumeAiJob.run_id, ResumeAiJob.status, func.count(ResumeAiJob.id)).filter(
        ResumeAiJob.run_id.in_(ids)
    ).group_by(ResumeAiJob.run_id, ResumeAiJob.status).all()
    for run_id, status, count in rows:
        entry = stats[run_id]
        entry["total"] += count
        if status in TERMINAL_AI_STATUSES:
            entry["completed"] += count
        elif status in ACTIVE_AI_STATUSES:
            entry["active"] += count
    return stats


def jobs_in_status(db: Session, run_id: str, statuses: Iterable[str], limit: Optional[int] = None) -> list[ResumeAiJob]:
    query = db.query(ResumeAiJob).filter(
        ResumeAiJob.run_id == run_id,
        ResumeAiJob.status.in_(tuple(statuses)),
    ).order_by(ResumeAiJob.id.asc())
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def count_in_status(db: Session, run_id: str, statuses: Iterable[str]) -> int:
    return db.query(func.count(ResumeAiJob.id)).filter(
        ResumeAiJob.run_id == run_id,
        ResumeAiJob.status.in_(tuple(statuses)),
    ).scalar() or 0


def stale_claims(db: Session, started_before: datetime) -> list[StaleClaim]:
    rows = db.query(
        ResumeAiJob.id,
        ResumeAiJob.run_id,
        ResumeAiJob.resume_id,
        ResumeAiJob.attempts,
        ResumeAiJob.last_started_at,
    ).filter(
        ResumeAiJob.status == AI_PROCESSING,
        ResumeAiJob.last_started_at < started_before,
    ).order_by(ResumeAiJob.id.asc()).all()
    return [
        StaleClaim(
            id=row.id,
            run_id=row.run_id,
            resume_id=row.resume_id,
            attempts=row.attempts or 0,
            last_started_at=row.last_started_at,
        )
        for row in rows
    ]


def release_claim(
    db: Session,
    job: StaleClaim,
    now: datetime,
    started_before: datetime,
    max_attempts: int,
    reason: str,
) -> Optional[str]:
    """Return an abandoned claim to ``retry`` (due now) or ``failed``.

    Guarded by the observed attempts and last_started_at, and by the claim
    still being older than ``started_before``. A worker that is merely slow
    and finishes first keeps its result, and a fresh claim is never released.
    """
    exhausted = job.attempts >= max_attempts
    status = AI_FAILED if exhausted else AI_RETRY
    count = db.query(ResumeAiJob).filter(
        ResumeAiJob.id == job.id,
        ResumeAiJob.status == AI_PROCESSING,
        ResumeAiJob.attempts == job.attempts,
        ResumeAiJob.last_started_at == job.last_started_at,
        ResumeAiJob.last_started_at < started_before,
    ).update({
        ResumeAiJob.status: status,
        ResumeAiJob.last_finished_at: now,
        ResumeAiJob.last_error: reason,
        ResumeAiJob.next_retry_at: None if exhausted else now,
        ResumeAiJob.updated_at: now,
    }, synchronize_session=False)
    return status if count == 1 else None
