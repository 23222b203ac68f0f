"""Run summaries and the read-side status/queue views."""

from typing import Optional

from sqlalchemy.orm import Session

from resume_import.errors import NotFoundError
from resume_import.models import ImportItem, ImportRun, ResumeAiJob
from resume_import.models.import_item import ITEM_FAILED
from resume_import.models.import_run import RUN_ENQUEUED, RUN_RUNNING, TERMINAL_RUN_STATUSES
from resume_import.models.resume_ai_job import AI_FAILED, AI_RETRY
from resume_import.storage import runs as run_store

MAX_LIST_ENTRIES = 20


def build_run_summary(
    db: Session,
    run_id: str,
    job_id: int,
    total_messages: Optional[int],
    processed_messages: int,
    failed_messages: int,
) -> dict:
    """Snapshot of a run's outcome, taken before finished items are purged."""
    resume_jobs = db.query(ResumeAiJob).filter(
        ResumeAiJob.run_id == run_id
    ).order_by(ResumeAiJob.updated_at.desc()).all()
    failed_items = db.query(ImportItem).filter(
        ImportItem.run_id == run_id,
        ImportItem.status == ITEM_FAILED,
    ).order_by(ImportItem.updated_at.desc()).limit(MAX_LIST_ENTRIES).all()

    failed_resumes = []
    retry_resumes = []
    for job in resume_jobs:
        entry = {
            "resumeId": job.resume_id,
            "status": job.status,
            "error": job.last_error,
            "attempts": job.attempts,
        }
        if job.status == AI_FAILED:
            failed_resumes.append(entry)
        elif job.status == AI_RETRY:
            retry_resumes.append(entry)

    warnings = []
    if retry_resumes:
        warnings.append(f"{len(retry_resumes)} resume(s) still pending GPT retry")
    if failed_items:
        warnings.append(f"{len(failed_items)} email(s) failed during import")

    return {
        "totals": {
            "totalMessages": total_messages,
            "processedMessages": processed_messages,
            "failedMessages": failed_messages,
        },
        "resumeParsing": {
            "total": len(resume_jobs),
            "failed": len(failed_resumes),
            "retries": len(retry_resumes),
            "failedResumes": failed_resumes[:MAX_LIST_ENTRIES],
            "retryResumes": retry_resumes[:MAX_LIST_ENTRIES],
        },
        "itemFailures": [
            {"messageId": item.external_message_id, "error": item.last_error}
            for item in failed_items
        ],
        "warnings": warnings,
    }


def _require_run(db: Session, run_id: str) -> ImportRun:
    run = run_store.get_run(db, run_id)
    if run is None:
        raise NotFoundError(f"Import run {run_id} not found")
    return run


def get_run_status(db: Session, run_id: str) -> dict:
    return _require_run(db, run_id).to_dict()


def _queue_entry(run: ImportRun) -> dict:
    entry = run.to_dict()
    entry["job_title"] = run.job.title if run.job is not None else None
    return entry


def get_queue_summary(db: Session, recent: int = 3) -> dict:
    """What's running, what's waiting (FIFO) and the last few finished runs."""
    in_progress = run_store.list_by_status(db, (RUN_RUNNING,), newest_first=True, order_by="started_at")
    enqueued = run_store.list_by_status(db, (RUN_ENQUEUED,))
    recent_done = run_store.list_by_status(
        db, TERMINAL_RUN_STATUSES, newest_first=True, order_by="finished_at", limit=max(0, recent)
    )
    return {
        "in_progress": [_queue_entry(r) for r in in_progress],
        "enqueued": [_queue_entry(r) for r in enqueued],
        "recent_done": [_queue_entry(r) for r in recent_done],
    }


def clear_run_summary(db: Session, run_id: str) -> None:
    _require_run(db, run_id)
    db.query(ImportRun).filter(ImportRun.id == run_id).update(
        {ImportRun.summary: None}, synchronize_session=False
    )
    db.commit()
