"""Item store: one row per discovered email, plus the gpt_* mirror columns.

The mirror writes are a projection of the AI job and are only ever applied
after the authoritative AI job write succeeded.
"""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from resume_import.models import ImportItem
from resume_import.models.import_item import (
    GPT_FAILED,
    GPT_IN_PROGRESS,
    GPT_QUEUED,
    GPT_SUCCEEDED,
    ITEM_CANCELED,
    ITEM_COMPLETED,
    ITEM_FAILED,
    ITEM_PENDING,
    ITEM_PROCESSING,
)


def existing_message_ids(db: Session, run_id: str) -> set[str]:
    rows = db.query(ImportItem.external_message_id).filter(ImportItem.run_id == run_id).all()
    return {row.external_message_id for row in rows}


def add_pending(
    db: Session,
    run_id: str,
    job_id: int,
    messages: Iterable,
) -> int:
    """Insert a pending item per message not already recorded for the run."""
    seen = existing_message_ids(db, run_id)
    added = 0
    for message in messages:
        if message.external_message_id in seen:
            continue
        seen.add(message.external_message_id)
        db.add(ImportItem(
            run_id=run_id,
            job_id=job_id,
            external_message_id=message.external_message_id,
            external_thread_id=message.thread_id,
            received_at=message.received_at,
            status=ITEM_PENDING,
        ))
        added += 1
    return added


def pending_items(db: Session, run_id: str, limit: Optional[int] = None) -> list[ImportItem]:
    query = db.query(ImportItem).filter(
        ImportItem.run_id == run_id,
        ImportItem.status == ITEM_PENDING,
    ).order_by(ImportItem.id.asc())
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def count_by_status(db: Session, run_id: str) -> dict[str, int]:
    rows = db.query(ImportItem.status, func.count(ImportItem.id)).filter(
        ImportItem.run_id == run_id
    ).group_by(ImportItem.status).all()
    return {status: count for status, count in rows}


def resolve(
    db: Session,
    item_id: int,
    status: str,
    expected: Iterable[str] = (ITEM_PENDING,),
    **values,
) -> bool:
    """Move one item out of ``expected``. Canceled items stay canceled."""
    updates = {ImportItem.status: status}
    for key, value in values.items():
        updates[getattr(ImportItem, key)] = value
    count = db.query(ImportItem).filter(
        ImportItem.id == item_id,
        ImportItem.status.in_(tuple(expected)),
    ).update(updates, synchronize_session=False)
    return count == 1


def _mirror(db: Session, run_id: str, resume_id: int, values: dict, item_status: Optional[str] = None) -> int:
    query = db.query(ImportItem).filter(
        ImportItem.run_id == run_id,
        ImportItem.resume_id == resume_id,
    )
    if item_status is not None:
        # Only items still waiting on the parse take the final status
        query = query.filter(ImportItem.status == ITEM_PROCESSING)
        values = {**values, ImportItem.status: item_status}
    return query.update(values, synchronize_session=False)


def mirror_claim(db: Session, run_id: str, resume_id: int, attempts: int, started_at: datetime) -> int:
    return _mirror(db, run_id, resume_id, {
        ImportItem.gpt_status: GPT_IN_PROGRESS,
        ImportItem.gpt_attempts: attempts,
        ImportItem.gpt_last_started_at: started_at,
        ImportItem.gpt_next_retry_at: None,
    })


def mirror_success(db: Session, run_id: str, resume_id: int, attempts: int, finished_at: datetime) -> int:
    return _mirror(db, run_id, resume_id, {
        ImportItem.gpt_status: GPT_SUCCEEDED,
        ImportItem.gpt_attempts: attempts,
        ImportItem.gpt_last_finished_at: finished_at,
        ImportItem.gpt_last_error: None,
        ImportItem.gpt_next_retry_at: None,
    }, item_status=ITEM_COMPLETED)


def mirror_retry(
    db: Session,
    run_id: str,
    resume_id: int,
    attempts: int,
    finished_at: datetime,
    error: str,
    next_retry_at: datetime,
) -> int:
    return _mirror(db, run_id, resume_id, {
        ImportItem.gpt_status: GPT_QUEUED,
        ImportItem.gpt_attempts: attempts,
        ImportItem.gpt_last_finished_at: finished_at,
        ImportItem.gpt_last_error: error,
        ImportItem.gpt_next_retry_at: next_retry_at,
    })


def mirror_failure(db: Session, run_id: str, resume_id: int, attempts: int, finished_at: datetime, error: str) -> int:
    return _mirror(db, run_id, resume_id, {
        ImportItem.gpt_status: GPT_FAILED,
        ImportItem.gpt_attempts: attempts,
        ImportItem.gpt_last_finished_at: finished_at,
        ImportItem.gpt_last_error: error,
        ImportItem.gpt_next_retry_at: None,
        ImportItem.last_error: error,
    }, item_status=ITEM_FAILED)


def cancel_open(db: Session, run_id: str) -> int:
    """Cancel every pending or processing item of a run."""
    return db.query(ImportItem).filter(
        ImportItem.run_id == run_id,
        ImportItem.status.in_((ITEM_PENDING, ITEM_PROCESSING)),
    ).update({ImportItem.status: ITEM_CANCELED}, synchronize_session=False)


def purge_finished(db: Session, run_id: str) -> int:
    return db.query(ImportItem).filter(
        ImportItem.run_id == run_id,
        ImportItem.status.in_((ITEM_COMPLETED, ITEM_FAILED)),
    ).delete(synchronize_session=False)


def failed_items(db: Session, run_id: str, limit: int = 20) -> list[ImportItem]:
    return db.query(ImportItem).filter(
        ImportItem.run_id == run_id,
        ImportItem.status == ITEM_FAILED,
    ).order_by(ImportItem.id.asc()).limit(limit).all()
