"""Enqueue a mailbox import for a job posting."""

import logging
import re
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from resume_import.errors import ConflictError, NotFoundError, ValidationError
from resume_import.models import ImportRun, JobPosting
from resume_import.models.import_run import RUN_ENQUEUED
from resume_import.storage import runs as run_store

logger = logging.getLogger("resume_import.enqueue")

SEARCH_MODES = ("graph-search", "deep-scan")
DEFAULT_MODE = "graph-search"
DEFAULT_LOOKBACK_DAYS = 90

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def default_search_text(db: Session, job_id: int) -> str:
    """The posting's application query, falling back to its title."""
    posting = db.get(JobPosting, job_id)
    if posting is None:
        return ""
    return (posting.application_query or posting.title or "").strip()


def validate_mailbox(mailbox: str) -> str:
    mailbox = (mailbox or "").strip()
    if not _EMAIL_RE.match(mailbox):
        raise ValidationError("mailbox must be an email address")
    return mailbox


def validate_options(options: dict, default_max_emails: int, max_emails_limit: int) -> tuple[int, str, int]:
    max_emails = options.get("max_emails", default_max_emails)
    if isinstance(max_emails, bool) or not isinstance(max_emails, int):
        raise ValidationError("max_emails must be an integer")
    if max_emails < 1 or max_emails > max_emails_limit:
        raise ValidationError(f"max_emails must be between 1 and {max_emails_limit}")

    mode = options.get("mode") or DEFAULT_MODE
    if mode not in SEARCH_MODES:
        raise ValidationError(f"mode must be one of: {', '.join(SEARCH_MODES)}")

    lookback_days = options.get("lookback_days", DEFAULT_LOOKBACK_DAYS)
    if isinstance(lookback_days, bool) or not isinstance(lookback_days, int) or lookback_days < 1:
        raise ValidationError("lookback_days must be a positive integer")

    return max_emails, mode, lookback_days


def enqueue_run(
    db: Session,
    job_id: int,
    mailbox: str,
    search_text: str,
    options: Optional[dict] = None,
    requested_by: Optional[str] = None,
    on_enqueued: Optional[Callable[[str], None]] = None,
    default_max_emails: int = 5000,
    max_emails_limit: int = 5000,
) -> ImportRun:
    """Create an enqueued run, or raise ConflictError if the job already has a live one.

    ``on_enqueued`` is called with the new run id after the commit. It's a
    nudge to the dispatcher, so any failure there is logged and ignored.
    """
    if db.get(JobPosting, job_id) is None:
        raise NotFoundError(f"Job posting {job_id} not found")

    mailbox = validate_mailbox(mailbox)

    search_text = (search_text or "").strip()
    if len(search_text) < 2:
        raise ValidationError("search_text must be at least 2 characters")

    max_emails, mode, lookback_days = validate_options(
        options or {}, default_max_emails, max_emails_limit
    )

    existing = run_store.find_active_run(db, job_id)
    if existing is not None:
        raise ConflictError(
            "An import is already enqueued or running for this job",
            existing_run_id=existing.id,
            existing_status=existing.status,
        )

    run = ImportRun(
        job_id=job_id,
        requested_by=requested_by,
        mailbox=mailbox,
        search_text=search_text,
        max_emails=max_emails,
        status=RUN_ENQUEUED,
        progress=0.0,
        total_messages=0,
        processed_messages=0,
        attempts=0,
        meta={"mode": mode, "lookback_days": lookback_days},
    )
    db.add(run)
    try:
        db.commit()
    except IntegrityError:
        # Lost the race against a concurrent enqueue for the same job
        db.rollback()
        winner = run_store.find_active_run(db, job_id)
        raise ConflictError(
            "An import is already enqueued or running for this job",
            existing_run_id=winner.id if winner else None,
            existing_status=winner.status if winner else None,
            race=True,
        )

    logger.info("[run:%s] Enqueued import for job %d (mailbox=%s, max=%d)", run.id, job_id, mailbox, max_emails)

    if on_enqueued is not None:
        try:
            on_enqueued(run.id)
        except Exception as e:
            logger.warning("[run:%s] Dispatch trigger failed: %s", run.id, e)

    return run
