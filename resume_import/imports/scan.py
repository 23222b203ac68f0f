"""Mailbox scan for a running import.

Phase A lists the mailbox once and records a pending item per message.
Phase B resolves the pending items one by one: messages without an eligible
attachment complete straight away, ingested resumes get an AI job. The scan
can stop and resume at any point; items already resolved are not revisited.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from resume_import.config import AppConfig
from resume_import.imports.progress import refresh_run_progress
from resume_import.imports.summary import build_run_summary
from resume_import.mailbox.eligibility import has_eligible_attachment
from resume_import.mailbox.provider import DiscoveredMessage, IngestResult, MailboxScanner
from resume_import.models import ImportItem, ImportRun
from resume_import.models.base import utc_now
from resume_import.models.import_item import (
    GPT_QUEUED,
    ITEM_COMPLETED,
    ITEM_FAILED,
    ITEM_PROCESSING,
)
from resume_import.models.import_run import RUN_FAILED, RUN_RUNNING, RUN_SUCCEEDED
from resume_import.storage import ai_jobs as ai_job_store
from resume_import.storage import items as item_store
from resume_import.storage import runs as run_store
from resume_import.storage.retry import run_with_store_retry

logger = logging.getLogger("resume_import.scan")

SCAN_DONE = "scanned"
SCAN_EMPTY = "empty"
SCAN_CANCELED = "canceled"
SCAN_NOT_RUNNING = "not_running"
SCAN_FAILED = "failed"


@dataclass
class ScanResult:
    run_id: str
    status: str
    listed: int = 0
    resolved: int = 0
    resumes: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "listed": self.listed,
            "resolved": self.resolved,
            "resumes": self.resumes,
            "skipped": self.skipped,
            "failed": self.failed,
        }


def _run_status(db: Session, run_id: str) -> Optional[str]:
    row = db.query(ImportRun.status).filter(ImportRun.id == run_id).first()
    return row.status if row else None


def _list_messages(scanner: MailboxScanner, run: ImportRun) -> list[DiscoveredMessage]:
    meta = run.meta or {}
    messages = scanner.scan(
        run.mailbox,
        run.search_text,
        run.max_emails,
        meta.get("mode", "graph-search"),
        meta.get("lookback_days", 90),
    )
    return list(messages)[: run.max_emails]


def _fail_run(db: Session, run: ImportRun, reason: str) -> None:
    finished_at = utc_now()
    run_store.transition(db, run.id, (RUN_RUNNING,), {
        ImportRun.status: RUN_FAILED,
        ImportRun.finished_at: finished_at,
        ImportRun.processing_duration_ms: run_store.duration_ms(run, finished_at),
        ImportRun.last_error: reason[:500],
    })
    db.commit()


def _finish_empty(db: Session, run: ImportRun) -> bool:
    finished_at = utc_now()
    summary = build_run_summary(
        db, run_id=run.id, job_id=run.job_id, total_messages=0, processed_messages=0, failed_messages=0,
    )
    moved = run_store.transition(db, run.id, (RUN_RUNNING,), {
        ImportRun.status: RUN_SUCCEEDED,
        ImportRun.finished_at: finished_at,
        ImportRun.processing_duration_ms: run_store.duration_ms(run, finished_at),
        ImportRun.progress: 1.0,
        ImportRun.total_messages: 0,
        ImportRun.processed_messages: 0,
        ImportRun.summary: summary,
    })
    db.commit()
    return moved


def _resolve_item(
    db: Session,
    run: ImportRun,
    item: ImportItem,
    message: Optional[DiscoveredMessage],
    scanner: MailboxScanner,
    config: AppConfig,
) -> str:
    """Resolve one pending item; returns 'failed', 'skipped', 'resume' or 'lost'."""
    if message is None:
        outcome, values = ITEM_FAILED, {"last_error": "Message no longer found in mailbox"}
    elif not has_eligible_attachment(message, config.imports.allowed_extensions, config.imports.max_attachment_mb):
        outcome, values = ITEM_COMPLETED, {}
    else:
        try:
            ingested = scanner.ingest(run.mailbox, message, run.job_id)
        except Exception as e:
            logger.warning("[run:%s] Ingest of message %s failed: %s", run.id, item.external_message_id, e)
            ingested = IngestResult(error=str(e) or type(e).__name__)

        if ingested.error:
            outcome, values = ITEM_FAILED, {"last_error": ingested.error[:1000]}
        elif ingested.resume_id is None:
            outcome, values = ITEM_COMPLETED, {}
        else:
            outcome, values = ITEM_PROCESSING, {"resume_id": ingested.resume_id, "gpt_status": GPT_QUEUED}

    values["attempts"] = (item.attempts or 0) + 1
    if not item_store.resolve(db, item.id, outcome, **values):
        db.rollback()
        return "lost"
    if outcome == ITEM_PROCESSING:
        ai_job_store.create_pending(db, run.id, run.job_id, values["resume_id"])
    run_store.update_running(db, run.id, {ImportRun.processed_messages: ImportRun.processed_messages + 1})
    db.commit()

    if outcome == ITEM_FAILED:
        return "failed"
    return "resume" if outcome == ITEM_PROCESSING else "skipped"


def scan_run(db: Session, run_id: str, scanner: MailboxScanner, config: AppConfig) -> ScanResult:
    """Scan the mailbox for a running import and feed the AI job queue."""
    run = run_store.get_run(db, run_id)
    if run is None or run.status != RUN_RUNNING:
        return ScanResult(run_id=run_id, status=SCAN_NOT_RUNNING)

    result = ScanResult(run_id=run_id, status=SCAN_DONE)
    retry = dict(
        max_retries=config.store.max_retries,
        base_delay_ms=config.store.retry_base_delay_ms,
        session=db,
    )

    try:
        messages = _list_messages(scanner, run)
    except Exception as e:
        logger.error("[run:%s] Mailbox scan failed: %s", run_id, e)
        _fail_run(db, run, f"Mailbox scan failed: {e}")
        result.status = SCAN_FAILED
        return result

    by_id = {m.external_message_id: m for m in messages}
    result.listed = len(by_id)

    # Phase A: record the listing once
    if not (run.total_messages or 0):
        if not messages:
            run_with_store_retry("scan_finish_empty", lambda: _finish_empty(db, run), **retry)
            logger.info("[run:%s] No matching emails; run finished", run_id)
            result.status = SCAN_EMPTY
            return result

        def record_listing():
            item_store.add_pending(db, run.id, run.job_id, messages)
            db.flush()
            total = db.query(ImportItem).filter(ImportItem.run_id == run.id).count()
            run_store.update_running(db, run.id, {ImportRun.total_messages: total})
            db.commit()
            return total

        total = run_with_store_retry("scan_record_listing", record_listing, **retry)
        logger.info("[run:%s] Listed %d message(s) from %s", run_id, total, run.mailbox)

    # Phase B: resolve pending items
    for item in item_store.pending_items(db, run_id):
        if _run_status(db, run_id) != RUN_RUNNING:
            logger.info("[run:%s] Run no longer running; stopping scan", run_id)
            result.status = SCAN_CANCELED
            return result

        outcome = run_with_store_retry(
            "scan_resolve_item",
            lambda: _resolve_item(db, run, item, by_id.get(item.external_message_id), scanner, config),
            **retry,
        )
        if outcome == "lost":
            continue
        result.resolved += 1
        if outcome == "failed":
            result.failed += 1
        elif outcome == "resume":
            result.resumes += 1
        else:
            result.skipped += 1

    logger.info(
        "[run:%s] Scan resolved %d item(s): %d resume(s), %d skipped, %d failed",
        run_id, result.resolved, result.resumes, result.skipped, result.failed,
    )
    refresh_run_progress(db, run_id, keep_runs=config.retention.keep_runs_per_job)
    return result
