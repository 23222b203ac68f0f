"""Run finalization: once nothing is left to do, settle the run's outcome."""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.orm import Session

from resume_import.imports.summary import build_run_summary
from resume_import.models import ImportRun
from resume_import.models.base import utc_now
from resume_import.models.import_item import ITEM_COMPLETED, ITEM_FAILED, ITEM_PENDING
from resume_import.models.import_run import RUN_FAILED, RUN_RUNNING, RUN_SUCCEEDED
from resume_import.models.resume_ai_job import ACTIVE_AI_STATUSES
from resume_import.storage import ai_jobs as ai_job_store
from resume_import.storage import items as item_store
from resume_import.storage import runs as run_store

logger = logging.getLogger("resume_import.finalize")

SummaryBuilder = Callable[..., dict]


@dataclass
class FinalizeResult:
    finalized: bool
    status: Optional[str] = None
    completed_count: int = 0
    failed_count: int = 0
    pending_items: int = 0
    pending_ai_jobs: int = 0
    pruned_runs: int = 0


def finalize_run_if_complete(
    db: Session,
    run_id: str,
    summary_builder: SummaryBuilder = build_run_summary,
    keep_runs: Optional[int] = 10,
) -> FinalizeResult:
    """Move a drained running run to succeeded/failed, purge its finished items.

    Does nothing unless the run is running, has at least one item, no pending
    item and no active AI job. Safe to call repeatedly and concurrently: the
    final update only lands while the run is still running.
    """
    run = run_store.get_run(db, run_id)
    if run is None or run.status != RUN_RUNNING:
        return FinalizeResult(finalized=False)

    counts = item_store.count_by_status(db, run_id)
    pending_items = counts.get(ITEM_PENDING, 0)
    active_ai = ai_job_store.count_in_status(db, run_id, ACTIVE_AI_STATUSES)
    if pending_items > 0 or active_ai > 0 or not counts:
        # No items at all means the scan hasn't listed the mailbox yet
        return FinalizeResult(finalized=False, pending_items=pending_items, pending_ai_jobs=active_ai)

    completed = counts.get(ITEM_COMPLETED, 0)
    failed = counts.get(ITEM_FAILED, 0)
    final_status = RUN_SUCCEEDED if completed > 0 else RUN_FAILED
    finished_at = utc_now()

    summary = summary_builder(
        db,
        run_id=run_id,
        job_id=run.job_id,
        total_messages=run.total_messages,
        processed_messages=completed,
        failed_messages=failed,
    )

    item_store.purge_finished(db, run_id)
    moved = run_store.transition(db, run_id, (RUN_RUNNING,), {
        ImportRun.status: final_status,
        ImportRun.finished_at: finished_at,
        ImportRun.processing_duration_ms: run_store.duration_ms(run, finished_at),
        ImportRun.progress: 1.0,
        ImportRun.processed_messages: completed,
        ImportRun.last_error: (
            f"All {failed} items failed. Check item errors for details."
            if final_status == RUN_FAILED else None
        ),
        ImportRun.summary: summary,
    })
    if not moved:
        # Canceled or finalized elsewhere in the meantime; keep the items
        db.rollback()
        return FinalizeResult(finalized=False)
    db.commit()

    logger.info(
        "[run:%s] Finalized as %s (%d completed, %d failed)",
        run_id, final_status, completed, failed,
    )

    pruned = 0
    if keep_runs is not None:
        pruned = run_store.prune_terminal_runs(db, run.job_id, keep_runs)
        db.commit()
        if pruned:
            logger.info("Pruned %d old import run(s) for job %d", pruned, run.job_id)

    return FinalizeResult(
        finalized=True,
        status=final_status,
        completed_count=completed,
        failed_count=failed,
        pruned_runs=pruned,
    )
