"""Import routes: enqueue, dispatch, work, cancel and status."""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from resume_import.config import AppConfig
from resume_import.imports.cancel import cancel_run
from resume_import.imports.enqueue import default_search_text, enqueue_run
from resume_import.imports.estimate import preview_import
from resume_import.imports.summary import clear_run_summary, get_queue_summary, get_run_status
from resume_import.pipeline import run_dispatch_cycle, run_worker_cycle

from .dependencies import get_config, get_db, read_json_body

router = APIRouter(prefix="/api")

_OPTION_KEYS = ("max_emails", "mode", "lookback_days")


@router.post("/jobs/{job_id}/import-emails")
def enqueue_import(
    job_id: int,
    request: Request,
    body: dict = Depends(read_json_body),
    db: Session = Depends(get_db),
    config: AppConfig = Depends(get_config),
):
    search_text = body.get("search_text") or default_search_text(db, job_id)
    run = enqueue_run(
        db,
        job_id,
        mailbox=body.get("mailbox", ""),
        search_text=search_text,
        options={k: body[k] for k in _OPTION_KEYS if body.get(k) is not None},
        requested_by=body.get("requested_by"),
        on_enqueued=request.app.state.dispatch_trigger,
        default_max_emails=config.imports.default_max_emails,
        max_emails_limit=config.imports.max_emails_limit,
    )
    return {"run_id": run.id, "status": run.status}


@router.post("/jobs/{job_id}/import-emails/preview")
def preview_import_route(
    job_id: int,
    request: Request,
    body: dict = Depends(read_json_body),
    db: Session = Depends(get_db),
    config: AppConfig = Depends(get_config),
):
    scanner = request.app.state.scanner
    if scanner is None:
        return JSONResponse({"error": "No mailbox scanner configured"}, status_code=503)
    estimate = preview_import(
        db,
        job_id,
        scanner,
        config,
        mailbox=body.get("mailbox", ""),
        search_text=body.get("search_text"),
        options={k: body[k] for k in _OPTION_KEYS if body.get(k) is not None},
    )
    return estimate.to_dict()


@router.api_route("/import-emails/dispatch", methods=["GET", "POST"])
def dispatch_route(request: Request, config: AppConfig = Depends(get_config)):
    return run_dispatch_cycle(request.app.state.session_factory, config, request.app.state.scanner)


@router.api_route("/import-emails/ai", methods=["GET", "POST"])
def ai_worker_route(
    request: Request,
    concurrency: Optional[int] = None,
    timeout_ms: Optional[int] = None,
    config: AppConfig = Depends(get_config),
):
    parse_resume = request.app.state.parse_resume
    if parse_resume is None:
        return JSONResponse({"error": "No resume parser configured"}, status_code=503)
    result = run_worker_cycle(
        request.app.state.session_factory,
        parse_resume,
        config,
        concurrency=concurrency,
        timeout_ms=timeout_ms,
        trigger="http",
    )
    return result.to_dict()


# Declared before /import-runs/{run_id} so "summary" isn't taken as a run id
@router.get("/import-runs/summary")
def queue_summary(recent: int = 3, db: Session = Depends(get_db)):
    return get_queue_summary(db, recent=recent)


@router.get("/import-runs/{run_id}")
def run_status(run_id: str, db: Session = Depends(get_db)):
    return get_run_status(db, run_id)


@router.post("/import-runs/{run_id}/cancel")
def cancel_route(run_id: str, db: Session = Depends(get_db)):
    run = cancel_run(db, run_id)
    return {"run_id": run.id, "status": run.status}


@router.delete("/import-runs/{run_id}/summary")
def clear_summary_route(run_id: str, db: Session = Depends(get_db)):
    clear_run_summary(db, run_id)
    return {"success": True}
