"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from resume_import.config import AppConfig, load_config
from resume_import.errors import ResumeImportError
from resume_import.imports.trigger import make_dispatch_trigger
from resume_import.imports.worker import ParseResume
from resume_import.mailbox.provider import MailboxScanner
from resume_import.models import SessionLocal
from resume_import.pipeline import scan_dispatched_run

from .imports import router as imports_router

logger = logging.getLogger("resume_import.web")


@asynccontextmanager
async def lifespan(app: FastAPI):
    config: AppConfig = app.state.config
    if config.scheduler.enabled:
        from resume_import.scheduler import init_scheduler
        init_scheduler(config, app.state.session_factory, app.state.parse_resume, app.state.scanner)

    yield

    if config.scheduler.enabled:
        from resume_import.scheduler import shutdown_scheduler
        shutdown_scheduler()


def _default_trigger(app: FastAPI) -> Callable[[str], None]:
    """Dispatch after enqueue; in-process dispatch also scans the promoted run."""
    scanner = app.state.scanner
    after_dispatch = None
    if scanner is not None:
        def after_dispatch(run_id: str) -> None:
            scan_dispatched_run(app.state.session_factory, app.state.config, scanner, run_id)

    return make_dispatch_trigger(app.state.config, app.state.session_factory, after_dispatch=after_dispatch)


def create_app(
    config: Optional[AppConfig] = None,
    session_factory: Optional[sessionmaker] = None,
    scanner: Optional[MailboxScanner] = None,
    parse_resume: Optional[ParseResume] = None,
    dispatch_trigger: Optional[Callable[[str], None]] = None,
) -> FastAPI:
    app = FastAPI(title="Resume Import", lifespan=lifespan)

    app.state.config = config or load_config()
    app.state.session_factory = session_factory or SessionLocal
    app.state.scanner = scanner
    app.state.parse_resume = parse_resume
    app.state.dispatch_trigger = dispatch_trigger or _default_trigger(app)

    @app.exception_handler(ResumeImportError)
    async def import_error_handler(request: Request, exc: ResumeImportError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    app.include_router(imports_router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app
