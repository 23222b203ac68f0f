"""Entry points shared by the API, the CLI and the scheduler.

Each call is one stateless invocation: open a session, do one round of
dispatching or parsing, close the session.
"""

import logging
from typing import Optional

from sqlalchemy.orm import sessionmaker

from resume_import.config import AppConfig
from resume_import.imports.dispatcher import DISPATCHED, dispatch
from resume_import.imports.maintenance import release_stale_claims
from resume_import.imports.scan import scan_run
from resume_import.imports.worker import ParseResume, SliceResult, process_slice
from resume_import.mailbox.provider import MailboxScanner
from resume_import.storage.retry import run_with_store_retry

logger = logging.getLogger("resume_import.pipeline")


def run_dispatch_cycle(
    session_factory: sessionmaker,
    config: AppConfig,
    scanner: Optional[MailboxScanner] = None,
) -> dict:
    """Promote the next enqueued run and, with a scanner, scan its mailbox."""
    db = session_factory()
    try:
        result = run_with_store_retry(
            "dispatch",
            lambda: dispatch(db, single_runner=config.imports.single_runner),
            max_retries=config.store.max_retries,
            base_delay_ms=config.store.retry_base_delay_ms,
            session=db,
        )
        payload = result.to_dict()
        if result.status == DISPATCHED and scanner is not None:
            payload["scan"] = scan_run(db, result.run_id, scanner, config).to_dict()
        return payload
    finally:
        db.close()


def scan_dispatched_run(
    session_factory: sessionmaker,
    config: AppConfig,
    scanner: MailboxScanner,
    run_id: str,
) -> dict:
    db = session_factory()
    try:
        return scan_run(db, run_id, scanner, config).to_dict()
    finally:
        db.close()


def run_worker_cycle(
    session_factory: sessionmaker,
    parse_resume: ParseResume,
    config: AppConfig,
    concurrency: Optional[int] = None,
    timeout_ms: Optional[int] = None,
    trigger: str = "manual",
) -> SliceResult:
    """Recover abandoned claims, then run one worker slice."""
    db = session_factory()
    try:
        released = release_stale_claims(db, config)
    finally:
        db.close()
    if released["released"] or released["failed"]:
        logger.info("Stale claims before slice: %s", released)
    return process_slice(
        session_factory,
        parse_resume,
        config,
        concurrency=concurrency,
        timeout_ms=timeout_ms,
        trigger=trigger,
    )
