"""Fire-and-forget nudge to the dispatcher after an enqueue.

Losing a nudge is harmless: the scheduler (or the next caller) dispatches the
run later. So every failure here is logged and nothing is raised.
"""

import logging
import threading
from typing import Callable, Optional

from sqlalchemy.orm import sessionmaker

from resume_import.config import AppConfig
from resume_import.imports.dispatcher import DISPATCHED, dispatch
from resume_import.utils.http_client import create_session, safe_post

logger = logging.getLogger("resume_import.trigger")


def _post_trigger(url: str, timeout: int, run_id: str) -> None:
    response = safe_post(url, session=create_session(max_retries=2), timeout=timeout, json={"run_id": run_id})
    if response is None:
        logger.warning("[run:%s] Dispatch trigger POST to %s failed", run_id, url)
    else:
        logger.info("[run:%s] Dispatch triggered via %s (%d)", run_id, url, response.status_code)


def _dispatch_in_process(
    session_factory: sessionmaker,
    single_runner: bool,
    run_id: str,
    after_dispatch: Optional[Callable[[str], None]],
) -> None:
    db = session_factory()
    try:
        result = dispatch(db, single_runner=single_runner)
        logger.info("[run:%s] In-process dispatch: %s (%s)", run_id, result.status, result.run_id)
    except Exception:
        logger.exception("[run:%s] In-process dispatch failed", run_id)
        return
    finally:
        db.close()

    if result.status == DISPATCHED and after_dispatch is not None:
        try:
            after_dispatch(result.run_id)
        except Exception:
            logger.exception("[run:%s] Post-dispatch step failed", result.run_id)


def make_dispatch_trigger(
    config: AppConfig,
    session_factory: sessionmaker,
    after_dispatch: Optional[Callable[[str], None]] = None,
) -> Callable[[str], None]:
    """Return an ``on_enqueued`` callback that kicks off dispatch in the background.

    With ``dispatch.trigger_url`` set the dispatch endpoint is POSTed;
    otherwise dispatch runs in-process, followed by ``after_dispatch``
    (typically the mailbox scan) for the promoted run.
    """
    url = config.dispatch.trigger_url

    def trigger(run_id: str) -> None:
        if url:
            target, args = _post_trigger, (url, config.dispatch.trigger_timeout, run_id)
        else:
            target, args = _dispatch_in_process, (
                session_factory, config.imports.single_runner, run_id, after_dispatch,
            )
        thread = threading.Thread(target=target, args=args, name=f"dispatch-{run_id[:8]}", daemon=True)
        thread.start()

    return trigger
