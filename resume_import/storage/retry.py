"""Bounded retries for transient database errors.

Connectivity hiccups (dropped connections, SQLite lock timeouts) are retried at
the call site with exponential delay. Anything else propagates unchanged.
"""

import logging
import time
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.orm import Session

from resume_import.errors import TransientStoreError
from resume_import.utils.logging_config import log_metric

logger = logging.getLogger("resume_import.storage")

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def run_with_store_retry(
    stage: str,
    operation: Callable[[], T],
    max_retries: int = 3,
    base_delay_ms: int = 500,
    session: Optional[Session] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation``, retrying transient store errors up to ``max_retries`` times.

    When ``session`` is given it is rolled back before each retry so the next
    attempt starts from a clean transaction.
    """
    attempts = max(1, max_retries)
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except DBAPIError as e:
            if not is_transient(e):
                raise
            if session is not None:
                session.rollback()
            log_metric("store_failure", stage=stage, attempt=attempt, error=type(e.orig).__name__ if e.orig else "unknown")
            if attempt == attempts:
                logger.error("Store operation '%s' failed after %d attempts: %s", stage, attempt, e)
                raise TransientStoreError(
                    f"Database unavailable during '{stage}' after {attempt} attempts",
                    stage=stage,
                    attempts=attempt,
                ) from e
            delay_ms = base_delay_ms * (2 ** (attempt - 1))
            log_metric("store_retry", stage=stage, attempt=attempt, delay_ms=delay_ms)
            sleep(delay_ms / 1000)

    raise TransientStoreError(f"Retry loop exhausted during '{stage}'", stage=stage, attempts=attempts)
