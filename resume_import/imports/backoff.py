"""Retry delay for failed resume parses."""

from datetime import datetime, timedelta


def compute_backoff_ms(attempts: int, base_backoff_ms: int, max_backoff_ms: int) -> int:
    """Exponential backoff without jitter: base * 2^(attempts-1), capped at max.

    ``attempts`` is the count after the failed claim; anything <= 1 gets base.
    """
    exponent = max((attempts or 0) - 1, 0)
    # Cap the exponent so huge attempt counts can't build enormous ints
    delay = base_backoff_ms * (2 ** min(exponent, 32))
    return max(0, min(max_backoff_ms, delay))


def next_retry_at(now: datetime, attempts: int, base_backoff_ms: int, max_backoff_ms: int) -> datetime:
    return now + timedelta(milliseconds=compute_backoff_ms(attempts, base_backoff_ms, max_backoff_ms))
