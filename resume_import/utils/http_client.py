"""HTTP client with retry logic, used for the fire-and-forget dispatch trigger."""

import logging
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger("resume_import.http")

USER_AGENT = "resume-import/0.1 (+dispatch-trigger)"


def create_session(max_retries: int = 3, backoff_factor: float = 1.0) -> requests.Session:
    """Create a requests session with retry logic."""
    session = requests.Session()

    retry_strategy = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        # Dispatch is idempotent, so retrying the POST is safe
        allowed_methods=["GET", "POST"],
    )

    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    session.headers.update({
        "User-Agent": USER_AGENT,
        "Content-Type": "application/json",
    })

    return session


def safe_post(
    url: str,
    session: Optional[requests.Session] = None,
    timeout: int = 30,
    **kwargs,
) -> Optional[requests.Response]:
    """Perform a POST request, returning None on failure instead of raising."""
    if session is None:
        session = create_session()

    try:
        response = session.post(url, timeout=timeout, **kwargs)
        response.raise_for_status()
        return response
    except requests.RequestException as e:
        logger.warning("HTTP request failed for %s: %s", url, e)
        return None
