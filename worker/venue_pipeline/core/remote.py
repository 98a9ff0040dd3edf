"""Retrying HTTP helper shared by every stage that calls an external service."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional, Sequence, Tuple

import requests

logger = logging.getLogger(__name__)

_SESSION = requests.Session()

USER_AGENT = "WeddingVenueFinder/1.0 (+https://weddingvenuefinder.com)"
RETRYABLE_STATUSES = frozenset({429, 502, 503, 504})
MAX_ATTEMPTS = 4
BACKOFF_MS = 500


class RemoteCallError(RuntimeError):
    """Raised when a remote call fails on every endpoint it was allowed to try."""

    def __init__(self, message: str, *, endpoint: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        # No status means the request never got an answer (timeout, refused connection).
        return self.status_code is None or self.status_code in RETRYABLE_STATUSES


def backoff_seconds(attempt: int, base_ms: int = BACKOFF_MS) -> float:
    return base_ms * (2 ** attempt) / 1000.0


def post_with_failover(
    endpoints: Sequence[str],
    *,
    data: Optional[Dict[str, Any]] = None,
    json: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 30,
    max_attempts: int = MAX_ATTEMPTS,
) -> Tuple[str, requests.Response]:
    """POST to each endpoint in order until one answers with a 2xx.

    Retryable failures are retried against the same endpoint with exponential
    backoff; anything else moves straight on to the next endpoint. Returns the
    endpoint that answered together with its response.
    """
    if not endpoints:
        raise ValueError("at least one endpoint is required")

    request_headers = {"User-Agent": USER_AGENT}
    request_headers.update(headers or {})
    last_error: Optional[RemoteCallError] = None

    for endpoint in endpoints:
        for attempt in range(max_attempts):
            try:
                response = _SESSION.post(endpoint, data=data, json=json, headers=request_headers, timeout=timeout)
            except (requests.Timeout, requests.ConnectionError) as exc:
                last_error = RemoteCallError(f"{endpoint} unreachable: {exc}", endpoint=endpoint)
            else:
                if 200 <= response.status_code < 300:
                    return endpoint, response
                last_error = RemoteCallError(
                    f"{endpoint} answered {response.status_code}: {response.text[:500]}",
                    endpoint=endpoint,
                    status_code=response.status_code,
                )

            if not last_error.retryable:
                break
            logger.warning(
                "Remote call to %s failed (attempt %d/%d): %s",
                endpoint,
                attempt + 1,
                max_attempts,
                str(last_error)[:200],
            )
            if attempt < max_attempts - 1:
                time.sleep(backoff_seconds(attempt))

        logger.warning("Giving up on %s: %s", endpoint, str(last_error)[:200])

    raise last_error


def get_json(url: str, *, timeout: float = 5) -> Dict[str, Any]:
    """Single GET returning the decoded JSON body, raising RemoteCallError on failure."""
    try:
        response = _SESSION.get(url, headers={"User-Agent": USER_AGENT}, timeout=timeout)
    except requests.RequestException as exc:
        raise RemoteCallError(f"{url} unreachable: {exc}", endpoint=url) from exc
    if not 200 <= response.status_code < 300:
        raise RemoteCallError(f"{url} answered {response.status_code}", endpoint=url, status_code=response.status_code)
    try:
        return response.json()
    except ValueError:
        return {}
