"""Retry decisions shared by the fetch and live paths."""

from __future__ import annotations

import httpx

from idxs.errors import FetchRequestError, StreamProtocolError

RETRYABLE_STATUSES = frozenset({408, 429})
BASE_DELAY_SECONDS = 0.2
MAX_DELAY_SECONDS = 30.0


def should_retry(error: BaseException) -> bool:
    """Return True when ``error`` is worth another attempt."""

    if isinstance(error, StreamProtocolError):
        return error.kind == "server"
    if isinstance(error, FetchRequestError):
        return error.status in RETRYABLE_STATUSES or error.status >= 500
    return isinstance(error, httpx.TransportError)


def backoff_delay(attempt: int) -> float:
    """Seconds to wait after failed attempt number ``attempt`` (1-indexed)."""

    return min(BASE_DELAY_SECONDS * 2 ** (max(attempt, 1) - 1), MAX_DELAY_SECONDS)
