from __future__ import annotations

import sqlite3

import httpx
from apify_client.errors import ApifyApiError

from .errors import PersistenceError
from .retry import RetryDecision


def _status_of(exc: BaseException) -> int | None:
    for attr in ("status_code", "status"):
        val = getattr(exc, attr, None)
        if isinstance(val, int) and not isinstance(val, bool):
            return val
    return None


def _retry_after_seconds(response: httpx.Response) -> float | None:
    raw = (response.headers.get("retry-after") or "").strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        # HTTP-date form is not worth parsing for a sub-minute hint.
        return None
    return value if value >= 0 else None


def _is_retryable_status(code: int | None) -> bool:
    return code == 429 or (code is not None and code >= 500)


def is_retryable_http_exception(exc: BaseException) -> RetryDecision:
    """Retry network failures, timeouts, HTTP 429 and HTTP 5xx from the content API."""
    if isinstance(exc, httpx.TimeoutException):
        return True, None, "timeout"
    if isinstance(exc, httpx.TransportError):
        return True, None, "network_error"
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        if _is_retryable_status(code):
            return True, _retry_after_seconds(exc.response), f"http_{code}"
        return False, None, f"http_{code}"
    return False, None, None


def is_retryable_apify_exception(exc: BaseException) -> RetryDecision:
    if isinstance(exc, ApifyApiError):
        code = _status_of(exc)
        reason = f"http_{code}" if code is not None else "http_status"
        return _is_retryable_status(code), None, reason
    if isinstance(exc, (ConnectionError, TimeoutError, httpx.TransportError)):
        return True, None, "network_error"
    return False, None, None


def is_retryable_persistence_exception(exc: BaseException) -> RetryDecision:
    """Only transient sqlite failures (locked/busy database) are worth another attempt."""
    if isinstance(exc, PersistenceError) and isinstance(exc.__cause__, sqlite3.OperationalError):
        return True, None, "database_busy"
    return False, None, None
