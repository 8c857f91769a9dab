from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol

import httpx

from .fetch_retry import is_retryable_http_exception
from .identifiers import detect_platform
from .post import Platform, coerce_platform, normalize_handle
from .retry import OnRetryFn, RetryConfig, SleepFn, call_with_retries

DEFAULT_BASE_URL = "https://api.scrapecreators.com"
DEFAULT_TIMEOUT_SECONDS = 10.0

_ERROR_SNIPPET_CHARS = 300


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one content API call. Failures are values, not exceptions."""

    success: bool
    data: Any = None
    error: str | None = None
    cached: bool = False

    @classmethod
    def ok(cls, data: Any, *, cached: bool = False) -> "FetchResult":
        return cls(success=True, data=data, cached=bool(cached))

    @classmethod
    def fail(cls, error: str) -> "FetchResult":
        return cls(success=False, error=(error or "").strip() or "Unknown fetch error")


class ContentFetcher(Protocol):
    def fetch_profile(self, handle: str, platform: Platform | str) -> FetchResult: ...

    def fetch_posts(self, handle: str, platform: Platform | str, *, count: int = 10) -> FetchResult: ...

    def fetch_post(self, url: str) -> FetchResult: ...

    def fetch_transcript(self, url: str, *, language: str = "en") -> FetchResult: ...


_PROFILE_PATHS: dict[str, str] = {
    "instagram": "/v1/instagram/profile",
    "tiktok": "/v1/tiktok/profile",
}
_POSTS_PATHS: dict[str, str] = {
    "instagram": "/v2/instagram/user/posts",
    "tiktok": "/v3/tiktok/profile/videos",
}
_POST_PATHS: dict[str, str] = {
    "instagram": "/v1/instagram/post",
    "tiktok": "/v2/tiktok/video",
}
_TRANSCRIPT_PATHS: dict[str, str] = {
    "instagram": "/v2/instagram/media/transcript",
    "tiktok": "/v1/tiktok/video/transcript",
}


def _body_error(body: Mapping[str, Any]) -> str:
    for key in ("message", "error", "detail"):
        val = body.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    return "API reported success=false"


class ScrapeCreatorsClient:
    """
    httpx-backed client for the ScrapeCreators REST API.

    Every public method returns a FetchResult; HTTP errors, timeouts and
    `success: false` bodies come back as failed results so one bad URL never
    aborts a batch.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
        retry: RetryConfig | None = None,
        on_retry: OnRetryFn | None = None,
        sleep_fn: SleepFn | None = None,
    ) -> None:
        key = (api_key or "").strip()
        if not key:
            raise ValueError("api_key must be a non-empty string")

        self._timeout_seconds = float(timeout_seconds)
        self._retry = retry or RetryConfig()
        self._on_retry = on_retry
        self._sleep_fn = sleep_fn

        self._owns_client = client is None
        self._client = client or httpx.Client(
            base_url=(base_url or DEFAULT_BASE_URL).rstrip("/"),
            timeout=self._timeout_seconds,
            follow_redirects=True,
        )
        self._headers = {"x-api-key": key, "accept": "application/json"}

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "ScrapeCreatorsClient":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def fetch_profile(self, handle: str, platform: Platform | str) -> FetchResult:
        p = coerce_platform(platform)
        h = normalize_handle(handle)
        if not h:
            return FetchResult.fail("handle must be non-empty")
        return self._get(_PROFILE_PATHS[p], {"handle": h}, operation=f"{p}.profile")

    def fetch_posts(self, handle: str, platform: Platform | str, *, count: int = 10) -> FetchResult:
        p = coerce_platform(platform)
        h = normalize_handle(handle)
        if not h:
            return FetchResult.fail("handle must be non-empty")
        params: dict[str, Any] = {"handle": h}
        if count and count > 0:
            params["count"] = int(count)
        return self._get(_POSTS_PATHS[p], params, operation=f"{p}.posts")

    def fetch_post(self, url: str) -> FetchResult:
        u = (url or "").strip()
        p = detect_platform(u)
        if p is None:
            return FetchResult.fail(f"Unrecognized post URL: {u or '<empty>'}")
        return self._get(_POST_PATHS[p], {"url": u}, operation=f"{p}.post", url=u)

    def fetch_transcript(self, url: str, *, language: str = "en") -> FetchResult:
        u = (url or "").strip()
        p = detect_platform(u)
        if p is None:
            return FetchResult.fail(f"Unrecognized post URL: {u or '<empty>'}")
        params: dict[str, Any] = {"url": u}
        if p == "tiktok" and language:
            params["language"] = language
        return self._get(_TRANSCRIPT_PATHS[p], params, operation=f"{p}.transcript", url=u)

    def _get(
        self,
        path: str,
        params: Mapping[str, Any],
        *,
        operation: str,
        url: str | None = None,
    ) -> FetchResult:
        def _do_get() -> Any:
            response = self._client.get(path, params=dict(params), headers=self._headers)
            response.raise_for_status()
            return response.json()

        try:
            body = call_with_retries(
                _do_get,
                cfg=self._retry,
                is_retryable=is_retryable_http_exception,
                operation=f"scrapecreators.{operation}",
                on_retry=self._on_retry,
                sleep_fn=self._sleep_fn,
                url=url,
            )
        except httpx.TimeoutException:
            return FetchResult.fail(f"Request timed out after {self._timeout_seconds:g}s")
        except httpx.HTTPStatusError as e:
            snippet = (e.response.text or "").strip()[:_ERROR_SNIPPET_CHARS]
            msg = f"HTTP {e.response.status_code}"
            return FetchResult.fail(f"{msg}: {snippet}" if snippet else msg)
        except httpx.HTTPError as e:
            return FetchResult.fail(f"Request failed: {e}")
        except ValueError:
            return FetchResult.fail("Response body was not valid JSON")

        if isinstance(body, Mapping):
            if body.get("success") is False:
                return FetchResult.fail(_body_error(body))
            return FetchResult.ok(body, cached=body.get("cached") is True)
        return FetchResult.ok(body)
