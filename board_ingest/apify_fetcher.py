from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from apify_client import ApifyClient
from apify_client.errors import ApifyApiError

from .content_client import FetchResult
from .errors import FetchError
from .fetch_retry import is_retryable_apify_exception
from .identifiers import detect_platform
from .post import Platform, coerce_platform, normalize_handle
from .retry import OnRetryFn, RetryConfig, SleepFn, call_with_retries

DEFAULT_ACTOR = "apify/instagram-scraper"


@dataclass(frozen=True)
class ActorRunRef:
    actor_id: str
    run_id: str
    default_dataset_id: str


class ApifyContentFetcher:
    """
    Instagram-only content fetcher backed by Apify's Instagram Scraper Actor.

    Each call runs the Actor once against `directUrls` and returns the dataset
    items wrapped as `{"items": [...]}`, which the transformer unwraps like a
    list endpoint response. TikTok and transcripts are not supported.
    """

    def __init__(
        self,
        token: str,
        *,
        actor_id: str = DEFAULT_ACTOR,
        client: ApifyClient | None = None,
        retry: RetryConfig | None = None,
        on_retry: OnRetryFn | None = None,
        sleep_fn: SleepFn | None = None,
        timeout_secs: int | None = None,
    ) -> None:
        self._actor_id = (actor_id or "").strip() or DEFAULT_ACTOR
        self._retry = retry or RetryConfig()
        self._on_retry = on_retry
        self._sleep_fn = sleep_fn
        self._timeout_secs = timeout_secs

        if client is not None:
            self._client = client
        else:
            # Client-level retries off; RetryConfig is applied uniformly instead.
            self._client = ApifyClient(token=token, max_retries=0)

    def fetch_profile(self, handle: str, platform: Platform | str) -> FetchResult:
        h = normalize_handle(handle)
        if coerce_platform(platform) != "instagram":
            return FetchResult.fail("Apify backend only supports instagram")
        if not h:
            return FetchResult.fail("handle must be non-empty")
        return self._run_for_items(
            [f"https://www.instagram.com/{h}/"],
            results_type="details",
            results_limit=1,
        )

    def fetch_posts(self, handle: str, platform: Platform | str, *, count: int = 10) -> FetchResult:
        h = normalize_handle(handle)
        if coerce_platform(platform) != "instagram":
            return FetchResult.fail("Apify backend only supports instagram")
        if not h:
            return FetchResult.fail("handle must be non-empty")
        return self._run_for_items(
            [f"https://www.instagram.com/{h}/"],
            results_type="posts",
            results_limit=max(1, int(count)),
        )

    def fetch_post(self, url: str) -> FetchResult:
        u = (url or "").strip()
        p = detect_platform(u)
        if p != "instagram":
            return FetchResult.fail(f"Apify backend only supports instagram post URLs: {u or '<empty>'}")
        result = self._run_for_items([u], results_type="posts", results_limit=1)
        if result.success and not result.data["items"]:
            return FetchResult.fail(f"Apify returned no items for {u}")
        return result

    def fetch_transcript(self, url: str, *, language: str = "en") -> FetchResult:
        return FetchResult.fail("Transcripts are not available from the Apify backend")

    def run_scrape_urls(self, urls: list[str], *, results_type: str, results_limit: int) -> ActorRunRef:
        run_input: dict[str, Any] = {
            "directUrls": urls,
            "resultsType": results_type,
            "resultsLimit": int(results_limit),
        }

        def _do_call() -> Any:
            return self._client.actor(self._actor_id).call(
                run_input=run_input,
                timeout_secs=self._timeout_secs,
            )

        try:
            result = call_with_retries(
                _do_call,
                cfg=self._retry,
                is_retryable=is_retryable_apify_exception,
                operation=f"apify.actor.call:{self._actor_id}",
                on_retry=self._on_retry,
                sleep_fn=self._sleep_fn,
                url=urls[0] if len(urls) == 1 else None,
            )
        except ApifyApiError as e:
            raise FetchError(f"Apify Actor call failed ({self._actor_id}): {e}") from e
        except Exception as e:
            raise FetchError(f"Unexpected error while calling Apify Actor ({self._actor_id}): {e}") from e

        if result is None:
            raise FetchError(f"Apify Actor run failed ({self._actor_id})")

        run_id = (result.get("id") or "").strip()
        dataset_id = (result.get("defaultDatasetId") or "").strip()
        if not run_id or not dataset_id:
            raise FetchError(f"Apify Actor run response missing run id or default dataset id: {result}")

        return ActorRunRef(actor_id=self._actor_id, run_id=run_id, default_dataset_id=dataset_id)

    def fetch_dataset_items(self, dataset_id: str, *, limit: int | None = None) -> list[dict[str, Any]]:
        ds = (dataset_id or "").strip()
        if not ds:
            raise FetchError("dataset_id must be a non-empty string")

        def _do_fetch() -> list[dict[str, Any]]:
            return list(self._client.dataset(ds).iterate_items(limit=limit, clean=True))

        try:
            return call_with_retries(
                _do_fetch,
                cfg=self._retry,
                is_retryable=is_retryable_apify_exception,
                operation=f"apify.dataset.iterate_items:{ds}",
                on_retry=self._on_retry,
                sleep_fn=self._sleep_fn,
            )
        except ApifyApiError as e:
            raise FetchError(f"Failed to read dataset items ({ds}): {e}") from e
        except Exception as e:
            raise FetchError(f"Unexpected error while reading dataset items ({ds}): {e}") from e

    def _run_for_items(self, urls: list[str], *, results_type: str, results_limit: int) -> FetchResult:
        try:
            run = self.run_scrape_urls(urls, results_type=results_type, results_limit=results_limit)
            items = self.fetch_dataset_items(run.default_dataset_id, limit=results_limit)
        except FetchError as e:
            return FetchResult.fail(str(e))
        return FetchResult.ok({"items": items})
