from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Sequence

from .config import BatchSettings
from .content_client import ContentFetcher, ScrapeCreatorsClient
from .datastore import Datastore
from .errors import DuplicateAssociation, FetchError, MissingContentError, PersistenceError
from .identifiers import detect_platform
from .ingest import ingest_draft
from .membership import BoardMembershipGuard
from .post import Platform, coerce_platform
from .retry import RetryConfig, RetryEvent, SleepFn
from .run_log import RunLogger
from .transform import transform_post_response
from .upsert import UpsertEngine


class ItemState(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    TRANSFORMING = "transforming"
    SAVING = "saving"
    SUCCESS = "success"
    DUPLICATE = "duplicate"
    ERROR = "error"


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    DUPLICATE = "duplicate"
    FETCH_ERROR = "fetch_error"
    TRANSFORM_ERROR = "transform_error"
    SAVE_ERROR = "save_error"


_TERMINAL_STATE: dict[OutcomeKind, ItemState] = {
    OutcomeKind.SUCCESS: ItemState.SUCCESS,
    OutcomeKind.DUPLICATE: ItemState.DUPLICATE,
    OutcomeKind.FETCH_ERROR: ItemState.ERROR,
    OutcomeKind.TRANSFORM_ERROR: ItemState.ERROR,
    OutcomeKind.SAVE_ERROR: ItemState.ERROR,
}

# Outcome for an item that raised while in the given stage.
_FAILURE_BY_STAGE: dict[ItemState, OutcomeKind] = {
    ItemState.PENDING: OutcomeKind.FETCH_ERROR,
    ItemState.FETCHING: OutcomeKind.FETCH_ERROR,
    ItemState.TRANSFORMING: OutcomeKind.TRANSFORM_ERROR,
    ItemState.SAVING: OutcomeKind.SAVE_ERROR,
}


@dataclass(frozen=True)
class PrefetchedPost:
    """A post payload obtained outside the batch (for example from a profile sync)."""

    platform: Platform
    data: Any
    source_url: str | None = None


@dataclass(frozen=True)
class ItemResult:
    index: int
    source: str | None
    platform: Platform | None
    outcome: OutcomeKind
    post_id: str | None = None
    error: str | None = None

    @property
    def state(self) -> ItemState:
        return _TERMINAL_STATE[self.outcome]


@dataclass(frozen=True)
class BatchSummary:
    total: int
    success: int
    duplicate: int
    error: int
    start_offset: int = 0
    results: tuple[ItemResult, ...] = field(default_factory=tuple)

    @property
    def success_rate_pct(self) -> float:
        """(success + duplicate) / total as a percentage, one decimal place."""
        if self.total <= 0:
            return 0.0
        return round((self.success + self.duplicate) / self.total * 100.0, 1)

    def count(self, kind: OutcomeKind) -> int:
        return sum(1 for r in self.results if r.outcome is kind)

    def as_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "success": self.success,
            "duplicate": self.duplicate,
            "error": self.error,
            "success_rate_pct": self.success_rate_pct,
            "start_offset": self.start_offset,
            "fetch_errors": self.count(OutcomeKind.FETCH_ERROR),
            "transform_errors": self.count(OutcomeKind.TRANSFORM_ERROR),
            "save_errors": self.count(OutcomeKind.SAVE_ERROR),
        }


class BatchIngestionProcessor:
    """
    Strictly sequential importer for a list of post URLs into one board.

    Each item runs fetch, transform, then save, and ends as SUCCESS,
    DUPLICATE or one of the error outcomes. Errors are counted and logged,
    never raised, so one bad item does not stop the batch. The inter-item
    delay is the only throttle against the content API and is skipped after
    the final item.
    """

    def __init__(
        self,
        settings: BatchSettings,
        *,
        store: Datastore,
        fetcher: ContentFetcher | None = None,
        logger: RunLogger | None = None,
        retry: RetryConfig | None = None,
        sleep_fn: SleepFn | None = None,
        on_item: Callable[[ItemResult], None] | None = None,
        on_state: Callable[[int, ItemState], None] | None = None,
    ) -> None:
        self._settings = settings
        self._logger = (logger or RunLogger(None)).bind(board_id=settings.target_board_id)
        self._sleep = sleep_fn or time.sleep
        self._on_item = on_item
        self._on_state = on_state
        self._stage = ItemState.PENDING
        self._retry = retry or RetryConfig()

        self._fetcher = fetcher or ScrapeCreatorsClient(
            settings.api_key,
            base_url=settings.base_url,
            retry=self._retry,
            on_retry=self._log_retry,
            sleep_fn=self._sleep,
        )
        self._engine = UpsertEngine(
            store,
            retry=self._retry,
            on_retry=self._log_retry,
            sleep_fn=self._sleep,
            logger=self._logger,
        )
        self._guard = BoardMembershipGuard(store)

    @property
    def settings(self) -> BatchSettings:
        return self._settings

    def _enter(self, index: int, state: ItemState) -> None:
        self._stage = state
        if self._on_state is not None:
            self._on_state(index, state)

    def _log_retry(self, event: RetryEvent) -> None:
        self._logger.warning(
            "retry_scheduled",
            url=event.url,
            operation=event.operation,
            failed_attempt=event.failed_attempt,
            max_attempts=event.max_attempts,
            delay_seconds=round(event.delay_seconds, 3),
            reason=event.reason,
            error_type=event.error_type,
            error_message=event.error_message,
        )

    def process_urls(self, urls: Iterable[str], *, start_offset: int | None = None) -> BatchSummary:
        cleaned = [u.strip() for u in urls if (u or "").strip()]
        return self._run(cleaned, start_offset=start_offset, step=self._process_url)

    def process_prefetched(
        self,
        items: Sequence[PrefetchedPost],
        *,
        start_offset: int | None = None,
    ) -> BatchSummary:
        return self._run(list(items), start_offset=start_offset, step=self._process_prefetched)

    def _run(
        self,
        items: list[Any],
        *,
        start_offset: int | None,
        step: Callable[[int, Any], ItemResult],
    ) -> BatchSummary:
        offset = self._settings.start_offset if start_offset is None else int(start_offset)
        if offset < 0:
            raise ValueError("start_offset must be >= 0")

        work = items[offset:]
        total = len(work)
        delay_ms = self._settings.inter_item_delay_ms

        self._logger.info(
            "batch_started",
            total=total,
            start_offset=offset,
            inter_item_delay_ms=delay_ms,
        )

        results: list[ItemResult] = []
        success = duplicate = error = 0

        for position, item in enumerate(work):
            index = offset + position
            self._logger.info("item_started", index=index, position=f"{position + 1}/{total}")
            self._enter(index, ItemState.PENDING)

            try:
                result = step(index, item)
            except Exception as e:
                result = self._unexpected_failure(index, item, e)
            self._enter(index, result.state)
            results.append(result)

            if result.outcome is OutcomeKind.SUCCESS:
                success += 1
            elif result.outcome is OutcomeKind.DUPLICATE:
                duplicate += 1
            else:
                error += 1

            if self._on_item is not None:
                self._on_item(result)

            if position < total - 1 and delay_ms > 0:
                self._logger.info("item_sleep", delay_ms=delay_ms)
                self._sleep(delay_ms / 1000.0)

        summary = BatchSummary(
            total=total,
            success=success,
            duplicate=duplicate,
            error=error,
            start_offset=offset,
            results=tuple(results),
        )
        self._logger.info("batch_completed", **summary.as_dict())
        return summary

    def _process_url(self, index: int, url: str) -> ItemResult:
        platform = detect_platform(url)
        if platform is None:
            return self._fetch_failed(index, url, None, f"Unrecognized post URL: {url}")

        self._enter(index, ItemState.FETCHING)
        try:
            fetched = self._fetcher.fetch_post(url)
        except FetchError as e:
            return self._fetch_failed(index, url, platform, str(e))
        if not fetched.success:
            return self._fetch_failed(index, url, platform, fetched.error)

        return self._transform_and_save(index, url, platform, fetched.data)

    def _process_prefetched(self, index: int, item: PrefetchedPost) -> ItemResult:
        try:
            platform = coerce_platform(item.platform)
        except ValueError as e:
            self._logger.error("item_unsupported_platform", url=item.source_url, index=index, error=str(e))
            return ItemResult(
                index=index,
                source=item.source_url,
                platform=None,
                outcome=OutcomeKind.TRANSFORM_ERROR,
                error=str(e),
            )
        return self._transform_and_save(index, item.source_url, platform, item.data)

    def _unexpected_failure(self, index: int, item: Any, exc: Exception) -> ItemResult:
        stage = self._stage
        source = item if isinstance(item, str) else getattr(item, "source_url", None)
        platform = detect_platform(source) if source else None
        self._logger.exception(
            "item_failed_unexpectedly",
            exc=exc,
            url=source,
            index=index,
            platform=platform,
            stage=stage.value,
        )
        return ItemResult(
            index=index,
            source=source,
            platform=platform,
            outcome=_FAILURE_BY_STAGE.get(stage, OutcomeKind.SAVE_ERROR),
            error=f"{type(exc).__name__}: {exc}",
        )

    def _fetch_failed(self, index: int, url: str, platform: Platform | None, error: str | None) -> ItemResult:
        self._logger.error("item_fetch_failed", url=url, index=index, platform=platform, error=error)
        return ItemResult(
            index=index,
            source=url,
            platform=platform,
            outcome=OutcomeKind.FETCH_ERROR,
            error=error,
        )

    def _transform_and_save(
        self,
        index: int,
        source: str | None,
        platform: Platform,
        data: Any,
    ) -> ItemResult:
        self._enter(index, ItemState.TRANSFORMING)
        try:
            draft = transform_post_response(platform, data, source_url=source)
        except MissingContentError as e:
            self._logger.error(
                "item_missing_content",
                url=source,
                index=index,
                platform=platform,
                error=str(e),
            )
            return ItemResult(
                index=index,
                source=source,
                platform=platform,
                outcome=OutcomeKind.TRANSFORM_ERROR,
                error=str(e),
            )

        self._enter(index, ItemState.SAVING)
        try:
            ingested = ingest_draft(
                draft,
                self._settings.target_board_id,
                engine=self._engine,
                guard=self._guard,
            )
        except DuplicateAssociation as e:
            self._logger.info("item_duplicate", url=source, index=index, platform=platform, post_id=e.post_id)
            return ItemResult(
                index=index,
                source=source,
                platform=platform,
                outcome=OutcomeKind.DUPLICATE,
                post_id=e.post_id,
            )
        except PersistenceError as e:
            self._logger.exception("item_save_failed", exc=e, url=source, index=index, platform=platform)
            return ItemResult(
                index=index,
                source=source,
                platform=platform,
                outcome=OutcomeKind.SAVE_ERROR,
                error=str(e),
            )

        self._logger.info(
            "item_succeeded",
            url=source,
            index=index,
            platform=platform,
            post_id=ingested.post.id,
            platform_post_id=ingested.post.platform_post_id,
            post_created=ingested.post_created,
        )
        return ItemResult(
            index=index,
            source=source,
            platform=platform,
            outcome=OutcomeKind.SUCCESS,
            post_id=ingested.post.id,
        )
