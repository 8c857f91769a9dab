from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

from .datastore import Datastore, PostRecord, ProfileRecord
from .fetch_retry import is_retryable_persistence_exception
from .identifiers import is_normalized, normalize_post_id
from .post import PostDraft, ProfileDraft
from .retry import OnRetryFn, RetryConfig, SleepFn, call_with_retries
from .run_log import RunLogger

T = TypeVar("T")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _pick(new: Any, old: Any) -> Any:
    return new if new is not None else old


class UpsertEngine:
    """
    Sole writer of profile and post records.

    Both operations look the record up by its natural key first and merge the
    draft over what is stored: fields the draft does not report keep their
    stored value, so repeated ingestion converges on one row per key.
    """

    def __init__(
        self,
        store: Datastore,
        *,
        retry: RetryConfig | None = None,
        on_retry: OnRetryFn | None = None,
        sleep_fn: SleepFn | None = None,
        logger: RunLogger | None = None,
    ) -> None:
        self._store = store
        self._retry = retry or RetryConfig()
        self._on_retry = on_retry
        self._sleep_fn = sleep_fn
        self._logger = logger

    @property
    def store(self) -> Datastore:
        return self._store

    def _write(self, fn: Callable[[], T], *, operation: str) -> T:
        return call_with_retries(
            fn,
            cfg=self._retry,
            is_retryable=is_retryable_persistence_exception,
            operation=operation,
            on_retry=self._on_retry,
            sleep_fn=self._sleep_fn,
        )

    def upsert_profile(self, draft: ProfileDraft) -> ProfileRecord:
        existing = self._store.find_profile(draft.handle, draft.platform)

        fields: dict[str, Any] = {
            "handle": draft.handle,
            "platform": draft.platform,
            "display_name": draft.display_name,
            "bio": draft.bio,
            "followers_count": draft.followers,
            "avatar_url": draft.avatar_url,
            "verified": draft.verified,
            "last_updated": _utc_now_iso(),
        }
        if existing is not None:
            fields["display_name"] = _pick(draft.display_name, existing.display_name)
            fields["bio"] = _pick(draft.bio, existing.bio)
            fields["followers_count"] = _pick(draft.followers, existing.followers_count)
            fields["avatar_url"] = _pick(draft.avatar_url, existing.avatar_url)
            fields["verified"] = _pick(draft.verified, existing.verified)

        return self._write(
            lambda: self._store.upsert_profile(fields),
            operation=f"upsert_profile:{draft.platform}/{draft.handle}",
        )

    def post_key(self, draft: PostDraft) -> str:
        """Normalized dedup key for a draft; logs when it stays in composite form."""
        key = normalize_post_id(draft.platform, draft.platform_post_id, draft.embed_url)
        if self._logger is not None and not is_normalized(draft.platform, draft.platform_post_id, key):
            self._logger.warning(
                "post_id_not_normalized",
                url=draft.original_url or draft.embed_url,
                platform=draft.platform,
                platform_post_id=draft.platform_post_id,
                embed_url=draft.embed_url,
            )
        return key

    def upsert_post(self, draft: PostDraft, *, profile_id: str) -> PostRecord:
        record, _ = self.upsert_post_tracked(draft, profile_id=profile_id)
        return record

    def upsert_post_tracked(self, draft: PostDraft, *, profile_id: str) -> tuple[PostRecord, bool]:
        """Upsert a post and report whether it was newly created."""
        key = self.post_key(draft)
        existing = self._store.find_post(draft.platform, key)

        width = draft.dimensions.width if draft.dimensions else None
        height = draft.dimensions.height if draft.dimensions else None

        fields: dict[str, Any] = {
            "profile_id": profile_id,
            "platform": draft.platform,
            "platform_post_id": key,
            "embed_url": draft.embed_url,
            "caption": draft.caption,
            "transcript": draft.transcript,
            "metrics": draft.metrics.as_dict(),
            "date_posted": draft.date_posted or _utc_now_iso(),
            "thumbnail": draft.thumbnail,
            "is_video": draft.is_video,
            "is_carousel": draft.is_carousel,
            "carousel_items": [item.as_dict() for item in draft.carousel_items],
            "video_url": draft.video_url,
            "display_url": draft.display_url,
            "shortcode": draft.shortcode,
            "width": width,
            "height": height,
            "original_url": draft.original_url,
        }

        if existing is not None:
            fields["profile_id"] = existing.profile_id
            fields["caption"] = draft.caption or existing.caption
            fields["transcript"] = _pick(draft.transcript, existing.transcript)
            # Merge, not overwrite: unreported metrics keep their stored value.
            fields["metrics"] = {**dict(existing.metrics), **draft.metrics.as_dict()}
            fields["date_posted"] = _pick(draft.date_posted, existing.date_posted)
            fields["thumbnail"] = _pick(draft.thumbnail, existing.thumbnail)
            fields["video_url"] = _pick(draft.video_url, existing.video_url)
            fields["display_url"] = _pick(draft.display_url, existing.display_url)
            fields["shortcode"] = _pick(draft.shortcode, existing.shortcode)
            fields["width"] = _pick(width, existing.width)
            fields["height"] = _pick(height, existing.height)
            fields["original_url"] = _pick(draft.original_url, existing.original_url)

        record = self._write(
            lambda: self._store.upsert_post(fields),
            operation=f"upsert_post:{draft.platform}/{key}",
        )
        return record, existing is None
