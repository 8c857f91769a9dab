from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from .content_client import ContentFetcher
from .datastore import Datastore
from .errors import PersistenceError
from .post import Platform, coerce_platform
from .retry import SleepFn
from .run_log import RunLogger

_CUE_NUMBER_RE = re.compile(r"^\d+$")
_VTT_TIMESTAMP_RE = re.compile(r"^\d{2}:\d{2}:\d{2}\.\d{3}\s*-->")
_SRT_TIMESTAMP_RE = re.compile(r"^\d{2}:\d{2}:\d{2},\d{3}\s*-->")
_WHITESPACE_RE = re.compile(r"\s+")


def clean_transcript_text(raw: str | None) -> str:
    """Flatten a WebVTT/SRT caption file (or plain text) into a single line of speech."""
    kept: list[str] = []
    for line in (raw or "").splitlines():
        s = line.strip()
        if not s or s.startswith("WEBVTT"):
            continue
        if _CUE_NUMBER_RE.match(s):
            continue
        if _VTT_TIMESTAMP_RE.match(s) or _SRT_TIMESTAMP_RE.match(s):
            continue
        kept.append(s)
    return _WHITESPACE_RE.sub(" ", " ".join(kept)).strip()


def transcript_from_response(platform: Platform | str, data: Any) -> str | None:
    p = coerce_platform(platform)
    if not isinstance(data, Mapping):
        return None

    if p == "instagram":
        entries = data.get("transcripts")
        if isinstance(entries, list):
            parts = [
                str(e.get("transcript") or "").strip()
                for e in entries
                if isinstance(e, Mapping)
            ]
            joined = "\n".join(x for x in parts if x)
            if joined:
                return joined

    text = data.get("transcript")
    if isinstance(text, str) and text.strip():
        return text
    return None


@dataclass(frozen=True)
class BackfillResult:
    total: int
    updated: int
    already_had: int
    skipped_platform: int
    failed: int

    def as_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "updated": self.updated,
            "already_had": self.already_had,
            "skipped_platform": self.skipped_platform,
            "failed": self.failed,
        }


def backfill_transcripts(
    board_id: str,
    *,
    store: Datastore,
    fetcher: ContentFetcher,
    platforms: Sequence[str] = ("instagram", "tiktok"),
    language: str = "en",
    delay_ms: int = 2000,
    sleep_fn: SleepFn | None = None,
    logger: RunLogger | None = None,
) -> BackfillResult:
    """
    Fetch and store transcripts for a board's posts, one at a time.

    Posts that already have a transcript, or whose platform is not listed,
    are counted and left alone. The delay is applied between API calls only.
    """
    sleeper = sleep_fn or time.sleep
    enabled = {coerce_platform(p) for p in platforms}
    log = (logger or RunLogger(None)).bind(board_id=board_id)

    posts = store.posts_in_board(board_id)
    updated = already = skipped = failed = 0
    calls = 0

    log.info("transcript_backfill_started", total=len(posts))

    for post in posts:
        if (post.transcript or "").strip():
            already += 1
            continue
        if post.platform not in enabled:
            skipped += 1
            continue

        if calls > 0 and delay_ms > 0:
            sleeper(delay_ms / 1000.0)
        calls += 1

        url = post.original_url or post.embed_url
        fetched = fetcher.fetch_transcript(url, language=language)
        if not fetched.success:
            failed += 1
            log.warning("transcript_fetch_failed", url=url, post_id=post.id, error=fetched.error)
            continue

        text = clean_transcript_text(transcript_from_response(post.platform, fetched.data))
        if not text:
            failed += 1
            log.warning("transcript_empty", url=url, post_id=post.id)
            continue

        try:
            store.update_post_transcript(post.id, text)
        except PersistenceError as e:
            failed += 1
            log.exception("transcript_save_failed", exc=e, url=url, post_id=post.id)
            continue

        updated += 1
        log.info("transcript_saved", url=url, post_id=post.id, chars=len(text))

    result = BackfillResult(
        total=len(posts),
        updated=updated,
        already_had=already,
        skipped_platform=skipped,
        failed=failed,
    )
    log.info("transcript_backfill_completed", **result.as_dict())
    return result
