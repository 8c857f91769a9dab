from __future__ import annotations

import re

from .post import Platform

_COMPOSITE_ID_RE = re.compile(r"\d+_\d+")
_P_PATH_RE = re.compile(r"/p/([A-Za-z0-9_-]+)")

_INSTAGRAM_URL_RE = re.compile(r"instagram\.com/(?:[A-Za-z0-9_.]+/)?(?:p|reel|reels|tv)/([A-Za-z0-9_-]+)")
_TIKTOK_URL_RE = re.compile(r"tiktok\.com/@([A-Za-z0-9_.-]+)/(?:video|photo)/(\d+)")

# Public short codes are well below this length; composite numeric ids are longer.
SHORTCODE_MAX_LEN = 20


def detect_platform(url: str) -> Platform | None:
    """Return the platform a post URL belongs to, or None if it is not a recognized post URL."""
    u = (url or "").strip()
    if not u:
        return None
    if _INSTAGRAM_URL_RE.search(u):
        return "instagram"
    if _TIKTOK_URL_RE.search(u):
        return "tiktok"
    return None


def shortcode_from_url(url: str) -> str | None:
    m = _INSTAGRAM_URL_RE.search(url or "")
    return m.group(1) if m else None


def tiktok_video_id_from_url(url: str) -> str | None:
    m = _TIKTOK_URL_RE.search(url or "")
    return m.group(2) if m else None


def looks_like_shortcode(raw_id: str) -> bool:
    value = raw_id or ""
    return not _COMPOSITE_ID_RE.search(value) and len(value) < SHORTCODE_MAX_LEN


def normalize_post_id(platform: Platform | str, raw_id: str, embed_url: str) -> str:
    """
    Resolve a platform-reported post id into the stable dedup key.

    Instagram reports the same post either by its short code or by a long composite
    numeric id depending on the endpoint. Short codes are kept as-is; otherwise the
    short code is taken from the `/p/<code>` segment of the embed URL. When the URL
    has no such segment the raw id is returned unchanged.

    TikTok ids are consistent across endpoints and pass through.
    """
    value = (raw_id or "").strip()
    if platform != "instagram":
        return value

    if looks_like_shortcode(value):
        return value

    m = _P_PATH_RE.search(embed_url or "")
    if m and m.group(1):
        return m.group(1)

    return value


def is_normalized(platform: Platform | str, raw_id: str, normalized_id: str) -> bool:
    """False when an Instagram id is still in composite form after normalization."""
    if platform != "instagram":
        return True
    return looks_like_shortcode(normalized_id) or normalized_id != (raw_id or "").strip()
