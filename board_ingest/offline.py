from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .content_client import FetchResult
from .identifiers import detect_platform, shortcode_from_url, tiktok_video_id_from_url
from .post import Platform, coerce_platform, normalize_handle

_OFFLINE_CAPTIONS = (
    "Morning routine reset: five things that actually stuck this month.",
    "Three-ingredient pasta you can make on a weeknight. Saving this one.",
    "Studio tour and the lighting setup behind every shot.",
)

_OFFLINE_VTT = """WEBVTT

1
00:00:00.000 --> 00:00:02.500
Hey everyone, welcome back.

2
00:00:02.500 --> 00:00:05.000
Today we are testing the offline transcript.
"""

# Instagram short codes with these prefixes simulate the two per-item failures.
# TikTok video ids are numeric, so TikTok URLs always fetch successfully.
FAIL_PREFIX = "fail"
EMPTY_PREFIX = "empty"


def _seed(value: str) -> int:
    return sum(ord(ch) for ch in value)


def _instagram_media(shortcode: str, handle: str) -> dict[str, Any]:
    n = _seed(shortcode)
    return {
        "__typename": "XDTGraphImage",
        "shortcode": shortcode,
        "edge_media_to_caption": {
            "edges": [{"node": {"text": _OFFLINE_CAPTIONS[n % len(_OFFLINE_CAPTIONS)]}}]
        },
        "is_video": False,
        "display_url": f"https://offline.invalid/ig/{shortcode}.jpg",
        "thumbnail_src": f"https://offline.invalid/ig/{shortcode}_thumb.jpg",
        "dimensions": {"width": 1080, "height": 1350},
        "edge_media_preview_like": {"count": 100 + n % 900},
        "edge_media_to_parent_comment": {"count": n % 50},
        "taken_at_timestamp": 1735689600 + n,
        "owner": {
            "username": handle,
            "full_name": "Offline Creator",
            "is_verified": False,
            "profile_pic_url": "https://offline.invalid/ig/avatar.jpg",
            "edge_followed_by": {"count": 4200},
        },
    }


def _tiktok_aweme(video_id: str, handle: str) -> dict[str, Any]:
    n = _seed(video_id)
    return {
        "aweme_id": video_id,
        "desc": _OFFLINE_CAPTIONS[n % len(_OFFLINE_CAPTIONS)],
        "create_time": 1735689600 + n,
        "statistics": {
            "play_count": 10000 + n,
            "digg_count": 500 + n % 500,
            "comment_count": n % 80,
            "share_count": n % 20,
        },
        "video": {
            "cover": {"url_list": [f"https://offline.invalid/tt/{video_id}.jpg"]},
            "play_addr": {"url_list": [f"https://offline.invalid/tt/{video_id}.mp4"]},
            "width": 1080,
            "height": 1920,
        },
        "author": {"unique_id": handle, "nickname": "Offline Creator", "verified": False},
    }


@dataclass
class OfflineContentFetcher:
    """
    Network-free fetcher for smoke runs.

    Payloads are derived from the URL, so the same URL always yields the same
    post. An Instagram short code starting with "fail" returns a failed fetch;
    one starting with "empty" returns a payload with no owner and no id. TikTok
    video ids are numeric and always produce a full payload.
    """

    handle: str = "offline_creator"

    def fetch_post(self, url: str) -> FetchResult:
        u = (url or "").strip()
        platform = detect_platform(u)
        if platform == "instagram":
            code = shortcode_from_url(u) or ""
            if code.startswith(FAIL_PREFIX):
                return FetchResult.fail(f"offline fetch failure for {u}")
            if code.startswith(EMPTY_PREFIX):
                return FetchResult.ok({"data": {"xdt_shortcode_media": {"__typename": "XDTGraphImage"}}})
            return FetchResult.ok({"data": {"xdt_shortcode_media": _instagram_media(code, self.handle)}})
        if platform == "tiktok":
            vid = tiktok_video_id_from_url(u) or ""
            return FetchResult.ok({"aweme_detail": _tiktok_aweme(vid, self.handle)})
        return FetchResult.fail(f"Unrecognized post URL: {u or '<empty>'}")

    def fetch_profile(self, handle: str, platform: Platform | str) -> FetchResult:
        p = coerce_platform(platform)
        h = normalize_handle(handle) or self.handle
        if p == "instagram":
            return FetchResult.ok(
                {
                    "data": {
                        "user": {
                            "username": h,
                            "full_name": "Offline Creator",
                            "biography": "Offline profile for smoke runs.",
                            "edge_followed_by": {"count": 4200},
                            "profile_pic_url_hd": "https://offline.invalid/ig/avatar_hd.jpg",
                            "is_verified": False,
                        }
                    }
                }
            )
        return FetchResult.ok(
            {
                "user": {
                    "uniqueId": h,
                    "nickname": "Offline Creator",
                    "signature": "Offline profile for smoke runs.",
                    "verified": False,
                    "avatarLarger": "https://offline.invalid/tt/avatar.jpg",
                },
                "stats": {"followerCount": 4200},
            }
        )

    def fetch_posts(self, handle: str, platform: Platform | str, *, count: int = 10) -> FetchResult:
        p = coerce_platform(platform)
        h = normalize_handle(handle) or self.handle
        n = max(0, int(count))
        if p == "instagram":
            items = []
            for i in range(n):
                media = _instagram_media(f"OFF{i:04d}", h)
                items.append(
                    {
                        "code": media["shortcode"],
                        "caption": {"text": media["edge_media_to_caption"]["edges"][0]["node"]["text"]},
                        "like_count": media["edge_media_preview_like"]["count"],
                        "comment_count": media["edge_media_to_parent_comment"]["count"],
                        "taken_at": media["taken_at_timestamp"],
                        "media_type": 1,
                        "image_versions2": {"candidates": [{"url": media["display_url"]}]},
                        "user": {"username": h},
                    }
                )
            return FetchResult.ok({"items": items})
        return FetchResult.ok({"aweme_list": [_tiktok_aweme(str(7000000000000000000 + i), h) for i in range(n)]})

    def fetch_transcript(self, url: str, *, language: str = "en") -> FetchResult:
        platform = detect_platform(url)
        if platform == "instagram":
            return FetchResult.ok({"success": True, "transcripts": [{"transcript": _OFFLINE_VTT}]})
        if platform == "tiktok":
            return FetchResult.ok({"transcript": _OFFLINE_VTT})
        return FetchResult.fail(f"Unrecognized post URL: {url}")
