from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Sequence

Platform = Literal["instagram", "tiktok"]

PLATFORMS: tuple[str, ...] = ("instagram", "tiktok")


def coerce_platform(value: str) -> Platform:
    p = (value or "").strip().lower()
    if p not in PLATFORMS:
        raise ValueError(f"Unsupported platform: {value!r}")
    return p  # type: ignore[return-value]


def normalize_handle(value: str | None) -> str | None:
    h = (value or "").strip()
    while h.startswith("@"):
        h = h[1:].strip()
    return h.lower() or None


@dataclass(frozen=True)
class PostMetrics:
    """Partial metric map. None means the platform did not report the metric."""

    likes: int | None = None
    comments: int | None = None
    views: int | None = None
    shares: int | None = None

    def as_dict(self) -> dict[str, int]:
        out: dict[str, int] = {}
        for key in ("views", "likes", "comments", "shares"):
            value = getattr(self, key)
            if value is not None:
                out[key] = int(value)
        return out


@dataclass(frozen=True)
class Dimensions:
    width: int
    height: int


@dataclass(frozen=True)
class CarouselItem:
    id: str
    type: Literal["image", "video"]
    url: str
    thumbnail: str
    is_video: bool

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "url": self.url,
            "thumbnail": self.thumbnail,
            "is_video": self.is_video,
        }


@dataclass(frozen=True)
class ProfileDraft:
    """
    A creator account as seen in one payload.

    Fields left as None were not reported and must not overwrite stored values.
    """

    handle: str
    platform: Platform
    display_name: str | None = None
    bio: str | None = None
    followers: int | None = None
    avatar_url: str | None = None
    verified: bool | None = None


@dataclass(frozen=True)
class PostDraft:
    """Canonical, platform-agnostic post record produced by the transformer."""

    platform: Platform
    platform_post_id: str
    embed_url: str
    owner: ProfileDraft

    caption: str = ""
    shortcode: str | None = None
    date_posted: str | None = None

    metrics: PostMetrics = field(default_factory=PostMetrics)

    is_video: bool = False
    is_carousel: bool = False
    carousel_items: Sequence[CarouselItem] = ()

    thumbnail: str | None = None
    display_url: str | None = None
    video_url: str | None = None
    dimensions: Dimensions | None = None

    original_url: str | None = None
    transcript: str | None = None
