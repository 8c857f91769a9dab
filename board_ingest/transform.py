from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Literal, Mapping, Union

from .errors import MissingContentError
from .post import (
    CarouselItem,
    Dimensions,
    Platform,
    PostDraft,
    PostMetrics,
    ProfileDraft,
    coerce_platform,
    normalize_handle,
)

Path = tuple[Union[str, int], ...]

InstagramKind = Literal["shortcode_media", "feed_item", "timeline_node", "apify_item"]
TikTokKind = Literal["aweme", "web_item"]


@dataclass(frozen=True)
class InstagramPayload:
    kind: InstagramKind
    body: Mapping[str, Any]
    platform: Literal["instagram"] = "instagram"


@dataclass(frozen=True)
class TikTokPayload:
    kind: TikTokKind
    body: Mapping[str, Any]
    platform: Literal["tiktok"] = "tiktok"


RawPostPayload = Union[InstagramPayload, TikTokPayload]


# Ordered fallback paths per logical field. The first candidate that survives
# coercion wins, so a reported 0 beats a later non-zero alias.
INSTAGRAM_RULES: dict[str, tuple[Path, ...]] = {
    "post_id": (("code",), ("shortcode",), ("shortCode",), ("pk",), ("id",)),
    "shortcode": (("code",), ("shortcode",), ("shortCode",)),
    "caption": (
        ("caption", "text"),
        ("edge_media_to_caption", "edges", 0, "node", "text"),
        ("caption",),
    ),
    "likes": (
        ("like_count",),
        ("edge_liked_by", "count"),
        ("edge_media_preview_like", "count"),
        ("likesCount",),
    ),
    "comments": (
        ("comment_count",),
        ("edge_media_to_comment", "count"),
        ("edge_media_to_parent_comment", "count"),
        ("commentsCount",),
    ),
    "views": (
        ("view_count",),
        ("video_view_count",),
        ("play_count",),
        ("ig_play_count",),
        ("videoViewCount",),
        ("videoPlayCount",),
    ),
    "shares": (),
    "taken_at": (("taken_at",), ("taken_at_timestamp",), ("timestamp",)),
    "thumbnail": (
        ("thumbnail_src",),
        ("display_url",),
        ("image_versions2", "candidates", 0, "url"),
        ("displayUrl",),
    ),
    "display_url": (
        ("display_url",),
        ("image_versions2", "candidates", 0, "url"),
        ("displayUrl",),
    ),
    "video_url": (("video_url",), ("video_versions", 0, "url"), ("videoUrl",)),
    "width": (("original_width",), ("dimensions", "width"), ("dimensionsWidth",)),
    "height": (("original_height",), ("dimensions", "height"), ("dimensionsHeight",)),
    "owner_handle": (("owner", "username"), ("user", "username"), ("ownerUsername",)),
    "owner_display_name": (("owner", "full_name"), ("user", "full_name"), ("ownerFullName",)),
    "owner_verified": (("owner", "is_verified"), ("user", "is_verified")),
    "owner_avatar": (
        ("owner", "profile_pic_url"),
        ("user", "profile_pic_url"),
        ("ownerProfilePicUrl",),
    ),
    "owner_followers": (
        ("owner", "edge_followed_by", "count"),
        ("user", "follower_count"),
    ),
    "is_video_flag": (("is_video",),),
    "media_type": (("media_type",),),
    "video_versions": (("video_versions",),),
    "carousel_items": (
        ("carousel_media",),
        ("edge_sidecar_to_children", "edges"),
        ("childPosts",),
    ),
    "media_kind": (("__typename",), ("product_type",), ("type",)),
    "post_url": (("url",),),
}

TIKTOK_RULES: dict[str, tuple[Path, ...]] = {
    "post_id": (("aweme_id",), ("id",)),
    "shortcode": (),
    "caption": (("desc",), ("description",)),
    "likes": (("statistics", "digg_count"), ("stats", "diggCount")),
    "comments": (("statistics", "comment_count"), ("stats", "commentCount")),
    "views": (("statistics", "play_count"), ("stats", "playCount")),
    "shares": (("statistics", "share_count"), ("stats", "shareCount")),
    "taken_at": (("create_time",), ("createTime",)),
    "thumbnail": (
        ("video", "dynamic_cover", "url_list", 0),
        ("video", "origin_cover", "url_list", 0),
        ("video", "cover", "url_list", 0),
        ("video", "dynamicCover"),
        ("video", "cover"),
    ),
    "display_url": (
        ("video", "origin_cover", "url_list", 0),
        ("video", "cover", "url_list", 0),
        ("video", "originCover"),
        ("video", "cover"),
    ),
    "video_url": (
        ("video", "play_addr", "url_list", 0),
        ("video", "download_addr", "url_list", 0),
        ("video", "playAddr"),
        ("video", "downloadAddr"),
    ),
    "width": (("video", "width"),),
    "height": (("video", "height"),),
    "owner_handle": (("author", "unique_id"), ("author", "uniqueId")),
    "owner_display_name": (("author", "nickname"),),
    "owner_verified": (("author", "verified"),),
    "owner_avatar": (
        ("author", "avatar_larger", "url_list", 0),
        ("author", "avatar_thumb", "url_list", 0),
        ("author", "avatarLarger"),
        ("author", "avatarThumb"),
    ),
    "owner_followers": (("author", "follower_count"), ("authorStats", "followerCount")),
    "is_video_flag": (("is_video",),),
    "media_type": (),
    "video_versions": (),
    "carousel_items": (("image_post_info", "images"), ("imagePost", "images")),
    "media_kind": (("aweme_type",),),
    "post_url": (("share_url",),),
}

_RULES_BY_PLATFORM: dict[str, dict[str, tuple[Path, ...]]] = {
    "instagram": INSTAGRAM_RULES,
    "tiktok": TIKTOK_RULES,
}

INSTAGRAM_PROFILE_RULES: dict[str, tuple[Path, ...]] = {
    "handle": (("data", "user", "username"), ("user", "username"), ("username",)),
    "display_name": (
        ("data", "user", "full_name"),
        ("user", "full_name"),
        ("fullName",),
        ("full_name",),
    ),
    "bio": (("data", "user", "biography"), ("user", "biography"), ("biography",)),
    "followers": (
        ("data", "user", "edge_followed_by", "count"),
        ("user", "edge_followed_by", "count"),
        ("user", "follower_count"),
        ("followersCount",),
    ),
    "avatar_url": (
        ("data", "user", "profile_pic_url_hd"),
        ("data", "user", "profile_pic_url"),
        ("user", "profile_pic_url_hd"),
        ("user", "profile_pic_url"),
        ("profilePicUrlHD",),
        ("profilePicUrl",),
    ),
    "verified": (
        ("data", "user", "is_verified"),
        ("user", "is_verified"),
        ("verified",),
    ),
}

TIKTOK_PROFILE_RULES: dict[str, tuple[Path, ...]] = {
    "handle": (("user", "uniqueId"), ("userInfo", "user", "uniqueId"), ("user", "unique_id")),
    "display_name": (("user", "nickname"), ("userInfo", "user", "nickname")),
    "bio": (("user", "signature"), ("userInfo", "user", "signature")),
    "followers": (
        ("stats", "followerCount"),
        ("statsV2", "followerCount"),
        ("userInfo", "stats", "followerCount"),
        ("user", "follower_count"),
    ),
    "avatar_url": (
        ("user", "avatarLarger"),
        ("user", "avatarMedium"),
        ("user", "avatarThumb"),
        ("userInfo", "user", "avatarLarger"),
    ),
    "verified": (("user", "verified"), ("userInfo", "user", "verified")),
}

_INSTAGRAM_CAROUSEL_KINDS = frozenset(
    {"GraphSidecar", "XDTGraphSidecar", "carousel_container", "Sidecar"}
)
_INSTAGRAM_CAROUSEL_MEDIA_TYPE = 8
_INSTAGRAM_VIDEO_MEDIA_TYPE = 2
_TIKTOK_PHOTO_AWEME_TYPES = frozenset({2, 150})


def _dig(body: Any, path: Path) -> Any:
    cur = body
    for key in path:
        if isinstance(key, int):
            if not isinstance(cur, list) or not (-len(cur) <= key < len(cur)):
                return None
            cur = cur[key]
        else:
            if not isinstance(cur, Mapping):
                return None
            cur = cur.get(key)
        if cur is None:
            return None
    return cur


def _coerce_str(value: Any) -> str | None:
    if isinstance(value, str):
        s = value.strip()
        return s if s else None
    return None


def _coerce_id(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        v = value.strip()
        return v if v else None
    if isinstance(value, int):
        return str(value)
    return None


def _coerce_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    return None


def _coerce_count(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float):
        if not math.isfinite(value) or value < 0:
            return None
        return int(value)
    if isinstance(value, str):
        s = value.strip().replace(",", "")
        if s.isdigit():
            return int(s)
    return None


def _coerce_timestamp(value: Any) -> str | None:
    if isinstance(value, bool):
        return None

    seconds: float | None = None
    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        if s.isdigit():
            seconds = float(s)
        else:
            try:
                dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
            except ValueError:
                return None
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return dt.astimezone(timezone.utc).isoformat()

    if seconds is None or not math.isfinite(seconds) or seconds <= 0:
        return None
    if seconds > 1e11:
        # Millisecond epoch.
        seconds = seconds / 1000.0
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()
    except (OverflowError, OSError, ValueError):
        return None


def _coerce_list(value: Any) -> list[Any] | None:
    if isinstance(value, list) and value:
        return value
    return None


def _raw(value: Any) -> Any:
    return value


_FIELD_COERCERS: dict[str, Callable[[Any], Any]] = {
    "post_id": _coerce_id,
    "shortcode": _coerce_str,
    "caption": _coerce_str,
    "likes": _coerce_count,
    "comments": _coerce_count,
    "views": _coerce_count,
    "shares": _coerce_count,
    "taken_at": _coerce_timestamp,
    "thumbnail": _coerce_str,
    "display_url": _coerce_str,
    "video_url": _coerce_str,
    "width": _coerce_count,
    "height": _coerce_count,
    "owner_handle": _coerce_str,
    "owner_display_name": _coerce_str,
    "owner_verified": _coerce_bool,
    "owner_avatar": _coerce_str,
    "owner_followers": _coerce_count,
    "is_video_flag": _coerce_bool,
    "media_type": _coerce_count,
    "video_versions": _coerce_list,
    "carousel_items": _coerce_list,
    "media_kind": _raw,
    "post_url": _coerce_str,
    # profile fields
    "handle": _coerce_str,
    "display_name": _coerce_str,
    "bio": _coerce_str,
    "followers": _coerce_count,
    "avatar_url": _coerce_str,
    "verified": _coerce_bool,
}


def first_match(body: Any, rules: tuple[Path, ...], coerce: Callable[[Any], Any] = _raw) -> Any:
    """Return the first rule value that is not None after coercion."""
    for path in rules:
        value = coerce(_dig(body, path))
        if value is not None:
            return value
    return None


def extract_field(payload: RawPostPayload, name: str) -> Any:
    rules = _RULES_BY_PLATFORM[payload.platform].get(name)
    if rules is None:
        raise KeyError(f"Unknown field for {payload.platform}: {name}")
    return first_match(payload.body, rules, _FIELD_COERCERS.get(name, _raw))


def classify_payload(platform: Platform | str, body: Mapping[str, Any]) -> RawPostPayload:
    """Tag a raw post body with the endpoint shape it came from."""
    p = coerce_platform(platform)
    if not isinstance(body, Mapping):
        raise MissingContentError(f"{p} payload is not an object")

    if p == "tiktok":
        if "aweme_id" in body or "statistics" in body:
            return TikTokPayload(kind="aweme", body=body)
        return TikTokPayload(kind="web_item", body=body)

    typename = str(body.get("__typename") or "")
    if typename.startswith("XDTGraph") or "edge_media_preview_like" in body:
        return InstagramPayload(kind="shortcode_media", body=body)
    if "shortCode" in body or "ownerUsername" in body:
        return InstagramPayload(kind="apify_item", body=body)
    if "shortcode" in body and "code" not in body:
        return InstagramPayload(kind="timeline_node", body=body)
    return InstagramPayload(kind="feed_item", body=body)


def _is_video(payload: RawPostPayload) -> bool:
    # Platforms populate different signals; any one of them is enough.
    return bool(
        extract_field(payload, "is_video_flag")
        or extract_field(payload, "media_type") == _INSTAGRAM_VIDEO_MEDIA_TYPE
        or extract_field(payload, "video_url")
        or extract_field(payload, "video_versions")
    )


def _carousel_flag(payload: RawPostPayload) -> bool:
    kind = extract_field(payload, "media_kind")
    if payload.platform == "instagram":
        if extract_field(payload, "media_type") == _INSTAGRAM_CAROUSEL_MEDIA_TYPE:
            return True
        return isinstance(kind, str) and kind in _INSTAGRAM_CAROUSEL_KINDS
    if isinstance(kind, int) and not isinstance(kind, bool):
        return kind in _TIKTOK_PHOTO_AWEME_TYPES
    return _dig(payload.body, ("imagePost",)) is not None


def _instagram_carousel_item(raw: Any, index: int, parent_id: str) -> CarouselItem | None:
    if not isinstance(raw, Mapping):
        return None
    body = raw.get("node") if isinstance(raw.get("node"), Mapping) else raw
    child = InstagramPayload(kind="feed_item", body=body)

    is_video = _is_video(child)
    thumbnail = extract_field(child, "thumbnail") or extract_field(child, "display_url")
    video_url = extract_field(child, "video_url")
    url = (video_url if is_video else None) or extract_field(child, "display_url") or thumbnail
    if not url:
        return None

    child_id = extract_field(child, "post_id") or f"{parent_id}-{index}"
    return CarouselItem(
        id=child_id,
        type="video" if is_video else "image",
        url=url,
        thumbnail=thumbnail or url,
        is_video=is_video,
    )


def _tiktok_carousel_item(raw: Any, index: int, parent_id: str) -> CarouselItem | None:
    url = first_match(
        raw,
        (
            ("display_image", "url_list", 0),
            ("imageURL", "urlList", 0),
            ("thumbnail", "url_list", 0),
        ),
        _coerce_str,
    )
    if not url:
        return None
    thumbnail = first_match(raw, (("thumbnail", "url_list", 0),), _coerce_str) or url
    return CarouselItem(
        id=f"{parent_id}-{index}",
        type="image",
        url=url,
        thumbnail=thumbnail,
        is_video=False,
    )


def _carousel_items(payload: RawPostPayload, post_id: str) -> list[CarouselItem]:
    raw_items = extract_field(payload, "carousel_items") or []
    build = _instagram_carousel_item if payload.platform == "instagram" else _tiktok_carousel_item

    out: list[CarouselItem] = []
    for i, raw in enumerate(raw_items):
        item = build(raw, i, post_id)
        if item is not None:
            out.append(item)
    return out


def _owner(
    payload: RawPostPayload,
    *,
    owner_handle: str | None,
) -> ProfileDraft | None:
    handle = normalize_handle(extract_field(payload, "owner_handle")) or normalize_handle(owner_handle)
    if not handle:
        return None
    return ProfileDraft(
        handle=handle,
        platform=payload.platform,
        display_name=extract_field(payload, "owner_display_name"),
        followers=extract_field(payload, "owner_followers"),
        avatar_url=extract_field(payload, "owner_avatar"),
        verified=extract_field(payload, "owner_verified"),
    )


def _strip_query(url: str) -> str:
    return url.split("?", 1)[0].split("#", 1)[0]


def _embed_url(
    payload: RawPostPayload,
    *,
    post_id: str,
    shortcode: str | None,
    handle: str,
    source_url: str | None,
) -> str | None:
    if payload.platform == "instagram":
        if shortcode:
            return f"https://www.instagram.com/p/{shortcode}/"
        return (
            extract_field(payload, "post_url")
            or source_url
            or extract_field(payload, "video_url")
            or extract_field(payload, "display_url")
        )

    share_url = extract_field(payload, "post_url")
    if share_url:
        return _strip_query(share_url)
    return f"https://www.tiktok.com/@{handle}/video/{post_id}"


def transform_post(
    platform: Platform | str,
    body: Mapping[str, Any],
    *,
    owner_handle: str | None = None,
    source_url: str | None = None,
) -> PostDraft:
    """
    Convert one raw post body into a canonical PostDraft.

    owner_handle is used when the body itself does not name its owner (profile-embedded
    and post-list endpoints). Raises MissingContentError when neither an owner handle
    nor a content identifier can be resolved.
    """
    payload = body if isinstance(body, (InstagramPayload, TikTokPayload)) else classify_payload(platform, body)

    post_id = extract_field(payload, "post_id")
    owner = _owner(payload, owner_handle=owner_handle)

    if owner is None or not post_id:
        missing = [
            name
            for name, absent in (("owner handle", owner is None), ("post identifier", not post_id))
            if absent
        ]
        raise MissingContentError(
            f"{payload.platform} {payload.kind} payload lacks {' and '.join(missing)}"
        )

    shortcode = extract_field(payload, "shortcode")

    embed_url = _embed_url(
        payload,
        post_id=post_id,
        shortcode=shortcode,
        handle=owner.handle,
        source_url=source_url,
    )
    if not embed_url:
        raise MissingContentError(f"{payload.platform} payload {post_id} has no usable URL")

    carousel_items = _carousel_items(payload, post_id)
    is_carousel = _carousel_flag(payload) and bool(carousel_items)

    thumbnail = extract_field(payload, "thumbnail")
    display_url = extract_field(payload, "display_url")
    if is_carousel:
        first = carousel_items[0]
        thumbnail = first.thumbnail
        display_url = first.url

    width = extract_field(payload, "width")
    height = extract_field(payload, "height")
    dimensions = Dimensions(width=width, height=height) if width and height else None

    metrics = PostMetrics(
        likes=extract_field(payload, "likes") or 0,
        comments=extract_field(payload, "comments") or 0,
        views=extract_field(payload, "views"),
        shares=extract_field(payload, "shares"),
    )

    return PostDraft(
        platform=payload.platform,
        platform_post_id=post_id,
        embed_url=embed_url,
        owner=owner,
        caption=extract_field(payload, "caption") or "",
        shortcode=shortcode,
        date_posted=extract_field(payload, "taken_at"),
        metrics=metrics,
        is_video=_is_video(payload),
        is_carousel=is_carousel,
        carousel_items=tuple(carousel_items) if is_carousel else (),
        thumbnail=thumbnail,
        display_url=display_url,
        video_url=extract_field(payload, "video_url"),
        dimensions=dimensions,
        original_url=(source_url or "").strip() or None,
    )


_SINGLE_POST_PATHS: dict[str, tuple[Path, ...]] = {
    "instagram": (
        ("data", "xdt_shortcode_media"),
        ("xdt_shortcode_media",),
        ("data", "shortcode_media"),
        ("graphql", "shortcode_media"),
        ("items", 0),
        ("data", "items", 0),
    ),
    "tiktok": (
        ("aweme_detail",),
        ("itemInfo", "itemStruct"),
        ("data", "aweme_detail"),
        ("aweme_list", 0),
    ),
}

_POST_LIST_PATHS: dict[str, tuple[Path, ...]] = {
    "instagram": (
        ("items",),
        ("data", "items"),
        ("posts",),
    ),
    "tiktok": (
        ("aweme_list",),
        ("videos",),
        ("itemList",),
        ("data",),
    ),
}

_EDGE_LIST_PATHS: tuple[Path, ...] = (
    ("data", "user", "edge_owner_to_timeline_media", "edges"),
    ("user", "edge_owner_to_timeline_media", "edges"),
)


def _looks_like_post(platform: str, body: Any) -> bool:
    if not isinstance(body, Mapping):
        return False
    keys = ("aweme_id", "id") if platform == "tiktok" else ("code", "shortcode", "shortCode", "pk", "id")
    return any(k in body for k in keys)


def transform_post_response(
    platform: Platform | str,
    data: Any,
    *,
    source_url: str | None = None,
) -> PostDraft:
    """Unwrap a single-post lookup response and transform the post it carries."""
    p = coerce_platform(platform)
    body = first_match(data, _SINGLE_POST_PATHS[p], lambda v: v if isinstance(v, Mapping) else None)
    if body is None and _looks_like_post(p, data):
        body = data
    if body is None:
        raise MissingContentError(f"No {p} post data found in response")
    return transform_post(p, body, source_url=source_url)


def post_items_from_response(platform: Platform | str, data: Any) -> list[Mapping[str, Any]]:
    """Return the raw post bodies carried by a post-list or profile response."""
    p = coerce_platform(platform)
    if isinstance(data, list):
        return [x for x in data if isinstance(x, Mapping)]

    items = first_match(data, _POST_LIST_PATHS[p], lambda v: v if isinstance(v, list) else None)
    if items is not None:
        return [x for x in items if isinstance(x, Mapping)]

    if p == "instagram":
        edges = first_match(data, _EDGE_LIST_PATHS, lambda v: v if isinstance(v, list) else None)
        if edges is not None:
            out: list[Mapping[str, Any]] = []
            for edge in edges:
                node = edge.get("node") if isinstance(edge, Mapping) else None
                if isinstance(node, Mapping):
                    out.append(node)
            return out

    return []


def transform_profile(platform: Platform | str, data: Any) -> ProfileDraft:
    """Convert a profile endpoint response into a ProfileDraft."""
    p = coerce_platform(platform)
    rules = INSTAGRAM_PROFILE_RULES if p == "instagram" else TIKTOK_PROFILE_RULES

    root = data
    if p == "instagram":
        # Apify "details" runs return the profile as the first dataset item.
        first_item = _dig(data, ("items", 0))
        if isinstance(first_item, Mapping):
            root = first_item

    def _get(name: str) -> Any:
        return first_match(root, rules[name], _FIELD_COERCERS[name])

    handle = normalize_handle(_get("handle"))
    if not handle:
        raise MissingContentError(f"No {p} profile handle found in response")

    return ProfileDraft(
        handle=handle,
        platform=p,
        display_name=_get("display_name"),
        bio=_get("bio") or "",
        followers=_get("followers"),
        avatar_url=_get("avatar_url"),
        verified=_get("verified"),
    )
