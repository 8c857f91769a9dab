from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence

from .post import Platform


@dataclass(frozen=True)
class ProfileRecord:
    id: str
    handle: str
    platform: Platform
    display_name: str | None
    bio: str
    followers_count: int | None
    avatar_url: str | None
    verified: bool
    last_updated: str


@dataclass(frozen=True)
class PostRecord:
    id: str
    profile_id: str
    platform: Platform
    platform_post_id: str
    embed_url: str
    caption: str = ""
    transcript: str | None = None
    metrics: Mapping[str, int] = field(default_factory=dict)
    date_posted: str | None = None
    thumbnail: str | None = None
    is_video: bool = False
    is_carousel: bool = False
    carousel_items: Sequence[Mapping[str, Any]] = ()
    video_url: str | None = None
    display_url: str | None = None
    shortcode: str | None = None
    width: int | None = None
    height: int | None = None
    original_url: str | None = None


@dataclass(frozen=True)
class BoardPostRecord:
    board_id: str
    post_id: str
    added_at: str


class Datastore(Protocol):
    """
    Persistence operations used by the upsert engine and the membership guard.

    find_* return None for "not found"; failures raise PersistenceError.
    insert_board_post raises DuplicateAssociation when the pair already exists.
    """

    def find_profile(self, handle: str, platform: Platform) -> ProfileRecord | None: ...

    def upsert_profile(self, fields: Mapping[str, Any]) -> ProfileRecord: ...

    def find_post(self, platform: Platform, platform_post_id: str) -> PostRecord | None: ...

    def upsert_post(self, fields: Mapping[str, Any]) -> PostRecord: ...

    def find_board_post(self, board_id: str, post_id: str) -> BoardPostRecord | None: ...

    def insert_board_post(self, board_id: str, post_id: str) -> BoardPostRecord: ...

    def posts_in_board(self, board_id: str) -> list[PostRecord]: ...

    def update_post_transcript(self, post_id: str, transcript: str) -> None: ...
