from __future__ import annotations

from dataclasses import dataclass

from .content_client import ContentFetcher
from .datastore import PostRecord, ProfileRecord
from .errors import DuplicateAssociation, FetchError, MissingContentError, PersistenceError
from .identifiers import detect_platform
from .membership import BoardMembershipGuard, MembershipOutcome
from .post import Platform, PostDraft, coerce_platform, normalize_handle
from .run_log import RunLogger
from .transform import post_items_from_response, transform_post, transform_post_response, transform_profile
from .upsert import UpsertEngine

DUPLICATE_MESSAGE = "Post already saved to this board"
SAVED_MESSAGE = "Post saved to board"
FAILED_MESSAGE = "Failed to save post"


@dataclass(frozen=True)
class IngestResult:
    profile: ProfileRecord
    post: PostRecord
    post_created: bool


def ingest_draft(
    draft: PostDraft,
    board_id: str,
    *,
    engine: UpsertEngine,
    guard: BoardMembershipGuard,
) -> IngestResult:
    """
    Persist one draft and attach it to a board.

    Order is profile, then post (keyed by the normalized id), then membership.
    Raises DuplicateAssociation when the board already holds the post; the
    profile and post upserts have still been applied at that point.
    """
    profile = engine.upsert_profile(draft.owner)
    post, created = engine.upsert_post_tracked(draft, profile_id=profile.id)

    if guard.add_if_absent(board_id, post.id) is MembershipOutcome.ALREADY_EXISTS:
        raise DuplicateAssociation(board_id, post.id)

    return IngestResult(profile=profile, post=post, post_created=created)


@dataclass(frozen=True)
class SaveResult:
    success: bool
    already_saved: bool
    message: str
    post_id: str | None = None
    profile_id: str | None = None
    error: str | None = None


def save_draft_to_board(
    draft: PostDraft,
    board_id: str,
    *,
    engine: UpsertEngine,
    guard: BoardMembershipGuard,
) -> SaveResult:
    try:
        result = ingest_draft(draft, board_id, engine=engine, guard=guard)
    except DuplicateAssociation as e:
        return SaveResult(success=True, already_saved=True, message=DUPLICATE_MESSAGE, post_id=e.post_id)
    except PersistenceError as e:
        return SaveResult(success=False, already_saved=False, message=FAILED_MESSAGE, error=str(e))

    return SaveResult(
        success=True,
        already_saved=False,
        message=SAVED_MESSAGE,
        post_id=result.post.id,
        profile_id=result.profile.id,
    )


def save_post_to_board(
    url: str,
    board_id: str,
    *,
    fetcher: ContentFetcher,
    engine: UpsertEngine,
    guard: BoardMembershipGuard,
    logger: RunLogger | None = None,
) -> SaveResult:
    """
    Interactive single-post save.

    A post that is already on the board is reported as success with
    already_saved=True. Every other problem comes back as a failed SaveResult
    carrying the underlying message.
    """
    u = (url or "").strip()
    platform = detect_platform(u)
    if platform is None:
        return SaveResult(
            success=False,
            already_saved=False,
            message=FAILED_MESSAGE,
            error=f"Unrecognized post URL: {u or '<empty>'}",
        )

    fetched = fetcher.fetch_post(u)
    if not fetched.success:
        if logger is not None:
            logger.error("save_fetch_failed", url=u, platform=platform, error=fetched.error)
        return SaveResult(success=False, already_saved=False, message=FAILED_MESSAGE, error=fetched.error)

    try:
        draft = transform_post_response(platform, fetched.data, source_url=u)
    except MissingContentError as e:
        if logger is not None:
            logger.error("save_missing_content", url=u, platform=platform, error=str(e))
        return SaveResult(success=False, already_saved=False, message=FAILED_MESSAGE, error=str(e))

    result = save_draft_to_board(draft, board_id, engine=engine, guard=guard)
    if logger is not None:
        logger.info(
            "save_completed",
            url=u,
            platform=platform,
            success=result.success,
            already_saved=result.already_saved,
            post_id=result.post_id,
            error=result.error,
        )
    return result


@dataclass(frozen=True)
class ProfileSyncResult:
    profile_id: str
    handle: str
    platform: Platform
    new_posts: int
    updated_posts: int
    failed_posts: int


def sync_profile(
    handle: str,
    platform: Platform | str,
    *,
    fetcher: ContentFetcher,
    engine: UpsertEngine,
    count: int = 10,
    logger: RunLogger | None = None,
) -> ProfileSyncResult:
    """
    Refresh a creator's profile and upsert their latest posts.

    Posts are not attached to any board. A failed profile or post-list fetch
    raises FetchError; individual posts that cannot be transformed or stored
    are counted in failed_posts.
    """
    p = coerce_platform(platform)
    h = normalize_handle(handle)
    if not h:
        raise ValueError("handle must be non-empty")

    fetched_profile = fetcher.fetch_profile(h, p)
    if not fetched_profile.success:
        raise FetchError(f"Failed to fetch {p} profile @{h}: {fetched_profile.error}", platform=p)

    profile = engine.upsert_profile(transform_profile(p, fetched_profile.data))

    fetched_posts = fetcher.fetch_posts(profile.handle, p, count=count)
    if not fetched_posts.success:
        raise FetchError(f"Failed to fetch {p} posts for @{h}: {fetched_posts.error}", platform=p)

    new = updated = failed = 0
    for body in post_items_from_response(p, fetched_posts.data)[: max(0, int(count))]:
        try:
            draft = transform_post(p, body, owner_handle=profile.handle)
            _, created = engine.upsert_post_tracked(draft, profile_id=profile.id)
        except (MissingContentError, PersistenceError) as e:
            failed += 1
            if logger is not None:
                logger.warning("sync_post_failed", platform=p, handle=profile.handle, error=str(e))
            continue
        if created:
            new += 1
        else:
            updated += 1

    if logger is not None:
        logger.info(
            "sync_profile_completed",
            platform=p,
            handle=profile.handle,
            new_posts=new,
            updated_posts=updated,
            failed_posts=failed,
        )

    return ProfileSyncResult(
        profile_id=profile.id,
        handle=profile.handle,
        platform=p,
        new_posts=new,
        updated_posts=updated,
        failed_posts=failed,
    )
