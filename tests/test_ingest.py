from __future__ import annotations

import unittest
from typing import Any

from board_ingest.content_client import FetchResult
from board_ingest.errors import FetchError
from board_ingest.ingest import DUPLICATE_MESSAGE, FAILED_MESSAGE, save_post_to_board, sync_profile
from board_ingest.membership import BoardMembershipGuard
from board_ingest.offline import OfflineContentFetcher
from board_ingest.storage import SQLiteDatastore
from board_ingest.upsert import UpsertEngine


def _collaborators(store: SQLiteDatastore) -> dict[str, Any]:
    return {"engine": UpsertEngine(store), "guard": BoardMembershipGuard(store)}


class _ProfileDownFetcher(OfflineContentFetcher):
    def fetch_profile(self, handle: str, platform: Any) -> FetchResult:
        return FetchResult.fail("HTTP 503")


class _PostsWithBadItemFetcher(OfflineContentFetcher):
    def fetch_posts(self, handle: str, platform: Any, *, count: int = 10) -> FetchResult:
        good = super().fetch_posts(handle, platform, count=2).data["items"]
        return FetchResult.ok({"items": good + [{"caption": {"text": "no id"}}]})


class TestSavePostToBoard(unittest.TestCase):
    def test_save_then_duplicate(self) -> None:
        url = "https://www.instagram.com/p/Good1/"
        with SQLiteDatastore.open(":memory:") as store:
            fetcher = OfflineContentFetcher()

            first = save_post_to_board(url, "board-1", fetcher=fetcher, **_collaborators(store))
            self.assertTrue(first.success)
            self.assertFalse(first.already_saved)
            self.assertIsNotNone(first.post_id)
            self.assertIsNotNone(first.profile_id)

            second = save_post_to_board(url, "board-1", fetcher=fetcher, **_collaborators(store))
            self.assertTrue(second.success)
            self.assertTrue(second.already_saved)
            self.assertEqual(second.message, DUPLICATE_MESSAGE)
            self.assertEqual(second.post_id, first.post_id)
            self.assertEqual(store.board_post_count("board-1"), 1)

    def test_reel_and_post_urls_dedupe_to_one_post(self) -> None:
        with SQLiteDatastore.open(":memory:") as store:
            fetcher = OfflineContentFetcher()
            save_post_to_board(
                "https://www.instagram.com/reel/Same1/", "board-1", fetcher=fetcher, **_collaborators(store)
            )
            again = save_post_to_board(
                "https://www.instagram.com/p/Same1/", "board-1", fetcher=fetcher, **_collaborators(store)
            )
            self.assertTrue(again.already_saved)
            self.assertEqual(store.post_count(), 1)

    def test_failures_are_reported_not_raised(self) -> None:
        with SQLiteDatastore.open(":memory:") as store:
            fetcher = OfflineContentFetcher()

            cases = {
                "https://www.instagram.com/p/fail1/": "offline fetch failure",
                "https://www.instagram.com/p/empty1/": "lacks owner handle and post identifier",
                "https://example.com/post/1": "Unrecognized post URL",
            }
            for url, fragment in cases.items():
                with self.subTest(url=url):
                    result = save_post_to_board(url, "board-1", fetcher=fetcher, **_collaborators(store))
                    self.assertFalse(result.success)
                    self.assertEqual(result.message, FAILED_MESSAGE)
                    self.assertIn(fragment, result.error or "")

            self.assertEqual(store.post_count(), 0)


class TestSyncProfile(unittest.TestCase):
    def test_first_sync_creates_then_second_updates(self) -> None:
        with SQLiteDatastore.open(":memory:") as store:
            engine = UpsertEngine(store)
            fetcher = OfflineContentFetcher()

            first = sync_profile("@Creator", "instagram", fetcher=fetcher, engine=engine, count=3)
            self.assertEqual(first.handle, "creator")
            self.assertEqual((first.new_posts, first.updated_posts, first.failed_posts), (3, 0, 0))

            second = sync_profile("creator", "instagram", fetcher=fetcher, engine=engine, count=3)
            self.assertEqual(second.profile_id, first.profile_id)
            self.assertEqual((second.new_posts, second.updated_posts), (0, 3))

            profile = store.find_profile("creator", "instagram")
            assert profile is not None
            self.assertEqual(profile.followers_count, 4200)
            self.assertEqual(profile.bio, "Offline profile for smoke runs.")
            self.assertEqual(store.post_count(), 3)
            self.assertEqual(store.board_post_count(), 0)

    def test_tiktok_sync(self) -> None:
        with SQLiteDatastore.open(":memory:") as store:
            result = sync_profile(
                "dancer",
                "tiktok",
                fetcher=OfflineContentFetcher(),
                engine=UpsertEngine(store),
                count=2,
            )
            self.assertEqual(result.new_posts, 2)
            post = store.find_post("tiktok", "7000000000000000000")
            assert post is not None
            self.assertTrue(post.is_video)
            self.assertEqual(post.embed_url, "https://www.tiktok.com/@dancer/video/7000000000000000000")

    def test_profile_fetch_failure_raises(self) -> None:
        with SQLiteDatastore.open(":memory:") as store:
            with self.assertRaises(FetchError):
                sync_profile("x", "instagram", fetcher=_ProfileDownFetcher(), engine=UpsertEngine(store))

    def test_bad_items_are_counted(self) -> None:
        with SQLiteDatastore.open(":memory:") as store:
            result = sync_profile(
                "creator",
                "instagram",
                fetcher=_PostsWithBadItemFetcher(),
                engine=UpsertEngine(store),
                count=5,
            )
            # The bad item still gets the profile handle as owner, but has no id.
            self.assertEqual((result.new_posts, result.failed_posts), (2, 1))


if __name__ == "__main__":
    unittest.main()
