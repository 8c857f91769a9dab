from __future__ import annotations

import unittest

from board_ingest.datastore import BoardPostRecord
from board_ingest.membership import BoardMembershipGuard, MembershipOutcome
from board_ingest.storage import SQLiteDatastore


def _seed_post(store: SQLiteDatastore) -> str:
    profile = store.upsert_profile({"handle": "creator", "platform": "instagram"})
    post = store.upsert_post(
        {
            "profile_id": profile.id,
            "platform": "instagram",
            "platform_post_id": "ABC123",
            "embed_url": "https://www.instagram.com/p/ABC123/",
        }
    )
    return post.id


class _BlindStore(SQLiteDatastore):
    """Never sees an existing association, as when another writer inserts between lookup and insert."""

    def find_board_post(self, board_id: str, post_id: str) -> BoardPostRecord | None:
        return None


class TestBoardMembershipGuard(unittest.TestCase):
    def test_second_add_reports_already_exists(self) -> None:
        with SQLiteDatastore.open(":memory:") as store:
            post_id = _seed_post(store)
            guard = BoardMembershipGuard(store)

            self.assertIs(guard.add_if_absent("board-1", post_id), MembershipOutcome.ADDED)
            self.assertIs(guard.add_if_absent("board-1", post_id), MembershipOutcome.ALREADY_EXISTS)
            self.assertEqual(store.board_post_count("board-1"), 1)

    def test_same_post_can_join_different_boards(self) -> None:
        with SQLiteDatastore.open(":memory:") as store:
            post_id = _seed_post(store)
            guard = BoardMembershipGuard(store)

            self.assertIs(guard.add_if_absent("board-1", post_id), MembershipOutcome.ADDED)
            self.assertIs(guard.add_if_absent("board-2", post_id), MembershipOutcome.ADDED)

    def test_lost_insert_race_maps_to_already_exists(self) -> None:
        base = SQLiteDatastore.open(":memory:")
        store = _BlindStore(base.conn)
        try:
            post_id = _seed_post(store)
            guard = BoardMembershipGuard(store)

            self.assertIs(guard.add_if_absent("board-1", post_id), MembershipOutcome.ADDED)
            self.assertIs(guard.add_if_absent("board-1", post_id), MembershipOutcome.ALREADY_EXISTS)
            self.assertEqual(store.board_post_count("board-1"), 1)
        finally:
            store.close()

    def test_blank_ids_are_rejected(self) -> None:
        with SQLiteDatastore.open(":memory:") as store:
            guard = BoardMembershipGuard(store)
            with self.assertRaises(ValueError):
                guard.add_if_absent(" ", "post")


if __name__ == "__main__":
    unittest.main()
