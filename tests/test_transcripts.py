from __future__ import annotations

import unittest
from typing import Any

from board_ingest.content_client import FetchResult
from board_ingest.ingest import ingest_draft
from board_ingest.membership import BoardMembershipGuard
from board_ingest.post import PostDraft, ProfileDraft
from board_ingest.storage import SQLiteDatastore
from board_ingest.transcripts import backfill_transcripts, clean_transcript_text, transcript_from_response
from board_ingest.upsert import UpsertEngine

_VTT = """WEBVTT

1
00:00:00.000 --> 00:00:02.000
First line.

2
00:00:02.000 --> 00:00:04.000
Second   line.
"""

_SRT = """1
00:00:00,000 --> 00:00:02,000
Hello there.

2
00:00:02,000 --> 00:00:04,000
General Kenobi.
"""


class _TranscriptFetcher:
    def __init__(self, responses: dict[str, FetchResult]) -> None:
        self.responses = responses
        self.calls: list[tuple[str, str]] = []

    def fetch_transcript(self, url: str, *, language: str = "en") -> FetchResult:
        self.calls.append((url, language))
        return self.responses[url]


def _add(store: SQLiteDatastore, platform: Any, post_id: str, url: str, board: str = "board-1") -> str:
    draft = PostDraft(
        platform=platform,
        platform_post_id=post_id,
        embed_url=url,
        owner=ProfileDraft(handle="creator", platform=platform),
        original_url=url,
    )
    result = ingest_draft(draft, board, engine=UpsertEngine(store), guard=BoardMembershipGuard(store))
    return result.post.id


class TestCleanTranscript(unittest.TestCase):
    def test_vtt(self) -> None:
        self.assertEqual(clean_transcript_text(_VTT), "First line. Second line.")

    def test_srt(self) -> None:
        self.assertEqual(clean_transcript_text(_SRT), "Hello there. General Kenobi.")

    def test_plain_and_empty(self) -> None:
        self.assertEqual(clean_transcript_text("  just words \n more "), "just words more")
        self.assertEqual(clean_transcript_text(None), "")
        self.assertEqual(clean_transcript_text("WEBVTT\n\n"), "")


class TestTranscriptFromResponse(unittest.TestCase):
    def test_instagram_joins_entries(self) -> None:
        data = {"transcripts": [{"transcript": "one"}, {"transcript": ""}, {"transcript": "two"}]}
        self.assertEqual(transcript_from_response("instagram", data), "one\ntwo")

    def test_plain_transcript_key(self) -> None:
        self.assertEqual(transcript_from_response("tiktok", {"transcript": "hi"}), "hi")
        self.assertIsNone(transcript_from_response("tiktok", {"transcript": "  "}))
        self.assertIsNone(transcript_from_response("instagram", []))


class TestBackfillTranscripts(unittest.TestCase):
    def test_counts_and_updates(self) -> None:
        ig_new = "https://www.instagram.com/p/New1/"
        ig_done = "https://www.instagram.com/p/Done1/"
        ig_blank = "https://www.instagram.com/p/Blank1/"
        ig_fail = "https://www.instagram.com/p/Fail1/"
        tt = "https://www.tiktok.com/@creator/video/1"

        with SQLiteDatastore.open(":memory:") as store:
            new_id = _add(store, "instagram", "New1", ig_new)
            done_id = _add(store, "instagram", "Done1", ig_done)
            _add(store, "instagram", "Blank1", ig_blank)
            _add(store, "instagram", "Fail1", ig_fail)
            _add(store, "tiktok", "1", tt)
            _add(store, "instagram", "Other1", "https://www.instagram.com/p/Other1/", board="board-2")
            store.update_post_transcript(done_id, "already here")

            fetcher = _TranscriptFetcher(
                {
                    ig_new: FetchResult.ok({"transcripts": [{"transcript": _VTT}]}),
                    ig_blank: FetchResult.ok({"transcripts": [{"transcript": "WEBVTT\n"}]}),
                    ig_fail: FetchResult.fail("HTTP 404"),
                }
            )
            sleeps: list[float] = []

            result = backfill_transcripts(
                "board-1",
                store=store,
                fetcher=fetcher,
                platforms=("instagram",),
                language="es",
                delay_ms=1500,
                sleep_fn=sleeps.append,
            )

            self.assertEqual(
                result.as_dict(),
                {"total": 5, "updated": 1, "already_had": 1, "skipped_platform": 1, "failed": 2},
            )
            self.assertEqual([u for u, _ in fetcher.calls], [ig_new, ig_blank, ig_fail])
            self.assertTrue(all(lang == "es" for _, lang in fetcher.calls))
            self.assertEqual(sleeps, [1.5, 1.5])

            post = store.get_post(new_id)
            assert post is not None
            self.assertEqual(post.transcript, "First line. Second line.")

            done = store.get_post(done_id)
            assert done is not None
            self.assertEqual(done.transcript, "already here")

    def test_empty_board(self) -> None:
        with SQLiteDatastore.open(":memory:") as store:
            result = backfill_transcripts("nothing", store=store, fetcher=_TranscriptFetcher({}))
        self.assertEqual(result.total, 0)


if __name__ == "__main__":
    unittest.main()
