from __future__ import annotations

import unittest

from board_ingest.offline import OfflineContentFetcher
from board_ingest.transform import transform_post_response


class TestOfflineContentFetcher(unittest.TestCase):
    def test_instagram_prefixes_simulate_failures(self) -> None:
        fetcher = OfflineContentFetcher()

        failed = fetcher.fetch_post("https://www.instagram.com/p/failX/")
        self.assertFalse(failed.success)

        empty = fetcher.fetch_post("https://www.instagram.com/reel/emptyY/")
        self.assertTrue(empty.success)
        self.assertEqual(empty.data, {"data": {"xdt_shortcode_media": {"__typename": "XDTGraphImage"}}})

        ok = fetcher.fetch_post("https://www.instagram.com/p/Good1/")
        draft = transform_post_response("instagram", ok.data)
        self.assertEqual((draft.platform_post_id, draft.owner.handle), ("Good1", "offline_creator"))

    def test_tiktok_urls_always_yield_a_post(self) -> None:
        url = "https://www.tiktok.com/@someone/video/7300000000000000009"
        first = OfflineContentFetcher(handle="maker").fetch_post(url)
        second = OfflineContentFetcher(handle="maker").fetch_post(url)

        self.assertTrue(first.success)
        self.assertEqual(first.data, second.data)
        draft = transform_post_response("tiktok", first.data)
        self.assertEqual(draft.platform_post_id, "7300000000000000009")
        self.assertEqual(draft.owner.handle, "maker")

    def test_unrecognized_url_fails(self) -> None:
        self.assertFalse(OfflineContentFetcher().fetch_post("https://example.com/p/failX/").success)


if __name__ == "__main__":
    unittest.main()
