from __future__ import annotations

import unittest

from board_ingest.identifiers import (
    detect_platform,
    is_normalized,
    looks_like_shortcode,
    normalize_post_id,
    shortcode_from_url,
    tiktok_video_id_from_url,
)


class TestNormalizePostId(unittest.TestCase):
    def test_composite_and_shortcode_resolve_to_same_key(self) -> None:
        url = "https://www.instagram.com/p/ABC123/"
        composite = normalize_post_id("instagram", "17841400000000_123456789", url)
        direct = normalize_post_id("instagram", "ABC123", url)

        self.assertEqual(composite, "ABC123")
        self.assertEqual(direct, "ABC123")

    def test_shortcode_is_kept_even_when_url_differs(self) -> None:
        self.assertEqual(
            normalize_post_id("instagram", "Short1", "https://www.instagram.com/p/Other/"),
            "Short1",
        )

    def test_long_id_without_p_segment_falls_back_to_raw(self) -> None:
        raw = "17841400000000_123456789"
        key = normalize_post_id("instagram", raw, "https://www.instagram.com/reel/XYZ/")
        self.assertEqual(key, raw)
        self.assertFalse(is_normalized("instagram", raw, key))

    def test_tiktok_ids_pass_through(self) -> None:
        self.assertEqual(
            normalize_post_id("tiktok", "7300000000000000001", "https://www.tiktok.com/@a/video/1"),
            "7300000000000000001",
        )
        self.assertTrue(is_normalized("tiktok", "123_456", "123_456"))

    def test_shortcode_heuristic(self) -> None:
        self.assertTrue(looks_like_shortcode("CxYz_-12"))
        self.assertFalse(looks_like_shortcode("3123_456"))
        self.assertFalse(looks_like_shortcode("x" * 20))


class TestUrls(unittest.TestCase):
    def test_detect_platform(self) -> None:
        cases = {
            "https://www.instagram.com/p/ABC123/": "instagram",
            "https://instagram.com/reel/ABC123/?igsh=1": "instagram",
            "https://www.instagram.com/someuser/reels/ABC123/": "instagram",
            "https://www.tiktok.com/@user.name/video/7300000000000000001": "tiktok",
            "https://www.tiktok.com/@user/photo/7300000000000000002": "tiktok",
            "https://www.instagram.com/someuser/": None,
            "https://example.com/p/ABC123/": None,
            "": None,
        }
        for url, expected in cases.items():
            with self.subTest(url=url):
                self.assertEqual(detect_platform(url), expected)

    def test_extract_codes(self) -> None:
        self.assertEqual(shortcode_from_url("https://www.instagram.com/tv/Tv_1/"), "Tv_1")
        self.assertIsNone(shortcode_from_url("https://www.tiktok.com/@u/video/1"))
        self.assertEqual(tiktok_video_id_from_url("https://www.tiktok.com/@u/video/42?x=1"), "42")


if __name__ == "__main__":
    unittest.main()
