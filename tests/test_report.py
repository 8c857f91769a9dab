from __future__ import annotations

import unittest

from board_ingest.batch import BatchSummary, ItemResult, OutcomeKind
from board_ingest.report import build_run_report, format_run_report, format_summary


def _summary(*outcomes: OutcomeKind, start_offset: int = 0) -> BatchSummary:
    results = tuple(
        ItemResult(
            index=start_offset + i,
            source=f"https://www.instagram.com/p/R{i}/",
            platform="instagram",
            outcome=o,
            error=None if o in (OutcomeKind.SUCCESS, OutcomeKind.DUPLICATE) else f"err {i}",
        )
        for i, o in enumerate(outcomes)
    )
    success = sum(1 for o in outcomes if o is OutcomeKind.SUCCESS)
    duplicate = sum(1 for o in outcomes if o is OutcomeKind.DUPLICATE)
    return BatchSummary(
        total=len(outcomes),
        success=success,
        duplicate=duplicate,
        error=len(outcomes) - success - duplicate,
        start_offset=start_offset,
        results=results,
    )


class TestRunReport(unittest.TestCase):
    def test_format_summary(self) -> None:
        summary = _summary(OutcomeKind.FETCH_ERROR, OutcomeKind.SUCCESS, OutcomeKind.DUPLICATE)
        self.assertEqual(
            format_summary(summary),
            "\n".join(
                [
                    "Import complete",
                    "  Success:      1",
                    "  Skipped:      1 (already in board)",
                    "  Errors:       1",
                    "  Total:        3",
                    "  Success rate: 66.7%",
                ]
            ),
        )

    def test_statuses(self) -> None:
        self.assertEqual(build_run_report(_summary())["status"], "empty")
        self.assertEqual(build_run_report(_summary(OutcomeKind.SUCCESS))["status"], "completed")
        self.assertEqual(build_run_report(_summary(OutcomeKind.SAVE_ERROR))["status"], "failed")
        self.assertEqual(
            build_run_report(_summary(OutcomeKind.DUPLICATE, OutcomeKind.FETCH_ERROR))["status"],
            "completed_with_errors",
        )

    def test_failed_items_and_recommendations(self) -> None:
        summary = _summary(
            OutcomeKind.SUCCESS,
            OutcomeKind.TRANSFORM_ERROR,
            OutcomeKind.FETCH_ERROR,
            start_offset=10,
        )
        report = build_run_report(summary)

        failed = report["details"]["failed_items"]
        self.assertEqual([f["index"] for f in failed], [11, 12])
        self.assertEqual(failed[0]["outcome"], "transform_error")
        self.assertEqual(report["details"]["transform_errors"], 1)

        recs = report["recommendations"]
        self.assertEqual(len(recs), 3)
        self.assertTrue(recs[0].startswith("Fetch errors"))
        self.assertTrue(recs[1].startswith("Missing-content errors"))
        self.assertEqual(recs[2], "Re-run failed items with --start 11 once fixed.")

        text = format_run_report(report)
        self.assertTrue(text.startswith("Processed 3 item(s): 1 saved, 0 already in board, 2 failed"))
        self.assertIn("Recommendations:\n- Fetch errors", text)

    def test_clean_run_has_no_recommendations(self) -> None:
        report = build_run_report(_summary(OutcomeKind.SUCCESS, OutcomeKind.DUPLICATE))
        self.assertEqual(report["recommendations"], [])
        self.assertNotIn("failed_items", report["details"])
        self.assertNotIn("Recommendations", format_run_report(report))


if __name__ == "__main__":
    unittest.main()
