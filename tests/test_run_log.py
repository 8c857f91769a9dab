from __future__ import annotations

import io
import json
import tempfile
import unittest
from pathlib import Path

from board_ingest.run_log import RunLogger


def _records(path: Path) -> list[dict]:
    return [json.loads(ln) for ln in path.read_text(encoding="utf-8").splitlines() if ln.strip()]


class TestRunLogger(unittest.TestCase):
    def test_writes_jsonl_records(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "logs" / "run.log"
            with RunLogger.open(path, run_id="run-1") as log:
                log.info("batch_started", total=3)
                log.warning("item_fetch_failed", url=" https://www.instagram.com/p/A/ ", error="HTTP 404")

            records = _records(path)

        self.assertEqual([r["event"] for r in records], ["batch_started", "item_fetch_failed"])
        self.assertEqual(records[0]["level"], "INFO")
        self.assertEqual(records[0]["data"], {"total": 3})
        self.assertEqual(records[0]["run_id"], "run-1")
        self.assertEqual(records[0]["session_id"], records[1]["session_id"])
        self.assertEqual(records[1]["level"], "WARN")
        self.assertEqual(records[1]["url"], "https://www.instagram.com/p/A/")
        self.assertNotIn("url", records[0])

    def test_appends_unless_overwrite(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "run.log"
            with RunLogger.open(path) as log:
                log.info("first")
            with RunLogger.open(path) as log:
                log.info("second")
            self.assertEqual(len(_records(path)), 2)

            with RunLogger.open(path, overwrite=True) as log:
                log.info("third")
            self.assertEqual([r["event"] for r in _records(path)], ["third"])

    def test_exception_records_type_and_traceback(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "run.log"
            with RunLogger.open(path) as log:
                try:
                    raise RuntimeError("boom")
                except RuntimeError as e:
                    log.exception("item_save_failed", exc=e, index=2)

            (record,) = _records(path)

        self.assertEqual(record["level"], "ERROR")
        self.assertEqual(record["data"]["index"], 2)
        self.assertEqual(record["data"]["error"]["type"], "RuntimeError")
        self.assertEqual(record["data"]["error"]["message"], "boom")
        self.assertIn("Traceback", record["data"]["error"]["traceback"])

    def test_bound_logger_shares_targets_and_adds_context(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "run.log"
            with RunLogger.open(path) as log:
                board_log = log.bind(board_id="b1", skipped=None)
                board_log.info("batch_started", total=2)
                board_log.info("batch_completed", board_id="override")
                log.info("import_command_finished")

            records = _records(path)

        self.assertEqual(records[0]["data"], {"board_id": "b1", "total": 2})
        self.assertEqual(records[1]["data"], {"board_id": "override"})
        self.assertNotIn("data", records[2])
        self.assertEqual({r["session_id"] for r in records}, {log.session_id})

    def test_echo_without_file(self) -> None:
        buf = io.StringIO()
        log = RunLogger(None, echo=buf)
        log.info("item_succeeded", url="https://www.instagram.com/p/A/", index=0, extra={"x": 1})
        self.assertIsNone(log.run_id)

        self.assertEqual(buf.getvalue(), "[INFO] item_succeeded https://www.instagram.com/p/A/ index=0\n")


if __name__ == "__main__":
    unittest.main()
