from __future__ import annotations

import sqlite3
import unittest

import httpx

from board_ingest.errors import PersistenceError
from board_ingest.fetch_retry import (
    is_retryable_apify_exception,
    is_retryable_http_exception,
    is_retryable_persistence_exception,
)
from board_ingest.retry import RetryConfig, RetryEvent, call_with_retries


def _status_error(code: int, headers: dict[str, str] | None = None) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://api.test/v1/instagram/post")
    response = httpx.Response(code, headers=headers, request=request)
    return httpx.HTTPStatusError(f"HTTP {code}", request=request, response=response)


class TestRetryConfig(unittest.TestCase):
    def test_defaults_disable_retries(self) -> None:
        calls: list[int] = []

        def _fail() -> None:
            calls.append(1)
            raise httpx.ConnectError("down")

        self.assertEqual(RetryConfig().max_attempts, 1)
        with self.assertRaises(httpx.ConnectError):
            call_with_retries(
                _fail,
                cfg=RetryConfig(),
                is_retryable=is_retryable_http_exception,
                operation="fetch",
                sleep_fn=lambda _s: self.fail("slept"),
            )
        self.assertEqual(calls, [1])

    def test_validation(self) -> None:
        with self.assertRaises(ValueError):
            RetryConfig(max_attempts=0)
        with self.assertRaises(ValueError):
            RetryConfig(base_delay_seconds=5.0, max_delay_seconds=1.0)
        with self.assertRaises(ValueError):
            RetryConfig(jitter_ratio=1.5)

    def test_backoff_is_exponential_and_capped(self) -> None:
        cfg = RetryConfig(max_attempts=5, base_delay_seconds=1.0, max_delay_seconds=3.0, jitter_ratio=0.0)
        self.assertEqual([cfg.delay_after(n) for n in (1, 2, 3)], [1.0, 2.0, 3.0])

    def test_retry_after_hint_wins_up_to_cap(self) -> None:
        cfg = RetryConfig(
            max_attempts=3,
            base_delay_seconds=1.0,
            max_delay_seconds=2.0,
            jitter_ratio=0.0,
            retry_after_cap_seconds=10.0,
        )
        self.assertEqual(cfg.delay_after(1, retry_after=5.0), 5.0)
        self.assertEqual(cfg.delay_after(1, retry_after=120.0), 10.0)
        self.assertEqual(cfg.delay_after(1, retry_after=0.5), 1.0)

    def test_jitter_stays_in_range(self) -> None:
        cfg = RetryConfig(max_attempts=2, base_delay_seconds=1.0, max_delay_seconds=1.0, jitter_ratio=0.2)
        for _ in range(50):
            d = cfg.delay_after(1)
            self.assertGreaterEqual(d, 0.8)
            self.assertLessEqual(d, 1.2)


class TestCallWithRetries(unittest.TestCase):
    def test_retries_until_success(self) -> None:
        attempts: list[int] = []
        events: list[RetryEvent] = []
        sleeps: list[float] = []

        def flaky() -> str:
            attempts.append(1)
            if len(attempts) < 3:
                raise httpx.ConnectError("refused")
            return "ok"

        out = call_with_retries(
            flaky,
            cfg=RetryConfig(max_attempts=3, base_delay_seconds=0.1, max_delay_seconds=1.0, jitter_ratio=0.0),
            is_retryable=is_retryable_http_exception,
            operation="test.op",
            on_retry=events.append,
            sleep_fn=sleeps.append,
            url="https://www.instagram.com/p/A/",
        )

        self.assertEqual(out, "ok")
        self.assertEqual(len(attempts), 3)
        self.assertEqual(sleeps, [0.1, 0.2])
        self.assertEqual([e.failed_attempt for e in events], [1, 2])
        self.assertEqual(events[0].reason, "network_error")
        self.assertEqual(events[0].error_type, "ConnectError")
        self.assertEqual(events[0].url, "https://www.instagram.com/p/A/")

    def test_non_retryable_raises_immediately(self) -> None:
        calls: list[int] = []

        def bad() -> None:
            calls.append(1)
            raise _status_error(404)

        with self.assertRaises(httpx.HTTPStatusError):
            call_with_retries(
                bad,
                cfg=RetryConfig(max_attempts=5, base_delay_seconds=0.0, max_delay_seconds=0.0),
                is_retryable=is_retryable_http_exception,
                operation="test.op",
                sleep_fn=lambda _: None,
            )
        self.assertEqual(len(calls), 1)

    def test_last_error_is_reraised_when_exhausted(self) -> None:
        def always() -> None:
            raise _status_error(503)

        with self.assertRaises(httpx.HTTPStatusError) as ctx:
            call_with_retries(
                always,
                cfg=RetryConfig(max_attempts=2, base_delay_seconds=0.0, max_delay_seconds=0.0),
                is_retryable=is_retryable_http_exception,
                operation="test.op",
            )
        self.assertEqual(ctx.exception.response.status_code, 503)


class TestClassifiers(unittest.TestCase):
    def test_http(self) -> None:
        request = httpx.Request("GET", "https://api.test/")
        self.assertEqual(is_retryable_http_exception(httpx.ReadTimeout("t", request=request)), (True, None, "timeout"))
        self.assertEqual(is_retryable_http_exception(httpx.ConnectError("c")), (True, None, "network_error"))
        self.assertEqual(is_retryable_http_exception(_status_error(429, {"Retry-After": "3"})), (True, 3.0, "http_429"))
        self.assertEqual(is_retryable_http_exception(_status_error(502)), (True, None, "http_502"))
        self.assertEqual(is_retryable_http_exception(_status_error(404)), (False, None, "http_404"))
        self.assertEqual(is_retryable_http_exception(ValueError("x")), (False, None, None))

    def test_apify(self) -> None:
        self.assertTrue(is_retryable_apify_exception(ConnectionError("x"))[0])
        self.assertTrue(is_retryable_apify_exception(TimeoutError("x"))[0])
        self.assertTrue(is_retryable_apify_exception(httpx.ConnectError("refused"))[0])
        self.assertFalse(is_retryable_apify_exception(ValueError("x"))[0])

    def test_persistence(self) -> None:
        try:
            raise sqlite3.OperationalError("database is locked")
        except sqlite3.OperationalError as e:
            busy = PersistenceError("write failed")
            busy.__cause__ = e

        self.assertEqual(is_retryable_persistence_exception(busy), (True, None, "database_busy"))
        self.assertFalse(is_retryable_persistence_exception(PersistenceError("constraint"))[0])

        integrity = PersistenceError("fk")
        integrity.__cause__ = sqlite3.IntegrityError("FOREIGN KEY constraint failed")
        self.assertFalse(is_retryable_persistence_exception(integrity)[0])


if __name__ == "__main__":
    unittest.main()
