from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """
    Backoff policy for content API calls and datastore writes.

    max_attempts counts the first call, so the default of 1 means a failure is
    reported on the spot and the batch moves on to the next URL. Raising it turns
    on exponential backoff (base, 2*base, 4*base ... capped at max_delay_seconds)
    with multiplicative jitter in [1-jitter_ratio, 1+jitter_ratio]. A server
    Retry-After hint replaces the computed delay when it is longer, up to
    retry_after_cap_seconds.
    """

    max_attempts: int = 1
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    jitter_ratio: float = 0.2
    retry_after_cap_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("retry delays must be >= 0")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        if not (0.0 <= self.jitter_ratio <= 1.0):
            raise ValueError("jitter_ratio must be between 0 and 1")
        if self.retry_after_cap_seconds < 0:
            raise ValueError("retry_after_cap_seconds must be >= 0")

    def delay_after(self, failed_attempt: int, retry_after: float | None = None) -> float:
        delay = self.base_delay_seconds * (2 ** max(0, failed_attempt - 1))
        delay = min(self.max_delay_seconds, delay)

        if retry_after is not None and retry_after >= 0:
            hint = float(retry_after)
            if self.retry_after_cap_seconds > 0:
                hint = min(hint, self.retry_after_cap_seconds)
            delay = max(delay, hint)

        if delay > 0 and self.jitter_ratio > 0:
            delay *= random.uniform(1.0 - self.jitter_ratio, 1.0 + self.jitter_ratio)
        return max(0.0, delay)


@dataclass(frozen=True)
class RetryEvent:
    operation: str
    failed_attempt: int
    max_attempts: int
    delay_seconds: float
    reason: str | None
    error_type: str
    error_message: str
    url: str | None


RetryDecision = tuple[bool, float | None, str | None]
IsRetryableFn = Callable[[BaseException], RetryDecision]
OnRetryFn = Callable[[RetryEvent], None]
SleepFn = Callable[[float], None]


def call_with_retries(
    fn: Callable[[], T],
    *,
    cfg: RetryConfig,
    is_retryable: IsRetryableFn,
    operation: str,
    on_retry: OnRetryFn | None = None,
    sleep_fn: SleepFn | None = None,
    url: str | None = None,
) -> T:
    """
    Run fn(), retrying failures that is_retryable() accepts.

    is_retryable returns (retry?, retry_after_seconds, reason). The last failure
    is re-raised unchanged once attempts are exhausted.
    """
    sleeper = sleep_fn or time.sleep
    op = (operation or "").strip() or "operation"

    attempt = 1
    while True:
        try:
            return fn()
        except Exception as exc:
            retryable, retry_after, reason = is_retryable(exc)
            if not retryable or attempt >= cfg.max_attempts:
                raise

            delay = cfg.delay_after(attempt, retry_after)
            if on_retry is not None:
                on_retry(
                    RetryEvent(
                        operation=op,
                        failed_attempt=attempt,
                        max_attempts=cfg.max_attempts,
                        delay_seconds=delay,
                        reason=reason,
                        error_type=type(exc).__name__,
                        error_message=(str(exc) or "").strip(),
                        url=url,
                    )
                )
            if delay > 0:
                sleeper(delay)
            attempt += 1
