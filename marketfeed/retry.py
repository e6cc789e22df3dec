from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from marketfeed.errors import is_rate_limit_error

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with linear backoff.

    ``max_attempts`` counts the first call. Between attempt ``n`` and ``n + 1``
    the policy waits ``backoff_base * n`` seconds. Errors rejected by
    ``is_retryable`` are re-raised immediately.
    """

    max_attempts: int = 3
    backoff_base: float = 2.0
    is_retryable: Callable[[BaseException], bool] = is_rate_limit_error

    def backoff(self, attempt: int) -> float:
        return self.backoff_base * attempt

    def run(
        self,
        fn: Callable[[], T],
        *,
        sleep: Callable[[float], None] = time.sleep,
        on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    ) -> T:
        attempt = 1
        while True:
            try:
                return fn()
            except Exception as exc:
                if attempt >= self.max_attempts or not self.is_retryable(exc):
                    raise
                delay = self.backoff(attempt)
                if on_retry is not None:
                    on_retry(attempt, exc, delay)
                sleep(delay)
                attempt += 1
