"""Bounded exponential-backoff retry for calls to remote dependencies."""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from motopay.common.logging import logger


T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry only the exception types listed in `retry_on`.

    Attempt `n` (1-based) that fails is followed by a sleep of
    `base_delay * multiplier ** (n - 1)` seconds, so the defaults give 1s, 2s.
    Anything not listed in `retry_on` propagates on the first failure.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    retry_on: tuple[type[BaseException], ...] = (Exception,)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.multiplier < 1:
            raise ValueError("base_delay must be >= 0 and multiplier >= 1")

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * self.multiplier ** (attempt - 1)

    def call(
        self,
        fn: Callable[..., T],
        *args,
        operation: str = "call",
        on_retry: Callable[[int, BaseException], None] | None = None,
        **kwargs,
    ) -> T:
        """Run `fn`, retrying retryable failures until attempts are exhausted.

        The last retryable exception is re-raised unchanged once the budget is
        spent.
        """

        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn(*args, **kwargs)
            except self.retry_on as exc:
                if attempt == self.max_attempts:
                    logger.error(
                        "retry_exhausted operation=%s attempts=%s error=%s", operation, attempt, exc
                    )
                    raise
                backoff_seconds = self.delay_for(attempt)
                logger.warning(
                    "retrying operation=%s attempt=%s backoff_s=%s error=%s",
                    operation,
                    attempt,
                    backoff_seconds,
                    exc,
                )
                if on_retry is not None:
                    on_retry(attempt, exc)
                self.sleep(backoff_seconds)
        raise AssertionError("unreachable")
