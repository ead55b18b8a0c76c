from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 5.0
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")

    def delay_for(self, attempt_index: int) -> float:
        """Seconds to wait after failed attempt number `attempt_index` (0-based)."""
        return min(self.initial_delay * self.backoff_multiplier ** attempt_index, self.max_delay)


async def run_with_retry(
    op: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    label: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_attempt: Optional[Callable[[int], None]] = None,
    on_failure: Optional[Callable[[int, Exception], None]] = None,
) -> T:
    """
    Run `op` until it succeeds or `policy.max_retries` retries are used up.

    - Waits `min(initial_delay * backoff_multiplier ** i, max_delay)` after the
      i-th failed attempt.
    - Each attempt and each failure is logged and reported to `on_attempt` /
      `on_failure`; only the final outcome is returned.
    - After `max_retries + 1` failed attempts the last error is re-raised.

    Only for side branches whose duplication is harmless (notification
    delivery). Never wrap a user-facing write with it.
    """
    policy = policy or RetryPolicy()
    total = policy.max_retries + 1
    attempt = 0

    while True:
        if on_attempt is not None:
            on_attempt(attempt)
        logger.info("%s: attempt %d/%d", label, attempt + 1, total)
        try:
            return await op()
        except Exception as exc:
            logger.warning("%s: attempt %d/%d failed: %s", label, attempt + 1, total, exc)
            if on_failure is not None:
                on_failure(attempt, exc)
            if attempt >= policy.max_retries:
                logger.error("%s: giving up after %d attempts", label, total)
                raise

        delay = policy.delay_for(attempt)
        logger.info("%s: retrying in %.1fs", label, delay)
        await sleep(delay)
        attempt += 1


__all__ = ["RetryPolicy", "run_with_retry"]
