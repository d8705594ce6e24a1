"""Retry utilities providing bounded exponential backoff semantics."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class RetryConfig:
    def __init__(self, *, attempts: int = 3, backoff_seconds: float = 1.0) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds

    def delay_for(self, attempt: int) -> float:
        """Backoff to wait after the given (1-based) failed attempt."""
        return self.backoff_seconds * (2 ** (attempt - 1))


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    is_retryable: Callable[[Exception], bool],
    retry_config: RetryConfig | None = None,
    operation: str = "operation",
) -> T:
    """Await ``func`` until it succeeds, fails permanently or runs out of attempts.

    Exceptions rejected by ``is_retryable`` propagate immediately; the last
    retryable exception propagates once every attempt has been used.
    """
    config = retry_config or RetryConfig()
    attempt = 0

    while True:
        attempt += 1
        try:
            return await func()
        except Exception as exc:
            if not is_retryable(exc) or attempt >= config.attempts:
                raise
            delay = config.delay_for(attempt)
            logger.warning(
                "%s failed (attempt %s/%s): %s; retrying in %.1fs",
                operation,
                attempt,
                config.attempts,
                exc,
                delay,
            )
            await asyncio.sleep(delay)


__all__ = ["RetryConfig", "retry_async"]
