from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from ..config import RetryConfig


T = TypeVar("T")

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, retry: RetryConfig) -> float:
    """Delay in seconds to wait after failed attempt number ``attempt`` (1-based)."""
    if attempt < 1:
        raise ValueError("attempt is 1-based")
    delay_ms = retry.initial_delay_ms * retry.backoff_multiplier ** (attempt - 1)
    return delay_ms / 1000.0


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    retry: RetryConfig,
    *,
    label: str = "operation",
    sleep: Callable[[float], Awaitable[object]] | None = None,
) -> tuple[T, int]:
    """Run ``operation`` up to ``max_retries + 1`` times.

    Returns the result and the number of attempts used. The last exception is
    re-raised unchanged once the attempts are exhausted.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation(), attempt
        except Exception as exc:
            if attempt > retry.max_retries:
                raise
            delay = backoff_delay(attempt, retry)
            logger.warning(
                "%s failed (attempt %s/%s): %s; retrying in %.2fs",
                label,
                attempt,
                retry.max_retries + 1,
                exc,
                delay,
            )
            await (sleep or asyncio.sleep)(delay)
