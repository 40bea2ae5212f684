"""Bounded retry with exponential backoff for store operations."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from trivia_sync.constants.quiz_constants import (
    RETRY_ATTEMPTS,
    RETRY_BASE_DELAY_MS,
    RETRY_MAX_DELAY_MS,
)
from trivia_sync.core.errors import TransientIOError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delays_ms(attempts: int, base_delay_ms: int, max_delay_ms: int) -> list[int]:
    """Delays slept between consecutive attempts (one fewer than ``attempts``)."""
    return [min(base_delay_ms * (2**n), max_delay_ms) for n in range(max(0, attempts - 1))]


async def retry_transient(
    operation: Callable[[], Awaitable[T]],
    *,
    description: str,
    attempts: int = RETRY_ATTEMPTS,
    base_delay_ms: int = RETRY_BASE_DELAY_MS,
    max_delay_ms: int = RETRY_MAX_DELAY_MS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds, retrying only ``TransientIOError``.

    The last error is re-raised once ``attempts`` are used up.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    delays = backoff_delays_ms(attempts, base_delay_ms, max_delay_ms)
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except TransientIOError as exc:
            if attempt >= attempts:
                logger.error("%s failed after %d attempts: %s", description, attempts, exc)
                raise
            delay_ms = delays[attempt - 1]
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %d ms: %s",
                description,
                attempt,
                attempts,
                delay_ms,
                exc,
            )
            await sleep(delay_ms / 1000)
    raise TransientIOError(f"{description} was not attempted")
