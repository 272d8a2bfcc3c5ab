"""Bounded retry with exponential backoff for store conflicts.

Used where the store resolves a race by rejecting one writer (for example a
concurrent role get-or-create): the losing caller re-runs its lookup, which
is expected to find the row the winner inserted.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from deploy_engine.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryConfig(BaseModel):
    """Tuneable parameters for conflict retries."""

    max_retries: int = Field(
        default=3,
        ge=0,
        description="Maximum number of retry attempts before re-raising.",
    )
    base_delay: float = Field(
        default=0.05,
        ge=0.0,
        description="Base delay in seconds for exponential backoff.",
    )
    max_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Upper bound on delay in seconds.",
    )
    jitter: bool = Field(
        default=True,
        description="When enabled, randomise the delay within [0.5x, 1.5x].",
    )

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryConfig:
        return cls(
            max_retries=settings.role_create_retries,
            base_delay=settings.retry_backoff_base,
            max_delay=settings.retry_max_delay,
        )


def compute_delay(attempt: int, config: RetryConfig) -> float:
    """Return the backoff delay before retry number *attempt* (0-based)."""
    delay: float = min(config.base_delay * (2**attempt), config.max_delay)
    if config.jitter:
        delay *= random.uniform(0.5, 1.5)  # noqa: S311
    return delay


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig,
    retry_on: tuple[type[Exception], ...],
) -> T:
    """Await ``fn()`` until it succeeds or *config.max_retries* is exhausted.

    Only exceptions listed in *retry_on* trigger another attempt; anything
    else propagates immediately.  After the final attempt the last
    exception is re-raised unchanged.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except retry_on as exc:
            if attempt >= config.max_retries:
                raise
            delay = compute_delay(attempt, config)
            attempt += 1
            logger.warning(
                "Retry %d/%d after %.2fs: %s",
                attempt,
                config.max_retries,
                delay,
                exc,
            )
            await asyncio.sleep(delay)
