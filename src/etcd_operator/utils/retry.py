"""Backoff and retry utilities for async operations."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 300.0
    exponential_base: float = 2.0
    jitter: bool = False
    retry_on: tuple[type[Exception], ...] = (Exception,)

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        delay = min(
            self.base_delay * (self.exponential_base ** attempt),
            self.max_delay,
        )
        if self.jitter:
            delay *= (0.5 + random.random() * 0.5)
        return delay


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, last_exception: Exception, attempts: int) -> None:
        self.last_exception = last_exception
        self.attempts = attempts
        super().__init__(f"Failed after {attempts} attempts. Last error: {last_exception}")


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: RetryConfig | None = None,
    **kwargs: Any,
) -> T:
    """Retry an async function with exponential backoff."""
    if config is None:
        config = RetryConfig()

    for attempt in range(config.max_attempts):
        try:
            return await func(*args, **kwargs)
        except config.retry_on as e:
            if attempt == config.max_attempts - 1:
                logger.error(
                    "All retry attempts exhausted",
                    function=getattr(func, "__name__", repr(func)),
                    attempts=attempt + 1,
                    error=str(e),
                )
                raise RetryError(e, attempt + 1) from e

            delay = config.delay_for(attempt)
            logger.warning(
                "Attempt failed, retrying",
                function=getattr(func, "__name__", repr(func)),
                attempt=attempt + 1,
                max_attempts=config.max_attempts,
                delay=delay,
                error=str(e),
            )
            await asyncio.sleep(delay)

    raise ValueError("max_attempts must be at least 1")


class ItemBackoff:
    """Per-key exponential backoff, reset when a key succeeds."""

    def __init__(self, config: RetryConfig | None = None) -> None:
        self.config = config or RetryConfig()
        self._failures: Dict[Hashable, int] = {}

    def next_delay(self, key: Hashable) -> float:
        attempt = self._failures.get(key, 0)
        self._failures[key] = attempt + 1
        return self.config.delay_for(attempt)

    def forget(self, key: Hashable) -> None:
        self._failures.pop(key, None)

    def failures(self, key: Hashable) -> int:
        return self._failures.get(key, 0)
