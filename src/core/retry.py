"""Reusable retry-with-backoff policy.

Used for store writes (transient connectivity) and for provider rate-limit
responses. Each call site builds its own policy; nothing here knows about
providers or SQL.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from .log import get_logger

T = TypeVar("T")


def exponential_backoff(base_delay: float, attempt: int) -> float:
    """Delay after failed attempt `attempt` (1-based): base, 2*base, 4*base, ..."""
    return base_delay * (2 ** (attempt - 1))


def constant_backoff(base_delay: float, attempt: int) -> float:
    return base_delay


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    backoff: Callable[[float, int], float] = exponential_backoff
    retry_on: tuple[type[BaseException], ...] = (Exception,)
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def delay_for(self, attempt: int) -> float:
        return self.backoff(self.base_delay, attempt)

    async def run(self, operation: Callable[[], Awaitable[T]], *, description: str = "operation") -> T:
        """Await `operation()` until it succeeds or attempts run out.

        Exceptions outside `retry_on` propagate immediately. After the final
        attempt the last exception is re-raised unchanged.
        """
        logger = get_logger(__name__)
        attempt = 1
        while True:
            try:
                return await operation()
            except self.retry_on as exc:
                if attempt >= self.max_attempts:
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    f"[Retry {attempt}/{self.max_attempts}] {description} failed ({exc}); waiting {delay:.2f}s"
                )
                await self.sleep(delay)
                attempt += 1
