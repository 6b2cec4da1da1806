"""Retry policy for retryable transport failures.

Only a TransportError flagged ``retryable`` is ever retried. The budget
counts consecutive failed attempts; callers reset it whenever the server
makes progress (delivers a response), so a long stream that hiccups now and
then is not charged for old failures.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from dfconnect.domain.errors import TransportError
from dfconnect.infrastructure.config import RetryConfig
from dfconnect.infrastructure.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, TransportError) and error.retryable


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff.

    Attributes:
        max_attempts: Consecutive failed attempts allowed before giving up;
            an always-failing call is attempted exactly this many times.
        initial_backoff: Delay before the first retry, in seconds.
        max_backoff: Upper bound of any single delay.
        multiplier: Growth factor between consecutive delays.
    """

    max_attempts: int = 5
    initial_backoff: float = 0.05
    max_backoff: float = 5.0
    multiplier: float = 4.0
    sleep: Sleep = asyncio.sleep

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")

    @classmethod
    def from_config(cls, config: RetryConfig, sleep: Sleep = asyncio.sleep) -> RetryPolicy:
        return cls(
            max_attempts=config.max_attempts,
            initial_backoff=config.initial_backoff_seconds,
            max_backoff=config.max_backoff_seconds,
            multiplier=config.backoff_multiplier,
            sleep=sleep,
        )

    def backoff(self, failures: int) -> float:
        """Delay after the ``failures``-th consecutive failure (1-based)."""
        return min(self.initial_backoff * self.multiplier ** (failures - 1), self.max_backoff)

    def should_retry(self, error: BaseException, failures: int) -> bool:
        return is_retryable(error) and failures < self.max_attempts

    async def wait(self, failures: int) -> None:
        await self.sleep(self.backoff(failures))

    async def call(self, operation: Callable[[], Awaitable[T]], rpc: str = "call") -> T:
        """Run a unary operation, retrying retryable transport failures.

        Raises:
            TransportError: The last failure once the budget is exhausted, or
                the first non-retryable one.
        """
        failures = 0
        while True:
            try:
                return await operation()
            except TransportError as e:
                failures += 1
                if not self.should_retry(e, failures):
                    raise
                logger.info("retrying_rpc", rpc=rpc, attempt=failures, code=e.code)
                await self.wait(failures)
