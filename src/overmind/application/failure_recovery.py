"""Retry policy and exponential backoff for provider calls."""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from overmind.infrastructure.config import WorkerConfig
from overmind.infrastructure.exceptions import ProviderError
from overmind.infrastructure.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Retry policy configuration."""

    max_retries: int = 3
    initial_backoff_seconds: float = 2.0
    max_backoff_seconds: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: bool = True

    @classmethod
    def from_config(cls, config: WorkerConfig) -> "RetryPolicy":
        """Build the provider retry policy from worker configuration."""
        return cls(
            max_retries=config.max_provider_retries,
            initial_backoff_seconds=config.backoff_initial_seconds,
            max_backoff_seconds=config.backoff_max_seconds,
            backoff_multiplier=config.backoff_multiplier,
            jitter=config.backoff_jitter,
        )


def calculate_backoff(policy: RetryPolicy, retry_count: int) -> float:
    """Calculate exponential backoff time.

    Args:
        policy: Retry policy
        retry_count: Number of retries so far

    Returns:
        Backoff time in seconds
    """
    backoff = min(
        policy.initial_backoff_seconds * (policy.backoff_multiplier**retry_count),
        policy.max_backoff_seconds,
    )

    if policy.jitter:
        backoff += backoff * 0.2 * random.random()  # Up to 20% jitter

    return backoff


async def retry_provider_call(
    call: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    operation: str,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``call``, retrying ``ProviderError`` with backoff.

    Args:
        call: Zero-argument coroutine factory
        policy: Retry budget and backoff settings
        operation: Name used in log events
        sleep: Sleep function (injectable for tests)

    Raises:
        ProviderError: The last error once retries are exhausted
    """
    attempt = 0
    while True:
        try:
            return await call()
        except ProviderError as e:
            if attempt >= policy.max_retries:
                raise
            delay = calculate_backoff(policy, attempt)
            attempt += 1
            logger.warning(
                "provider_retry",
                operation=operation,
                attempt=attempt,
                max_retries=policy.max_retries,
                delay_seconds=round(delay, 2),
                error=str(e),
            )
            await sleep(delay)
