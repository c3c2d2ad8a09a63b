"""Unit tests for retry policy and backoff."""

from unittest.mock import AsyncMock

import pytest
from overmind.application.failure_recovery import (
    RetryPolicy,
    calculate_backoff,
    retry_provider_call,
)
from overmind.infrastructure.config import WorkerConfig
from overmind.infrastructure.exceptions import ProviderError


class TestBackoff:
    """Test exponential backoff."""

    def test_exponential_growth_capped(self) -> None:
        """Test doubling delays and the upper bound."""
        policy = RetryPolicy(
            initial_backoff_seconds=1.0,
            max_backoff_seconds=5.0,
            backoff_multiplier=2.0,
            jitter=False,
        )

        delays = [calculate_backoff(policy, retry) for retry in range(5)]

        assert delays == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_jitter_bounded(self) -> None:
        """Test that jitter adds at most 20%."""
        policy = RetryPolicy(initial_backoff_seconds=10.0, max_backoff_seconds=10.0)

        for _ in range(20):
            assert 10.0 <= calculate_backoff(policy, 0) <= 12.0

    def test_policy_from_config(self) -> None:
        """Test that worker config drives the policy."""
        config = WorkerConfig(max_provider_retries=5, backoff_jitter=False)

        policy = RetryPolicy.from_config(config)

        assert policy.max_retries == 5
        assert policy.jitter is False


class TestRetryProviderCall:
    """Test the generic provider retry helper."""

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self) -> None:
        """Test recovery after transient provider errors."""
        call = AsyncMock(side_effect=[ProviderError("busy"), ProviderError("busy"), "ok"])
        sleep = AsyncMock()
        policy = RetryPolicy(max_retries=2, initial_backoff_seconds=1.0, jitter=False)

        assert await retry_provider_call(call, policy, "test", sleep=sleep) == "ok"
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_budget(self) -> None:
        """Test that the last error propagates."""
        call = AsyncMock(side_effect=ProviderError("down"))
        policy = RetryPolicy(max_retries=1, jitter=False)

        with pytest.raises(ProviderError, match="down"):
            await retry_provider_call(call, policy, "test", sleep=AsyncMock())

        assert call.await_count == 2

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self) -> None:
        """Test that only provider errors are retried."""
        call = AsyncMock(side_effect=KeyError("bug"))

        with pytest.raises(KeyError):
            await retry_provider_call(call, RetryPolicy(), "test", sleep=AsyncMock())

        assert call.await_count == 1
