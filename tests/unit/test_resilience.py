"""Unit tests for Resilience module."""

from __future__ import annotations

import asyncio

import pytest

from flowloop.core.config import RetryConfig
from flowloop.core.types import AgentExecutionResult
from flowloop.errors.exceptions import InvalidConfigError, TransientInvocationError
from flowloop.resilience.retry import RetryPolicy, RetryStrategy


def transient(message: str = "503") -> TransientInvocationError:
    return TransientInvocationError(AgentExecutionResult.failure(message, retryable=True))


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_fixed_delay(self) -> None:
        """Fixed strategy should return constant delay."""
        policy = RetryPolicy(strategy=RetryStrategy.FIXED, base_delay=1.0, jitter=False)

        assert policy.get_delay(0) == 1.0
        assert policy.get_delay(2) == 1.0

    def test_exponential_delay(self) -> None:
        """Exponential strategy should double delay."""
        policy = RetryPolicy(
            strategy=RetryStrategy.EXPONENTIAL, base_delay=1.0, max_delay=100.0, jitter=False
        )

        assert [policy.get_delay(i) for i in range(3)] == [1.0, 2.0, 4.0]

    def test_linear_delay(self) -> None:
        """Linear strategy should increase linearly."""
        policy = RetryPolicy(
            strategy=RetryStrategy.LINEAR, base_delay=1.0, max_delay=100.0, jitter=False
        )

        assert [policy.get_delay(i) for i in range(3)] == [1.0, 2.0, 3.0]

    def test_max_delay_cap(self) -> None:
        """Should cap delay at max_delay."""
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=False)

        assert policy.get_delay(10) == 5.0

    def test_jitter_stays_in_range(self) -> None:
        policy = RetryPolicy(strategy=RetryStrategy.FIXED, base_delay=1.0, jitter_factor=0.1)

        for _ in range(20):
            assert 0.9 <= policy.get_delay(0) <= 1.1

    def test_should_retry_transient(self) -> None:
        """Should retry transient invocation failures until the cap."""
        policy = RetryPolicy(max_retries=3)

        assert policy.should_retry(transient(), 0) is True
        assert policy.should_retry(transient(), 2) is True
        assert policy.should_retry(transient(), 3) is False

    def test_should_not_retry_other_errors(self) -> None:
        policy = RetryPolicy(max_retries=3)

        assert policy.should_retry(ValueError("bad"), 0) is False

    def test_retryable_flag_overrides_type(self) -> None:
        """Errors flagged non-retryable are never retried."""
        policy = RetryPolicy(max_retries=3)
        error = transient()
        error.retryable = False

        assert policy.should_retry(error, 0) is False

    def test_invalid_settings(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(max_retries=-1)
        with pytest.raises(ValueError):
            RetryPolicy(base_delay=0)
        with pytest.raises(ValueError):
            RetryPolicy(base_delay=2.0, max_delay=1.0)

    @pytest.mark.asyncio
    async def test_execute_retries_then_succeeds(self) -> None:
        policy = RetryPolicy(max_retries=3, base_delay=0.001, max_delay=0.001, jitter=False)
        calls = 0

        async def flaky() -> str:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise transient()
            return "done"

        assert await policy.execute(flaky) == "done"
        assert calls == 3

    @pytest.mark.asyncio
    async def test_execute_raises_after_exhaustion(self) -> None:
        policy = RetryPolicy(max_retries=1, base_delay=0.001, max_delay=0.001, jitter=False)
        calls = 0

        async def always_down() -> str:
            nonlocal calls
            calls += 1
            raise asyncio.TimeoutError()

        with pytest.raises(asyncio.TimeoutError):
            await policy.execute(always_down)
        assert calls == 2

    @pytest.mark.asyncio
    async def test_on_retry_hook(self) -> None:
        policy = RetryPolicy(max_retries=2, strategy=RetryStrategy.FIXED, base_delay=0.001, jitter=False)
        retries: list[tuple[int, float]] = []
        calls = 0

        async def flaky() -> str:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise transient()
            return "done"

        result = await policy.execute(flaky, on_retry=lambda n, e, d: retries.append((n, d)))

        assert result == "done"
        assert retries == [(1, 0.001), (2, 0.001)]
        assert policy.max_attempts == 3

    @pytest.mark.asyncio
    async def test_execute_passes_arguments(self) -> None:
        policy = RetryPolicy()

        async def add(a: int, b: int = 0) -> int:
            return a + b

        assert await policy.execute(add, 2, b=3) == 5


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_defaults(self) -> None:
        config = RetryConfig()

        assert config.enabled is True
        assert config.max_retries == 3

    def test_to_policy(self) -> None:
        policy = RetryConfig(max_retries=5, initial_delay=0.5, max_delay=4.0, jitter=False).to_policy()

        assert policy.max_retries == 5
        assert policy.strategy is RetryStrategy.EXPONENTIAL
        assert policy.get_delay(0) == 0.5
        assert policy.get_delay(5) == 4.0

    def test_max_delay_below_initial_rejected(self) -> None:
        with pytest.raises(InvalidConfigError):
            RetryConfig(initial_delay=5.0, max_delay=1.0)
