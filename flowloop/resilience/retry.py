"""Backoff policy for transient agent service failures.

The policy is exception driven: a call is retried when it raises one of the
retryable error types and the error does not carry ``retryable=False``.
``RetryingInvoker`` turns retryable failed results into
``TransientInvocationError`` so they flow through here.
"""

from __future__ import annotations

import asyncio
import random
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from flowloop.errors.exceptions import TransientInvocationError


class RetryStrategy(str, Enum):
    """How the delay grows between attempts."""

    FIXED = "fixed"
    EXPONENTIAL = "exponential"
    LINEAR = "linear"


_BACKOFF: dict[RetryStrategy, Callable[[float, int], float]] = {
    RetryStrategy.FIXED: lambda base, attempt: base,
    RetryStrategy.EXPONENTIAL: lambda base, attempt: base * (2 ** attempt),
    RetryStrategy.LINEAR: lambda base, attempt: base * (attempt + 1),
}

T = TypeVar("T")

# Called before sleeping: (retry number starting at 1, error, delay seconds)
RetryHook = Callable[[int, Exception, float], None]


class RetryPolicy:
    """Bounded retries with fixed, linear or exponential backoff.

    Example:
        >>> policy = RetryPolicy(max_retries=2, base_delay=0.5)
        >>> result = await policy.execute(invoker.invoke, request)
    """

    DEFAULT_RETRYABLE: tuple[type[Exception], ...] = (
        TransientInvocationError,
        ConnectionError,
        asyncio.TimeoutError,
    )

    def __init__(
        self,
        max_retries: int = 3,
        strategy: RetryStrategy = RetryStrategy.EXPONENTIAL,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        jitter: bool = True,
        jitter_factor: float = 0.1,
        retryable_errors: tuple[type[Exception], ...] | None = None,
    ) -> None:
        """Initialize retry policy.

        Args:
            max_retries: Retries after the first attempt.
            strategy: Backoff strategy.
            base_delay: Delay before the first retry, in seconds.
            max_delay: Upper bound for any single delay.
            jitter: Spread delays by up to ``jitter_factor`` either way.
            jitter_factor: Fraction of the delay used as jitter range.
            retryable_errors: Exception types worth retrying.
        """
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if base_delay <= 0:
            raise ValueError("base_delay must be positive")
        if max_delay < base_delay:
            raise ValueError("max_delay must be >= base_delay")

        self._max_retries = max_retries
        self._strategy = strategy
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._jitter_factor = jitter_factor if jitter else 0.0
        self._retryable_errors = retryable_errors or self.DEFAULT_RETRYABLE

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def max_attempts(self) -> int:
        """First attempt plus retries."""
        return self._max_retries + 1

    @property
    def strategy(self) -> RetryStrategy:
        return self._strategy

    def get_delay(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt + 1``."""
        delay = min(_BACKOFF[self._strategy](self._base_delay, attempt), self._max_delay)
        if self._jitter_factor:
            spread = delay * self._jitter_factor
            delay = max(0.0, delay + random.uniform(-spread, spread))
        return delay

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """Whether a failure on 0-indexed ``attempt`` earns another try.

        A ``retryable=False`` attribute wins over the error's type.
        """
        if attempt >= self._max_retries:
            return False
        if getattr(error, "retryable", True) is False:
            return False
        return isinstance(error, self._retryable_errors)

    async def execute(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        on_retry: RetryHook | None = None,
        **kwargs: Any,
    ) -> T:
        """Await ``func(*args, **kwargs)``, retrying retryable errors.

        Raises:
            Exception: The error of the last attempt once retries are spent,
                or the first error that is not retryable.
        """
        attempt = 0
        while True:
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if not self.should_retry(e, attempt):
                    raise
                delay = self.get_delay(attempt)
                attempt += 1
                if on_retry is not None:
                    on_retry(attempt, e, delay)
                await asyncio.sleep(delay)
