"""Retry layer around an invoker."""

from __future__ import annotations

from flowloop.core.types import AgentExecutionResult, AgentRequest
from flowloop.errors.exceptions import TransientInvocationError
from flowloop.invoker.base import BaseInvoker
from flowloop.logging import get_logger
from flowloop.resilience.retry import RetryPolicy


class RetryingInvoker(BaseInvoker):
    """Retries failed results flagged ``retryable`` with bounded backoff.

    Fatal failures pass through on the first attempt. When retries run out
    the last failed result is returned unchanged.

    Example:
        >>> invoker = RetryingInvoker(AgentInvoker(), RetryPolicy(max_retries=2))
    """

    def __init__(self, inner: BaseInvoker, policy: RetryPolicy | None = None) -> None:
        self._inner = inner
        self._policy = policy or RetryPolicy()

    @property
    def inner(self) -> BaseInvoker:
        return self._inner

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def _attempt(self, request: AgentRequest) -> AgentExecutionResult:
        result = await self._inner.invoke(request)
        if not result.success and result.retryable:
            raise TransientInvocationError(result)
        return result

    @staticmethod
    def _log_retry(retry: int, error: Exception, delay: float) -> None:
        get_logger().warning(
            "Transient agent failure, retrying",
            retry=retry,
            delay=f"{delay:.2f}s",
            error=str(error),
        )

    async def invoke(self, request: AgentRequest) -> AgentExecutionResult:
        try:
            return await self._policy.execute(self._attempt, request, on_retry=self._log_retry)
        except TransientInvocationError as e:
            return e.result
