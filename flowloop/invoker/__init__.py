"""Agent invocation for FlowLoop."""

from flowloop.invoker.base import BaseInvoker, render_user_prompt
from flowloop.invoker.agent import AgentInvoker
from flowloop.invoker.retrying import RetryingInvoker

__all__ = [
    "BaseInvoker",
    "AgentInvoker",
    "RetryingInvoker",
    "render_user_prompt",
]
