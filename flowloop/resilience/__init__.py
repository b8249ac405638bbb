"""Resilience module for FlowLoop.

Provides the bounded retry policy layered around remote agent calls.
"""

from flowloop.resilience.retry import (
    RetryStrategy,
    RetryPolicy,
)

__all__ = [
    "RetryStrategy",
    "RetryPolicy",
]
