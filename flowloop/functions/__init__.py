"""Built-in function nodes."""

from flowloop.functions.executor import FunctionExecutor, FunctionResult

__all__ = [
    "FunctionExecutor",
    "FunctionResult",
]
