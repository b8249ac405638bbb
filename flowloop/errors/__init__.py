"""Error types for FlowLoop."""

from flowloop.errors.exceptions import (
    ConfigurationError,
    EmptyWorkflowError,
    FlowLoopError,
    InvalidConfigError,
    InvalidWorkflowError,
    InvocationError,
    LoopError,
    LoopExecutionError,
    MissingEndpointError,
    NodeNotFoundError,
    TransientInvocationError,
    WorkflowError,
)

__all__ = [
    "FlowLoopError",
    "ConfigurationError",
    "MissingEndpointError",
    "InvalidConfigError",
    "WorkflowError",
    "InvalidWorkflowError",
    "NodeNotFoundError",
    "EmptyWorkflowError",
    "LoopError",
    "LoopExecutionError",
    "InvocationError",
    "TransientInvocationError",
]
