"""FlowLoop exception hierarchy.

All exceptions inherit from FlowLoopError for easy catching.
Each exception includes a `retryable` flag to indicate if the operation can be retried.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from flowloop.core.types import AgentExecutionResult


class FlowLoopError(Exception):
    """Base exception for all FlowLoop errors."""

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


# Configuration Errors
class ConfigurationError(FlowLoopError):
    """Configuration-related errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message, retryable=False)


class MissingEndpointError(ConfigurationError):
    """Agent endpoint is missing or not configured."""

    def __init__(self, env_var: str = "FLOWLOOP_AGENT_ENDPOINT") -> None:
        super().__init__(
            "Agent endpoint is not configured. "
            f"Pass endpoint= or set the {env_var} environment variable."
        )
        self.env_var = env_var


class InvalidConfigError(ConfigurationError):
    """Invalid configuration value."""

    def __init__(self, field: str, value: object, reason: str) -> None:
        super().__init__(f"Invalid config for '{field}': {value}. {reason}")
        self.field = field
        self.value = value


# Workflow Errors
class WorkflowError(FlowLoopError):
    """Base class for Workflow-related errors."""

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message, retryable=retryable)


class InvalidWorkflowError(WorkflowError):
    """Workflow definition is structurally invalid."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Invalid workflow: {reason}", retryable=False)
        self.reason = reason


class NodeNotFoundError(WorkflowError):
    """Node referenced by a connection or query does not exist."""

    def __init__(self, node_id: str) -> None:
        super().__init__(f"Node '{node_id}' not found in workflow.", retryable=False)
        self.node_id = node_id


class EmptyWorkflowError(WorkflowError):
    """Workflow has no stages or nodes defined."""

    def __init__(self) -> None:
        super().__init__(
            "Workflow has no nodes. Add nodes to a stage before running.",
            retryable=False,
        )


# Loop Errors
class LoopError(FlowLoopError):
    """Base class for loop-related errors."""

    def __init__(self, message: str, *, loop_id: str, retryable: bool = False) -> None:
        super().__init__(message, retryable=retryable)
        self.loop_id = loop_id


class LoopExecutionError(LoopError):
    """A loop terminated because one of its nodes failed."""

    def __init__(
        self,
        message: str,
        *,
        loop_id: str,
        failed_node: str | None = None,
        iteration: int | None = None,
    ) -> None:
        super().__init__(message, loop_id=loop_id, retryable=False)
        self.failed_node = failed_node
        self.iteration = iteration


# Invocation Errors
class InvocationError(FlowLoopError):
    """Remote agent invocation failed."""

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message, retryable=retryable)


class TransientInvocationError(InvocationError):
    """Carries a failed, retryable result through the retry policy."""

    def __init__(self, result: AgentExecutionResult) -> None:
        super().__init__(result.error or "Transient invocation failure", retryable=True)
        self.result = result
