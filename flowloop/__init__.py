"""FlowLoop - loop-aware workflow execution engine.

FlowLoop runs staged workflows of agent, function and tool nodes whose
connections may form cycles. Each cycle runs as a bounded loop that stops
on convergence, an iteration cap, a timeout, an exit condition or an
explicit stop request.

Example:
    >>> from flowloop import RunCoordinator, Workflow
    >>> workflow = Workflow.from_json(open("workflow.json").read())
    >>> result = RunCoordinator(workflow).run_sync("Draft a tagline")
    >>> print(result.output)
"""

__version__ = "0.1.0"

# Core exports
from flowloop.core.types import (
    AgentExecutionResult,
    AgentNode,
    AgentRequest,
    Connection,
    ExitCondition,
    ExitConditionType,
    FunctionNode,
    LogEntry,
    LogType,
    LoopEdgeConfig,
    NodeResult,
    NodeStatus,
    Stage,
    ToolInstance,
    ToolNode,
    ToolOutput,
    Workflow,
)
from flowloop.core.config import EngineConfig, FailurePolicy, RetryConfig
from flowloop.core.state import LoopMetadata, LoopResult, LoopStatus, RunResult, RunStatus
from flowloop.core.graph import ExecutionPlan, LoopDetector, LoopRegion, would_create_loop
from flowloop.core.convergence import ConvergenceDetector, ConvergenceInfo, string_similarity
from flowloop.core.conditions import BreakConditionEvaluator, StopDecision
from flowloop.core.nodes import NodeRunner
from flowloop.core.loop import LoopController
from flowloop.core.coordinator import RunCoordinator

# Invocation
from flowloop.invoker import AgentInvoker, BaseInvoker, RetryingInvoker
from flowloop.functions import FunctionExecutor, FunctionResult

# Error exports
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

# Observability
from flowloop.logging import configure_logging, get_logger
from flowloop.tracking import CallbackContext, CallbackEvent, CallbackManager, Subscription

__all__ = [
    # Version
    "__version__",
    # Workflow model
    "AgentNode",
    "FunctionNode",
    "ToolNode",
    "ToolInstance",
    "ToolOutput",
    "Stage",
    "Connection",
    "LoopEdgeConfig",
    "ExitCondition",
    "ExitConditionType",
    "Workflow",
    "NodeStatus",
    "LogType",
    "LogEntry",
    # Execution
    "AgentRequest",
    "AgentExecutionResult",
    "NodeResult",
    "NodeRunner",
    "LoopController",
    "RunCoordinator",
    "EngineConfig",
    "FailurePolicy",
    "RetryConfig",
    # State
    "LoopMetadata",
    "LoopResult",
    "LoopStatus",
    "RunResult",
    "RunStatus",
    # Analysis
    "ExecutionPlan",
    "LoopDetector",
    "LoopRegion",
    "would_create_loop",
    "ConvergenceDetector",
    "ConvergenceInfo",
    "string_similarity",
    "BreakConditionEvaluator",
    "StopDecision",
    # Invocation
    "BaseInvoker",
    "AgentInvoker",
    "RetryingInvoker",
    "FunctionExecutor",
    "FunctionResult",
    # Errors
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
    # Observability
    "configure_logging",
    "get_logger",
    "CallbackContext",
    "CallbackEvent",
    "CallbackManager",
    "Subscription",
]
