"""Core module for FlowLoop.

Holds the workflow model, graph analysis, loop state and stop checks.
Execution classes (``LoopController``, ``RunCoordinator``, ``NodeRunner``)
live in their own modules and are re-exported from ``flowloop``.
"""

from flowloop.core.types import (
    AgentExecutionResult,
    AgentNode,
    AgentRequest,
    Connection,
    DEFAULT_OUTPUT_PORT,
    ExitCondition,
    ExitConditionType,
    FunctionNode,
    KnowledgeDocument,
    LogEntry,
    LogType,
    LoopEdgeConfig,
    NodeResult,
    NodeStatus,
    OUTPUT_SEPARATOR,
    Stage,
    ToolInstance,
    ToolNode,
    ToolOutput,
    Workflow,
    WorkflowNode,
)
from flowloop.core.config import EngineConfig, FailurePolicy, RetryConfig
from flowloop.core.state import (
    LoopMetadata,
    LoopResult,
    LoopStatus,
    RunResult,
    RunStatus,
)
from flowloop.core.graph import (
    ExecutionPlan,
    ExecutionUnit,
    LoopDetector,
    LoopRegion,
    UnitKind,
    get_loops_for_node,
    is_node_in_loop,
    would_create_loop,
)
from flowloop.core.convergence import (
    ConvergenceDetector,
    ConvergenceInfo,
    check_convergence,
    extract_numeric_value,
    has_numeric_converged,
    is_oscillating,
    levenshtein_distance,
    string_similarity,
)
from flowloop.core.conditions import BreakConditionEvaluator, StopDecision, now_ms

__all__ = [
    # Types
    "AgentExecutionResult",
    "AgentNode",
    "AgentRequest",
    "Connection",
    "DEFAULT_OUTPUT_PORT",
    "ExitCondition",
    "ExitConditionType",
    "FunctionNode",
    "KnowledgeDocument",
    "LogEntry",
    "LogType",
    "LoopEdgeConfig",
    "NodeResult",
    "NodeStatus",
    "OUTPUT_SEPARATOR",
    "Stage",
    "ToolInstance",
    "ToolNode",
    "ToolOutput",
    "Workflow",
    "WorkflowNode",
    # Config
    "EngineConfig",
    "FailurePolicy",
    "RetryConfig",
    # State
    "LoopMetadata",
    "LoopResult",
    "LoopStatus",
    "RunResult",
    "RunStatus",
    # Graph
    "ExecutionPlan",
    "ExecutionUnit",
    "LoopDetector",
    "LoopRegion",
    "UnitKind",
    "get_loops_for_node",
    "is_node_in_loop",
    "would_create_loop",
    # Convergence
    "ConvergenceDetector",
    "ConvergenceInfo",
    "check_convergence",
    "extract_numeric_value",
    "has_numeric_converged",
    "is_oscillating",
    "levenshtein_distance",
    "string_similarity",
    # Break conditions
    "BreakConditionEvaluator",
    "StopDecision",
    "now_ms",
]
