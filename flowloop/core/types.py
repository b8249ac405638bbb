"""Core type definitions for FlowLoop.

This module defines the workflow graph (stages, nodes, connections) and the
request/result shapes exchanged with the remote agent service.
All types use Pydantic for validation and serialization. Field names are
snake_case; the camelCase names produced by the visual builder are accepted
as aliases.
"""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag

from flowloop.errors.exceptions import InvalidWorkflowError, NodeNotFoundError


OUTPUT_SEPARATOR = "\n\n---\n\n"
DEFAULT_OUTPUT_PORT = "output"


class NodeStatus(str, Enum):
    """Runtime status of a workflow node."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"


class LogType(str, Enum):
    """Severity of a run log entry."""

    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"
    RUNNING = "running"
    WARNING = "warning"


class ToolInstance(BaseModel):
    """A tool attached to an agent node."""

    id: str = Field(default="", description="Instance id within the node")
    tool_id: str = Field(..., description="Remote tool identifier", alias="toolId")
    config: dict[str, Any] = Field(default_factory=dict, description="Tool configuration")

    model_config = ConfigDict(populate_by_name=True)


class ToolOutput(BaseModel):
    """Output produced by one tool during an agent call."""

    tool_id: str = Field(..., alias="toolId")
    tool_name: str | None = Field(None, alias="toolName")
    output: Any = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class _NodeBase(BaseModel):
    """Fields shared by every node kind.

    ``status``, ``output``, ``tool_outputs``, ``execution_count``,
    ``previous_outputs`` and ``loop_id`` are runtime fields owned by the engine.
    """

    id: str = Field(..., description="Unique node id")
    name: str = Field(default="", description="Display name")
    status: NodeStatus = Field(default=NodeStatus.IDLE)
    output: str | None = Field(None, description="Latest output")
    config: dict[str, Any] = Field(default_factory=dict)
    tool_outputs: list[ToolOutput] = Field(default_factory=list, alias="toolOutputs")
    execution_count: int = Field(default=0, ge=0, alias="executionCount")
    previous_outputs: list[str] = Field(default_factory=list, alias="previousOutputs")
    loop_id: str | None = Field(None, alias="loopId")

    model_config = ConfigDict(populate_by_name=True)

    @property
    def label(self) -> str:
        """Name for logs, falling back to the id."""
        return self.name or self.id


class AgentNode(_NodeBase):
    """A node that calls the remote agent service."""

    node_type: Literal["agent"] = Field(default="agent", alias="nodeType")
    type: str = Field(default="custom", description="Agent template type")
    system_prompt: str = Field(default="", alias="systemPrompt")
    user_prompt: str = Field(default="{input}", alias="userPrompt")
    tools: list[ToolInstance] = Field(default_factory=list)
    images: list[str] | None = Field(None, description="Base64 image data URLs")


class FunctionNode(_NodeBase):
    """A node evaluated locally by the function executor."""

    node_type: Literal["function"] = Field(default="function", alias="nodeType")
    function_type: str = Field(..., alias="functionType")
    output_ports: list[str] = Field(
        default_factory=lambda: [DEFAULT_OUTPUT_PORT], alias="outputPorts"
    )


class ToolNode(_NodeBase):
    """A standalone tool, executed through the agent service."""

    node_type: Literal["tool"] = Field(default="tool", alias="nodeType")
    tool_type: str = Field(..., alias="toolType")


def _node_kind(value: Any) -> str | None:
    # Accepts both the camelCase document key and built node instances
    if isinstance(value, dict):
        return value.get("nodeType", value.get("node_type"))
    return getattr(value, "node_type", None)


WorkflowNode = Annotated[
    Union[
        Annotated[AgentNode, Tag("agent")],
        Annotated[FunctionNode, Tag("function")],
        Annotated[ToolNode, Tag("tool")],
    ],
    Discriminator(_node_kind),
]


class Stage(BaseModel):
    """An ordered group of nodes executed as one phase of a run."""

    id: str
    name: str = ""
    nodes: list[WorkflowNode] = Field(default_factory=list)


class ExitConditionType(str, Enum):
    """Kinds of loop exit conditions."""

    MAX_ITERATIONS = "max_iterations"
    CONVERGENCE = "convergence"
    VALUE_EQUALS = "value_equals"
    CUSTOM = "custom"


class ExitCondition(BaseModel):
    """An extra rule that can end a loop early."""

    type: ExitConditionType
    value: Any = None
    threshold: float | None = Field(None, ge=0.0, le=1.0)


class LoopEdgeConfig(BaseModel):
    """Loop settings carried by a feedback connection."""

    max_iterations: int = Field(default=10, ge=1, alias="maxIterations")
    exit_conditions: list[ExitCondition] = Field(
        default_factory=list, alias="exitConditions"
    )
    convergence_threshold: float | None = Field(
        None, ge=0.0, le=1.0, alias="convergenceThreshold"
    )
    timeout_seconds: float | None = Field(
        default=300.0,
        ge=0.0,
        alias="timeoutSeconds",
        description="Loop deadline; None disables the timeout",
    )

    model_config = ConfigDict(populate_by_name=True)


class Connection(BaseModel):
    """A directed edge between two nodes."""

    id: str
    from_node_id: str = Field(..., alias="fromNodeId")
    to_node_id: str = Field(..., alias="toNodeId")
    from_output_port: str | None = Field(None, alias="fromOutputPort")
    is_loop_edge: bool = Field(default=False, alias="isLoopEdge")
    loop_config: LoopEdgeConfig | None = Field(None, alias="loopConfig")

    model_config = ConfigDict(populate_by_name=True)


class Workflow(BaseModel):
    """A workflow definition: ordered stages plus the connections between nodes.

    Example:
        >>> wf = Workflow.from_json(open("review.json").read())
        >>> [n.id for n in wf.all_nodes()]
        ['draft', 'critic']
    """

    name: str = Field(default="workflow")
    stages: list[Stage] = Field(default_factory=list)
    connections: list[Connection] = Field(default_factory=list)

    @classmethod
    def from_json(cls, data: str | bytes) -> Workflow:
        """Load a workflow from its JSON document."""
        return cls.model_validate(json.loads(data))

    def all_nodes(self) -> list[WorkflowNode]:
        return [node for stage in self.stages for node in stage.nodes]

    def get_node(self, node_id: str) -> WorkflowNode:
        for node in self.all_nodes():
            if node.id == node_id:
                return node
        raise NodeNotFoundError(node_id)

    def stage_of(self, node_id: str) -> int:
        """Index of the stage holding ``node_id``."""
        for index, stage in enumerate(self.stages):
            if any(node.id == node_id for node in stage.nodes):
                return index
        raise NodeNotFoundError(node_id)

    def validate_structure(self) -> None:
        """Check node ids and connection endpoints.

        Raises:
            InvalidWorkflowError: On duplicate node ids or dangling connections.
        """
        seen: set[str] = set()
        for node in self.all_nodes():
            if node.id in seen:
                raise InvalidWorkflowError(f"duplicate node id '{node.id}'")
            seen.add(node.id)

        for conn in self.connections:
            for endpoint in (conn.from_node_id, conn.to_node_id):
                if endpoint not in seen:
                    raise InvalidWorkflowError(
                        f"connection '{conn.id}' references unknown node '{endpoint}'"
                    )


class LogEntry(BaseModel):
    """A single line of the run log."""

    time: str = Field(default_factory=lambda: datetime.now().strftime("%H:%M:%S"))
    type: LogType
    message: str


class KnowledgeDocument(BaseModel):
    filename: str
    content: str


class AgentRequest(BaseModel):
    """A call to the remote agent service."""

    system_prompt: str = ""
    user_prompt: str = ""
    tools: list[ToolInstance] = Field(default_factory=list)
    images: list[str] | None = None
    knowledge_documents: list[KnowledgeDocument] | None = None

    def to_payload(self) -> dict[str, Any]:
        """Build the JSON body expected by the agent endpoint."""
        payload: dict[str, Any] = {
            "systemPrompt": self.system_prompt,
            "userPrompt": self.user_prompt,
            "tools": [{"toolId": t.tool_id, "config": t.config} for t in self.tools],
        }
        if self.images is not None:
            payload["images"] = self.images
        if self.knowledge_documents is not None:
            payload["knowledgeDocuments"] = [
                doc.model_dump() for doc in self.knowledge_documents
            ]
        return payload


class AgentExecutionResult(BaseModel):
    """Outcome of one remote agent call. Never raised, always returned."""

    success: bool
    output: str | None = None
    tool_outputs: list[ToolOutput] = Field(default_factory=list)
    error: str | None = None
    retryable: bool = Field(
        default=False,
        description="Whether a failure is transient and may be retried",
    )

    model_config = ConfigDict(frozen=True)

    @classmethod
    def failure(cls, error: str, *, retryable: bool = False) -> AgentExecutionResult:
        return cls(success=False, error=error, retryable=retryable)


class NodeResult(BaseModel):
    """Outcome of executing a single node of any kind.

    ``outputs`` maps output ports to text; ``output`` is the primary text.
    """

    node_id: str
    success: bool
    output: str = ""
    outputs: dict[str, str] = Field(default_factory=dict)
    tool_outputs: list[ToolOutput] = Field(default_factory=list)
    error: str | None = None
    duration_ms: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)

    def port(self, name: str | None) -> str:
        """Output for a connection, honoring an optional port name."""
        if name is None:
            return self.output
        return self.outputs.get(name, "")
