"""Node execution, dispatched on ``node_type``.

``NodeRunner.run`` turns any node plus its assembled input into a
``NodeResult``. It never raises for a node failure.
"""

from __future__ import annotations

import json
import time

from flowloop.core.types import (
    AgentExecutionResult,
    AgentNode,
    AgentRequest,
    DEFAULT_OUTPUT_PORT,
    FunctionNode,
    NodeResult,
    ToolInstance,
    ToolNode,
    WorkflowNode,
)
from flowloop.functions.executor import FunctionExecutor
from flowloop.invoker.base import BaseInvoker


class NodeRunner:
    """Executes single nodes of every kind.

    Agent and tool nodes go through the invoker; function nodes are
    evaluated locally.

    Example:
        >>> runner = NodeRunner(AgentInvoker())
        >>> result = await runner.run(node, "draft text", user_input="Write a poem")
    """

    def __init__(
        self,
        invoker: BaseInvoker,
        function_executor: FunctionExecutor | None = None,
    ) -> None:
        self._invoker = invoker
        self._functions = function_executor or FunctionExecutor()

    @property
    def invoker(self) -> BaseInvoker:
        return self._invoker

    @property
    def function_executor(self) -> FunctionExecutor:
        return self._functions

    async def run(
        self,
        node: WorkflowNode,
        input: str,
        user_input: str | None = None,
    ) -> NodeResult:
        """Execute ``node`` on ``input``."""
        started = time.monotonic()
        try:
            if node.node_type == "agent":
                result = await self._run_agent(node, input, user_input)
            elif node.node_type == "function":
                result = self._run_function(node, input)
            elif node.node_type == "tool":
                result = await self._run_tool(node, input)
            else:
                result = NodeResult(
                    node_id=node.id,
                    success=False,
                    error=f"Unsupported node type: {node.node_type}",
                )
        except Exception as e:
            result = NodeResult(
                node_id=node.id,
                success=False,
                error=f"{type(e).__name__}: {e}",
            )

        duration_ms = int((time.monotonic() - started) * 1000)
        return result.model_copy(update={"duration_ms": duration_ms})

    async def _run_agent(
        self, node: AgentNode, input: str, user_input: str | None
    ) -> NodeResult:
        result = await self._invoker.execute_node(node, input, user_input)
        return self._from_agent_result(node.id, result)

    def _run_function(self, node: FunctionNode, input: str) -> NodeResult:
        result = self._functions.execute(node, input)
        if not result.success:
            return NodeResult(
                node_id=node.id,
                success=False,
                error=result.error or "Function execution failed",
            )
        return NodeResult(
            node_id=node.id,
            success=True,
            output=result.primary_output,
            outputs=result.outputs,
        )

    async def _run_tool(self, node: ToolNode, input: str) -> NodeResult:
        request = AgentRequest(
            system_prompt=f"Use the {node.tool_type} tool to process the input.",
            user_prompt=input,
            tools=[ToolInstance(id=node.id, tool_id=node.tool_type, config=node.config)],
        )
        result = await self._invoker.invoke(request)
        if not result.success:
            return self._from_agent_result(node.id, result)

        tool_texts = [
            out.output if isinstance(out.output, str) else json.dumps(out.output, indent=2)
            for out in result.tool_outputs
            if out.output is not None
        ]
        output = tool_texts[0] if tool_texts else (result.output or "")
        return NodeResult(
            node_id=node.id,
            success=True,
            output=output,
            outputs={DEFAULT_OUTPUT_PORT: output},
            tool_outputs=result.tool_outputs,
        )

    @staticmethod
    def _from_agent_result(node_id: str, result: AgentExecutionResult) -> NodeResult:
        if not result.success:
            return NodeResult(
                node_id=node_id,
                success=False,
                error=result.error or "Agent execution failed",
                tool_outputs=result.tool_outputs,
            )
        output = result.output or ""
        return NodeResult(
            node_id=node_id,
            success=True,
            output=output,
            outputs={DEFAULT_OUTPUT_PORT: output},
            tool_outputs=result.tool_outputs,
        )
