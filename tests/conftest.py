"""Pytest configuration and fixtures for FlowLoop tests."""

from __future__ import annotations

from typing import Any, Callable, Union

import pytest

from flowloop.core.types import (
    AgentExecutionResult,
    AgentNode,
    AgentRequest,
    Connection,
    LoopEdgeConfig,
    Stage,
    Workflow,
)
from flowloop.invoker.base import BaseInvoker
from flowloop.logging import FlowLoopLogger

# A scripted reply: plain text, a ready result, an exception to raise, or a
# callable building one of those from the request.
Reply = Union[str, AgentExecutionResult, Exception, Callable[[AgentRequest], Any]]


class ScriptedInvoker(BaseInvoker):
    """Invoker replaying scripted replies, keyed by the request's system prompt.

    Agent nodes built by the fixtures use their id as system prompt, so each
    node gets its own script. The last reply of a script repeats once the
    script runs out.
    """

    def __init__(
        self,
        scripts: dict[str, list[Reply]] | None = None,
        default: str = "ok",
    ) -> None:
        self.scripts = {k: list(v) for k, v in (scripts or {}).items()}
        self.default = default
        self.requests: list[AgentRequest] = []
        self._positions: dict[str, int] = {}

    def calls_for(self, key: str) -> list[AgentRequest]:
        return [r for r in self.requests if r.system_prompt == key]

    async def invoke(self, request: AgentRequest) -> AgentExecutionResult:
        self.requests.append(request)
        key = request.system_prompt
        script = self.scripts.get(key)
        if not script:
            return AgentExecutionResult(success=True, output=self.default)

        position = self._positions.get(key, 0)
        self._positions[key] = position + 1
        reply = script[min(position, len(script) - 1)]

        if callable(reply) and not isinstance(reply, (str, AgentExecutionResult)):
            reply = reply(request)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, AgentExecutionResult):
            return reply
        return AgentExecutionResult(success=True, output=str(reply))


def agent(node_id: str, **kwargs: Any) -> AgentNode:
    """Agent node whose system prompt is its id."""
    kwargs.setdefault("system_prompt", node_id)
    return AgentNode(id=node_id, name=kwargs.pop("name", node_id), **kwargs)


def connect(
    from_id: str,
    to_id: str,
    *,
    loop: bool = False,
    port: str | None = None,
    **loop_config: Any,
) -> Connection:
    config = LoopEdgeConfig(**loop_config) if loop_config else None
    return Connection(
        id=f"{from_id}->{to_id}",
        from_node_id=from_id,
        to_node_id=to_id,
        from_output_port=port,
        is_loop_edge=loop,
        loop_config=config,
    )


@pytest.fixture
def scripted_invoker() -> Callable[..., ScriptedInvoker]:
    """Factory for scripted invokers."""
    return ScriptedInvoker


@pytest.fixture
def quiet_logger() -> FlowLoopLogger:
    """Logger that prints nothing."""
    return FlowLoopLogger(enabled=False)


@pytest.fixture
def self_loop_workflow() -> Callable[..., Workflow]:
    """Factory for a one-node workflow whose node feeds itself."""

    def _factory(node_id: str = "writer", **loop_config: Any) -> Workflow:
        return Workflow(
            name="self-loop",
            stages=[Stage(id="s1", nodes=[agent(node_id)])],
            connections=[connect(node_id, node_id, loop=True, **loop_config)],
        )

    return _factory


@pytest.fixture
def review_workflow() -> Callable[..., Workflow]:
    """Factory for brief -> (draft <-> critic) -> publish."""

    def _factory(**loop_config: Any) -> Workflow:
        return Workflow(
            name="review",
            stages=[
                Stage(id="s1", name="Write", nodes=[agent("brief"), agent("draft"), agent("critic")]),
                Stage(id="s2", name="Publish", nodes=[agent("publish")]),
            ],
            connections=[
                connect("brief", "draft"),
                connect("draft", "critic"),
                connect("critic", "draft", loop=True, **loop_config),
                connect("critic", "publish"),
            ],
        )

    return _factory
