"""End-to-end runs of JSON workflows against a mocked agent service.

Each test parses a workflow document, runs it through RunCoordinator with a
real AgentInvoker, and patches httpx at the transport boundary.
"""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from flowloop import (
    AgentInvoker,
    CallbackEvent,
    CallbackManager,
    EngineConfig,
    LoopStatus,
    RunCoordinator,
    RunStatus,
    Workflow,
)
from flowloop.core.config import RetryConfig
from flowloop.core.types import LogType
from tests.integration.conftest import ENDPOINT, agent_response

REVIEW_WORKFLOW = {
    "name": "article-review",
    "stages": [
        {
            "id": "draft",
            "name": "Draft and review",
            "nodes": [
                {"id": "intake", "nodeType": "function", "functionType": "text_input"},
                {
                    "id": "writer",
                    "nodeType": "agent",
                    "name": "Writer",
                    "systemPrompt": "writer",
                    "userPrompt": "Topic: {prompt}\nNotes: {input}",
                },
                {"id": "reviewer", "nodeType": "agent", "name": "Reviewer", "systemPrompt": "reviewer"},
            ],
        },
        {
            "id": "ship",
            "name": "Publish",
            "nodes": [
                {
                    "id": "gate",
                    "nodeType": "function",
                    "functionType": "if_else",
                    "config": {"condition": "approved"},
                    "outputPorts": ["true", "false"],
                },
                {"id": "publisher", "nodeType": "agent", "systemPrompt": "publisher"},
            ],
        },
    ],
    "connections": [
        {"id": "c1", "fromNodeId": "intake", "toNodeId": "writer"},
        {"id": "c2", "fromNodeId": "writer", "toNodeId": "reviewer"},
        {
            "id": "c3",
            "fromNodeId": "reviewer",
            "toNodeId": "writer",
            "isLoopEdge": True,
            "loopConfig": {
                "maxIterations": 5,
                "exitConditions": [{"type": "value_equals", "value": "APPROVED"}],
            },
        },
        {"id": "c4", "fromNodeId": "reviewer", "toNodeId": "gate"},
        {"id": "c5", "fromNodeId": "gate", "toNodeId": "publisher", "fromOutputPort": "true"},
    ],
}

REVIEW_NOTES = ["Add a section on brewing temperature.", "APPROVED"]


def review_handlers(publisher_reply: str = "Published to blog") -> dict:
    return {
        "writer": lambda payload, n: {"output": f"Article draft {n}"},
        "reviewer": lambda payload, n: {"output": REVIEW_NOTES[min(n, len(REVIEW_NOTES)) - 1]},
        "publisher": lambda payload, n: {"output": publisher_reply},
    }


def quick_retries(max_retries: int = 2) -> EngineConfig:
    return EngineConfig(retry=RetryConfig(max_retries=max_retries, initial_delay=0.01, jitter=False))


@pytest.mark.integration
class TestReviewWorkflow:
    """A writer/reviewer loop feeding a gated publish stage."""

    @pytest.mark.asyncio
    async def test_loop_exits_on_approval(self, agent_service, quiet_logger) -> None:
        service = agent_service(review_handlers())
        workflow = Workflow.from_json(json.dumps(REVIEW_WORKFLOW))

        with patch("flowloop.invoker.agent.httpx.AsyncClient", return_value=service.client()):
            coordinator = RunCoordinator(
                workflow, AgentInvoker(endpoint=ENDPOINT), logger=quiet_logger
            )
            result = await coordinator.run("Green tea")

        assert result.status is RunStatus.COMPLETED
        assert result.output == "Published to blog"

        loop = result.loops["loop-writer"]
        assert loop.status is LoopStatus.CONDITION_MET
        assert loop.iterations == 2
        assert loop.stop_reason == 'Output matches target value: "APPROVED"'

        writer_prompts = [p["userPrompt"] for p in service.payloads_for("writer")]
        assert writer_prompts[0] == "Topic: Green tea\nNotes: Green tea"
        assert writer_prompts[1] == (
            "Topic: Green tea\nNotes: Green tea\n\n---\n\nAdd a section on brewing temperature."
        )
        assert service.payloads_for("reviewer")[1]["userPrompt"] == "Article draft 2"
        assert service.payloads_for("publisher")[0]["userPrompt"] == "APPROVED"

    @pytest.mark.asyncio
    async def test_rejection_leaves_gate_true_port_empty(self, agent_service, quiet_logger) -> None:
        handlers = review_handlers()
        handlers["reviewer"] = lambda payload, n: {"output": "Rejected: off topic"}
        service = agent_service(handlers)
        document = json.loads(json.dumps(REVIEW_WORKFLOW))
        document["connections"][2]["loopConfig"]["maxIterations"] = 3

        with patch("flowloop.invoker.agent.httpx.AsyncClient", return_value=service.client()):
            coordinator = RunCoordinator(
                Workflow.model_validate(document),
                AgentInvoker(endpoint=ENDPOINT),
                logger=quiet_logger,
            )
            result = await coordinator.run("Green tea")

        # Identical reviews converge before the iteration cap
        assert result.loops["loop-writer"].status is LoopStatus.CONVERGED
        assert result.status is RunStatus.COMPLETED
        # Empty port output falls back to the run input
        assert service.payloads_for("publisher")[0]["userPrompt"] == "Green tea"

    @pytest.mark.asyncio
    async def test_events_and_logs(self, agent_service, quiet_logger) -> None:
        service = agent_service(review_handlers())
        callbacks = CallbackManager()
        seen: list[CallbackEvent] = []
        callbacks.register_global(lambda ctx: seen.append(ctx.event))

        with patch("flowloop.invoker.agent.httpx.AsyncClient", return_value=service.client()):
            coordinator = RunCoordinator(
                Workflow.from_json(json.dumps(REVIEW_WORKFLOW)),
                AgentInvoker(endpoint=ENDPOINT),
                callbacks=callbacks,
                logger=quiet_logger,
            )
            result = await coordinator.run("Green tea")

        assert seen[0] is CallbackEvent.RUN_START
        assert seen[-1] is CallbackEvent.RUN_END
        assert seen.count(CallbackEvent.LOOP_ITERATION) == 2
        assert seen.count(CallbackEvent.STAGE_START) == 2

        messages = [entry.message for entry in result.logs]
        assert messages[0] == "Workflow execution started"
        assert messages[-1] == "Workflow execution completed"
        assert any(entry.type is LogType.SUCCESS for entry in result.logs)


@pytest.mark.integration
class TestServiceFailures:
    """Agent service failures surfacing through a run."""

    @pytest.mark.asyncio
    async def test_transient_error_retried(self, agent_service, quiet_logger) -> None:
        handlers = review_handlers()
        writer = handlers["writer"]
        handlers["writer"] = lambda payload, n: (
            agent_response({"error": "busy"}, status_code=503) if n == 1 else writer(payload, n)
        )
        service = agent_service(handlers)

        with patch("flowloop.invoker.agent.httpx.AsyncClient", return_value=service.client()):
            coordinator = RunCoordinator(
                Workflow.from_json(json.dumps(REVIEW_WORKFLOW)),
                AgentInvoker(endpoint=ENDPOINT),
                config=quick_retries(),
                logger=quiet_logger,
            )
            result = await coordinator.run("Green tea")

        assert result.status is RunStatus.COMPLETED
        assert len(service.payloads_for("writer")) == 3

    @pytest.mark.asyncio
    async def test_client_error_fails_run(self, agent_service, quiet_logger) -> None:
        handlers = review_handlers()
        handlers["reviewer"] = lambda payload, n: agent_response(
            {"error": "Prompt rejected by policy"}, status_code=400
        )
        service = agent_service(handlers)

        with patch("flowloop.invoker.agent.httpx.AsyncClient", return_value=service.client()):
            coordinator = RunCoordinator(
                Workflow.from_json(json.dumps(REVIEW_WORKFLOW)),
                AgentInvoker(endpoint=ENDPOINT),
                config=quick_retries(),
                logger=quiet_logger,
            )
            result = await coordinator.run("Green tea")

        assert result.status is RunStatus.FAILED
        assert len(service.payloads_for("reviewer")) == 1
        loop = result.loops["loop-writer"]
        assert loop.status is LoopStatus.ERROR
        assert loop.failed_node == "reviewer"
        assert result.errors == ["Loop loop-writer failed: Prompt rejected by policy"]
        assert set(result.skipped_nodes) == {"gate", "publisher"}

    @pytest.mark.asyncio
    async def test_missing_endpoint(self, monkeypatch, quiet_logger) -> None:
        monkeypatch.delenv("FLOWLOOP_AGENT_ENDPOINT", raising=False)
        document = {
            "stages": [
                {"id": "s1", "nodes": [{"id": "solo", "nodeType": "agent", "systemPrompt": "solo"}]}
            ]
        }

        coordinator = RunCoordinator(
            Workflow.model_validate(document),
            AgentInvoker(),
            logger=quiet_logger,
        )
        result = await coordinator.run("hello")

        assert result.status is RunStatus.FAILED
        assert "FLOWLOOP_AGENT_ENDPOINT" in result.errors[0]
