"""Base class for agent invokers."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod

from flowloop.core.types import (
    AgentExecutionResult,
    AgentNode,
    AgentRequest,
    KnowledgeDocument,
)

_PLACEHOLDER = re.compile(r"\{(input|prompt)\}")

NO_INPUT_PLACEHOLDER = "No input provided"


def render_user_prompt(template: str, input: str, user_input: str | None = None) -> str:
    """Fill ``{input}`` and ``{prompt}`` in a user prompt template.

    Substituted text is not scanned again, so an input containing
    ``{prompt}`` stays literal.
    """
    values = {
        "input": input,
        "prompt": user_input or NO_INPUT_PLACEHOLDER,
    }
    return _PLACEHOLDER.sub(lambda m: values[m.group(1)], template)


class BaseInvoker(ABC):
    """Abstract client of the remote agent service.

    Implementations never raise for a failed call; they return an
    ``AgentExecutionResult`` with ``success=False``.
    """

    @abstractmethod
    async def invoke(self, request: AgentRequest) -> AgentExecutionResult:
        """Run one agent request."""
        ...

    async def execute_node(
        self,
        agent: AgentNode,
        input: str,
        user_input: str | None = None,
        knowledge_documents: list[KnowledgeDocument] | None = None,
    ) -> AgentExecutionResult:
        """Render an agent node's prompt and invoke it."""
        request = AgentRequest(
            system_prompt=agent.system_prompt,
            user_prompt=render_user_prompt(agent.user_prompt, input, user_input),
            tools=agent.tools,
            images=agent.images,
            knowledge_documents=knowledge_documents,
        )
        return await self.invoke(request)
