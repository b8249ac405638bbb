"""Shared fixtures for integration tests."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

ENDPOINT = "https://agents.example.com/run-agent"

Handler = Callable[[dict[str, Any], int], Any]


def agent_response(body: Any, status_code: int = 200) -> MagicMock:
    """Build a mock httpx response for the agent service."""
    mock_response = MagicMock()
    mock_response.status_code = status_code
    mock_response.json.return_value = body
    if status_code >= 400:
        request = httpx.Request("POST", ENDPOINT)
        real = httpx.Response(status_code, json=body, request=request)
        mock_response.raise_for_status = MagicMock(
            side_effect=httpx.HTTPStatusError("error", request=request, response=real)
        )
    else:
        mock_response.raise_for_status = MagicMock()
    return mock_response


class AgentService:
    """Fake agent service routing requests by system prompt.

    Each handler receives the JSON payload and the 1-based call number for
    its system prompt, and returns either a body dict or a mock response.
    """

    def __init__(self, handlers: dict[str, Handler]) -> None:
        self.handlers = handlers
        self.payloads: list[dict[str, Any]] = []
        self._counts: defaultdict[str, int] = defaultdict(int)

    def payloads_for(self, system_prompt: str) -> list[dict[str, Any]]:
        return [p for p in self.payloads if p.get("systemPrompt") == system_prompt]

    async def post(self, url: str, json: dict[str, Any], headers: dict[str, str]) -> MagicMock:
        self.payloads.append(json)
        key = json.get("systemPrompt", "")
        self._counts[key] += 1
        reply = self.handlers[key](json, self._counts[key])
        if isinstance(reply, MagicMock):
            return reply
        return agent_response(reply)

    def client(self) -> AsyncMock:
        mock_client = AsyncMock()
        mock_client.post = AsyncMock(side_effect=self.post)
        mock_client.__aenter__ = AsyncMock(return_value=mock_client)
        mock_client.__aexit__ = AsyncMock(return_value=None)
        return mock_client


@pytest.fixture
def agent_service():
    """Factory for a fake agent service."""

    def _factory(handlers: dict[str, Handler]) -> AgentService:
        return AgentService(handlers)

    return _factory
