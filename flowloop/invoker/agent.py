"""HTTP client for the remote agent execution service.

Posts ``{systemPrompt, userPrompt, tools, images?, knowledgeDocuments?}`` and
reads ``{output?, toolOutputs?, error?}``. Any non-2xx status is a failure.
"""

from __future__ import annotations

import os
from typing import Any

import httpx
from pydantic import ValidationError

from flowloop.core.types import AgentExecutionResult, AgentRequest, ToolOutput
from flowloop.errors.exceptions import MissingEndpointError
from flowloop.invoker.base import BaseInvoker

ENDPOINT_ENV = "FLOWLOOP_AGENT_ENDPOINT"
API_KEY_ENV = "FLOWLOOP_API_KEY"

NO_OUTPUT = "No output generated"


def is_transient_status(status_code: int) -> bool:
    """Server errors and rate limiting are worth retrying."""
    return status_code >= 500 or status_code == 429


class AgentInvoker(BaseInvoker):
    """Calls the agent service once per request. Performs no retries.

    Example:
        >>> invoker = AgentInvoker(endpoint="https://agents.example.com/run-agent")
        >>> result = await invoker.invoke(AgentRequest(user_prompt="Summarize this"))
        >>> result.success
        True
    """

    def __init__(
        self,
        endpoint: str | None = None,
        api_key: str | None = None,
        timeout: float = 60.0,
    ) -> None:
        """Initialize invoker.

        Args:
            endpoint: URL of the run-agent service. Defaults to $FLOWLOOP_AGENT_ENDPOINT.
            api_key: Bearer token. Defaults to $FLOWLOOP_API_KEY.
            timeout: Request timeout in seconds.
        """
        self._endpoint = endpoint or os.environ.get(ENDPOINT_ENV)
        self._api_key = api_key or os.environ.get(API_KEY_ENV)
        self._timeout = timeout

    @property
    def endpoint(self) -> str | None:
        return self._endpoint

    @property
    def timeout(self) -> float:
        return self._timeout

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def invoke(self, request: AgentRequest) -> AgentExecutionResult:
        if not self._endpoint:
            return AgentExecutionResult.failure(str(MissingEndpointError(ENDPOINT_ENV)))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    self._endpoint,
                    json=request.to_payload(),
                    headers=self._headers(),
                )
                response.raise_for_status()
                data = response.json()

        except httpx.ConnectError as e:
            return AgentExecutionResult.failure(
                f"Agent service unreachable at {self._endpoint}: {e}",
                retryable=True,
            )
        except httpx.TimeoutException:
            return AgentExecutionResult.failure(
                f"Agent request timed out after {self._timeout}s",
                retryable=True,
            )
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            return AgentExecutionResult.failure(
                _error_from_response(e.response) or f"Server error: {status}",
                retryable=is_transient_status(status),
            )
        except httpx.HTTPError as e:
            return AgentExecutionResult.failure(
                f"Agent request failed: {e}",
                retryable=True,
            )
        except ValueError:
            return AgentExecutionResult.failure("Malformed response from agent service")

        return _parse_body(data)


def _error_from_response(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return None


def _parse_body(data: Any) -> AgentExecutionResult:
    if not isinstance(data, dict):
        return AgentExecutionResult.failure("Malformed response from agent service")
    try:
        tool_outputs = [
            ToolOutput.model_validate(item) for item in data.get("toolOutputs") or []
        ]
    except (ValidationError, TypeError):
        return AgentExecutionResult.failure("Malformed toolOutputs in agent response")

    output = data.get("output")
    return AgentExecutionResult(
        success=True,
        output=str(output) if output else NO_OUTPUT,
        tool_outputs=tool_outputs,
    )
