"""Agent client that calls a chat endpoint over HTTP."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from blueprint_engine.errors import AgentInvocationFailed
from blueprint_engine.http import HTTPClientConfig, create_async_client

from .base import AgentClient

logger = logging.getLogger(__name__)


class HTTPAgentClient(AgentClient):
    """Posts ``{message, context, agent_id}`` to an agent endpoint.

    The endpoint answers with a JSON object. A non-2xx status, an ``error``
    member in the reply, or a transport failure raise AgentInvocationFailed.
    """

    def __init__(
        self,
        endpoint_url: str,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        config: HTTPClientConfig | None = None,
    ):
        self.endpoint_url = endpoint_url
        self.api_key = api_key
        self._owns_client = client is None
        self._client = client or create_async_client(config)

    @property
    def name(self) -> str:
        return "http"

    async def invoke(
        self,
        prompt: str,
        context: dict[str, Any],
        agent_id: str | None = None,
    ) -> dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        body = {"message": prompt, "context": context}
        if agent_id:
            body["agent_id"] = agent_id

        try:
            response = await self._client.post(self.endpoint_url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise AgentInvocationFailed(str(e) or type(e).__name__, agent_id=agent_id) from e

        if response.is_error:
            raise AgentInvocationFailed(
                f"{response.status_code} {response.reason_phrase}", agent_id=agent_id
            )

        try:
            data = response.json()
        except ValueError as e:
            raise AgentInvocationFailed("Agent returned invalid JSON", agent_id=agent_id) from e

        if not isinstance(data, dict):
            return {"reply": data}
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise AgentInvocationFailed(message or "Unknown agent error", agent_id=agent_id)

        logger.debug(f"Agent endpoint replied for agent {agent_id or '<default>'}")
        return data

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
