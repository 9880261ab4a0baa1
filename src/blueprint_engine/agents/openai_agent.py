"""Agent client backed by the OpenAI chat completions API."""

from __future__ import annotations

import json
import logging
from typing import Any

from openai import AsyncOpenAI, OpenAIError

from blueprint_engine.errors import AgentInvocationFailed

from .base import AgentClient

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant running one step of an automation."


class OpenAIAgentClient(AgentClient):
    """Runs agent steps as a chat completion.

    The run's variables are passed as a second system message so the model
    sees the automation state alongside the step prompt. ``agent_rules`` maps
    agent ids to their own system prompts.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        temperature: float = 0.7,
        agent_rules: dict[str, str] | None = None,
        client: AsyncOpenAI | None = None,
    ):
        self.model = model
        self.temperature = temperature
        self.agent_rules = agent_rules or {}
        self._client = client or AsyncOpenAI(api_key=api_key)

    @property
    def name(self) -> str:
        return "openai"

    def _build_messages(
        self, prompt: str, context: dict[str, Any], agent_id: str | None
    ) -> list[dict[str, str]]:
        system_prompt = self.agent_rules.get(agent_id or "", DEFAULT_SYSTEM_PROMPT)
        messages = [{"role": "system", "content": system_prompt}]
        if context:
            messages.append(
                {
                    "role": "system",
                    "content": "Automation context:\n" + json.dumps(context, default=str),
                }
            )
        messages.append({"role": "user", "content": prompt})
        return messages

    async def invoke(
        self,
        prompt: str,
        context: dict[str, Any],
        agent_id: str | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=self._build_messages(prompt, context, agent_id),
                temperature=self.temperature,
            )
        except OpenAIError as e:
            raise AgentInvocationFailed(str(e), agent_id=agent_id) from e

        if not response.choices:
            raise AgentInvocationFailed("Empty response from model", agent_id=agent_id)

        reply = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        logger.debug(f"OpenAI agent {agent_id or '<default>'} replied ({len(reply)} chars)")
        return {
            "reply": reply,
            "model": response.model,
            "agent_id": agent_id,
            "tokens_used": getattr(usage, "total_tokens", 0) if usage else 0,
        }

    async def aclose(self) -> None:
        await self._client.close()
