"""Base class for AI agent collaborators."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class AgentClient(ABC):
    """Invokes an external AI agent on behalf of an ``ai_agent_call`` step.

    Implementations return the agent's structured reply as a dict and raise
    ``AgentInvocationFailed`` when the agent reports an error.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Client name used in logs."""
        pass

    @abstractmethod
    async def invoke(
        self,
        prompt: str,
        context: dict[str, Any],
        agent_id: str | None = None,
    ) -> dict[str, Any]:
        """Send *prompt* and the run's variables to the agent."""
        pass

    async def aclose(self) -> None:
        """Release any resources held by the client."""
        return None
