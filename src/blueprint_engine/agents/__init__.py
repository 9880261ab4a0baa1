"""AI agent collaborators for ``ai_agent_call`` steps."""

from .base import AgentClient
from .http_agent import HTTPAgentClient
from .openai_agent import OpenAIAgentClient


def create_agent_client(settings=None) -> AgentClient | None:
    """Build the agent client described by settings.

    An ``agent_endpoint_url`` selects the HTTP client; otherwise an OpenAI
    API key selects the OpenAI client. Returns None when neither is set.
    """
    if settings is None:
        from blueprint_engine.config import get_settings

        settings = get_settings()

    if settings.agent_endpoint_url:
        from blueprint_engine.http import HTTPClientConfig

        return HTTPAgentClient(
            settings.agent_endpoint_url,
            api_key=settings.agent_api_key,
            config=HTTPClientConfig.from_settings(settings),
        )
    if settings.openai_api_key:
        return OpenAIAgentClient(api_key=settings.openai_api_key, model=settings.openai_model)
    return None


__all__ = [
    "AgentClient",
    "HTTPAgentClient",
    "OpenAIAgentClient",
    "create_agent_client",
]
