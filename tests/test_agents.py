"""Tests for AI agent clients."""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from openai import APIConnectionError

from blueprint_engine.agents import (
    HTTPAgentClient,
    OpenAIAgentClient,
    create_agent_client,
)
from blueprint_engine.config import Settings
from blueprint_engine.errors import AgentInvocationFailed


class TestHTTPAgentClient:
    """Tests for HTTPAgentClient."""

    @pytest.mark.asyncio
    async def test_posts_message_and_context(self, mock_http):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"reply": "ok", "agent": "a"})

        client = HTTPAgentClient("https://agents.test/chat", api_key="k1", client=mock_http(handler))

        reply = await client.invoke("hello", {"x": 1}, agent_id="a")

        assert reply == {"reply": "ok", "agent": "a"}
        assert seen["body"] == {"message": "hello", "context": {"x": 1}, "agent_id": "a"}
        assert seen["auth"] == "Bearer k1"
        assert client.name == "http"

    @pytest.mark.asyncio
    async def test_non_object_reply_wrapped(self, mock_http):
        client = HTTPAgentClient(
            "https://agents.test", client=mock_http(lambda r: httpx.Response(200, json="text"))
        )
        assert await client.invoke("hi", {}) == {"reply": "text"}

    @pytest.mark.asyncio
    async def test_error_status(self, mock_http):
        client = HTTPAgentClient(
            "https://agents.test", client=mock_http(lambda r: httpx.Response(503))
        )
        with pytest.raises(AgentInvocationFailed, match="503"):
            await client.invoke("hi", {})

    @pytest.mark.asyncio
    async def test_error_member(self, mock_http):
        client = HTTPAgentClient(
            "https://agents.test",
            client=mock_http(lambda r: httpx.Response(200, json={"error": {"message": "bad agent"}})),
        )
        with pytest.raises(AgentInvocationFailed, match="bad agent"):
            await client.invoke("hi", {}, agent_id="x")

    @pytest.mark.asyncio
    async def test_invalid_json(self, mock_http):
        client = HTTPAgentClient(
            "https://agents.test", client=mock_http(lambda r: httpx.Response(200, text="nope"))
        )
        with pytest.raises(AgentInvocationFailed, match="invalid JSON"):
            await client.invoke("hi", {})

    @pytest.mark.asyncio
    async def test_transport_error(self, mock_http):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = HTTPAgentClient("https://agents.test", client=mock_http(handler))
        with pytest.raises(AgentInvocationFailed, match="refused"):
            await client.invoke("hi", {})


def completion(content="Hi there", total_tokens=12):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        model="gpt-4o-mini",
        usage=SimpleNamespace(total_tokens=total_tokens),
    )


class TestOpenAIAgentClient:
    """Tests for OpenAIAgentClient."""

    @pytest.fixture
    def openai_client(self):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=completion())
        client.close = AsyncMock()
        return client

    @pytest.mark.asyncio
    async def test_invoke(self, openai_client):
        agent = OpenAIAgentClient(
            agent_rules={"analyst": "You analyze numbers."}, client=openai_client
        )

        reply = await agent.invoke("Summarize", {"total": 5}, agent_id="analyst")

        assert reply == {
            "reply": "Hi there",
            "model": "gpt-4o-mini",
            "agent_id": "analyst",
            "tokens_used": 12,
        }
        messages = openai_client.chat.completions.create.call_args.kwargs["messages"]
        assert messages[0] == {"role": "system", "content": "You analyze numbers."}
        assert '"total": 5' in messages[1]["content"]
        assert messages[-1] == {"role": "user", "content": "Summarize"}

    @pytest.mark.asyncio
    async def test_no_context_message_when_empty(self, openai_client):
        agent = OpenAIAgentClient(client=openai_client)
        await agent.invoke("Go", {})

        messages = openai_client.chat.completions.create.call_args.kwargs["messages"]
        assert [m["role"] for m in messages] == ["system", "user"]

    @pytest.mark.asyncio
    async def test_api_error_wrapped(self, openai_client):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        openai_client.chat.completions.create.side_effect = APIConnectionError(request=request)
        agent = OpenAIAgentClient(client=openai_client)

        with pytest.raises(AgentInvocationFailed):
            await agent.invoke("Go", {})

    @pytest.mark.asyncio
    async def test_empty_choices(self, openai_client):
        openai_client.chat.completions.create.return_value = SimpleNamespace(
            choices=[], model="m", usage=None
        )
        agent = OpenAIAgentClient(client=openai_client)

        with pytest.raises(AgentInvocationFailed, match="Empty response"):
            await agent.invoke("Go", {})

    @pytest.mark.asyncio
    async def test_aclose(self, openai_client):
        await OpenAIAgentClient(client=openai_client).aclose()
        openai_client.close.assert_awaited_once()


class TestCreateAgentClient:
    """Tests for create_agent_client."""

    def test_endpoint_selects_http(self):
        settings = Settings(_env_file=None, agent_endpoint_url="https://agents.test")
        assert isinstance(create_agent_client(settings), HTTPAgentClient)

    def test_openai_key_selects_openai(self):
        settings = Settings(_env_file=None, agent_endpoint_url=None, openai_api_key="sk-test")
        assert isinstance(create_agent_client(settings), OpenAIAgentClient)

    def test_nothing_configured(self):
        settings = Settings(_env_file=None, agent_endpoint_url=None, openai_api_key="")
        assert create_agent_client(settings) is None
