"""Pytest configuration and fixtures."""

from collections.abc import Callable

import httpx
import pytest

from blueprint_engine.config import Settings
from blueprint_engine.engine import ExecutionContext, StepExecutor
from blueprint_engine.runs import InMemoryRunStore


@pytest.fixture
def settings():
    """Settings with short delays so tests never sleep for long."""
    return Settings(
        _env_file=None,
        default_delay_ms=1,
        default_retry_attempts=3,
        http_timeout_seconds=5.0,
        http_connect_timeout_seconds=2.0,
    )


@pytest.fixture
def mock_http() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """Build an AsyncClient whose requests are answered by a handler function."""

    def factory(handler):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory


@pytest.fixture
def context():
    return ExecutionContext.create("exec-1", "auto-1", {"name": "Ada"}, {"user": {"id": 7}})


@pytest.fixture
def store():
    return InMemoryRunStore()


@pytest.fixture
def make_executor(settings, mock_http):
    """StepExecutor wired to a mock transport and optional agent client."""

    def factory(handler=None, agent_client=None):
        client = mock_http(handler or (lambda request: httpx.Response(200, json={})))
        return StepExecutor(http_client=client, agent_client=agent_client, settings=settings)

    return factory
