"""Pooled httpx client construction.

Step executors and the HTTP agent client each own one AsyncClient built here
and close it themselves.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx

logger = logging.getLogger(__name__)


@dataclass
class HTTPClientConfig:
    """Pool and timeout limits for an AsyncClient."""

    max_connections: int = 20
    max_keepalive: int = 10
    timeout: float = 30.0
    connect_timeout: float = 10.0
    keepalive_expiry: float = 30.0
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings) -> HTTPClientConfig:
        return cls(
            max_connections=settings.http_max_connections,
            max_keepalive=settings.http_max_keepalive,
            timeout=settings.http_timeout_seconds,
            connect_timeout=settings.http_connect_timeout_seconds,
        )


def create_async_client(
    config: HTTPClientConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Build an AsyncClient from ``config``.

    ``transport`` replaces the network layer; tests pass an httpx.MockTransport.
    """
    cfg = config or HTTPClientConfig()
    client = httpx.AsyncClient(
        limits=httpx.Limits(
            max_connections=cfg.max_connections,
            max_keepalive_connections=cfg.max_keepalive,
            keepalive_expiry=cfg.keepalive_expiry,
        ),
        timeout=httpx.Timeout(cfg.timeout, connect=cfg.connect_timeout),
        headers=cfg.headers,
        transport=transport,
    )
    logger.debug(
        f"Created HTTP client (max_connections={cfg.max_connections}, timeout={cfg.timeout}s)"
    )
    return client
