"""HTTP client utilities."""

from .client import HTTPClientConfig, create_async_client

__all__ = ["HTTPClientConfig", "create_async_client"]
