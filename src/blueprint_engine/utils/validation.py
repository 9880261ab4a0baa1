"""Redaction helpers for logs and persisted run details."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

# Header names whose values never reach logs or run records
SENSITIVE_HEADERS = frozenset(
    {"authorization", "proxy-authorization", "x-api-key", "api-key", "cookie", "set-cookie"}
)

_DEFAULT_PATTERNS = [
    (r"sk-ant-[a-zA-Z0-9_-]{40,}", "[REDACTED_API_KEY]"),  # Anthropic keys
    (r"sk-[a-zA-Z0-9_-]{20,}", "[REDACTED_API_KEY]"),  # OpenAI keys
    (r"ghp_[a-zA-Z0-9]{36}", "[REDACTED_GITHUB_TOKEN]"),  # GitHub PATs
    (r"xox[abpr]-[a-zA-Z0-9-]{10,}", "[REDACTED_SLACK_TOKEN]"),  # Slack tokens
    (r"Bearer\s+[a-zA-Z0-9._~+/=-]+", "Bearer [REDACTED]"),
    (r'password["\']?\s*[:=]\s*["\']?[^"\'\s,}]+', "password=[REDACTED]"),
    (r'token["\']?\s*[:=]\s*["\']?[^"\'\s,}]+', "token=[REDACTED]"),
]


def sanitize_log_message(message: str, sensitive_patterns: list[str] | None = None) -> str:
    """Sanitize a log message to remove sensitive data.

    Args:
        message: Message to sanitize
        sensitive_patterns: Additional patterns to redact

    Returns:
        Sanitized message with sensitive data redacted
    """
    result = message

    for pattern, replacement in _DEFAULT_PATTERNS:
        result = re.sub(pattern, replacement, result, flags=re.IGNORECASE)

    if sensitive_patterns:
        for pattern in sensitive_patterns:
            result = re.sub(pattern, "[REDACTED]", result, flags=re.IGNORECASE)

    return result


def redact_headers(headers: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return a copy of *headers* with credential-bearing values replaced."""
    if not headers:
        return {}
    return {
        key: "[REDACTED]" if str(key).lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }
