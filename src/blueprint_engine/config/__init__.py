"""Configuration module for the blueprint engine."""

from .logging import (
    RUN_FIELDS,
    JSONFormatter,
    RunLoggerAdapter,
    SanitizingFilter,
    TextFormatter,
    configure_logging,
    configure_logging_from_settings,
)
from .settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
    "configure_logging",
    "configure_logging_from_settings",
    "JSONFormatter",
    "RUN_FIELDS",
    "RunLoggerAdapter",
    "SanitizingFilter",
    "TextFormatter",
]
