"""Logging setup for the engine.

Run and step identifiers passed through ``extra`` (or bound with
RunLoggerAdapter) become top-level keys in JSON output and a bracketed suffix
in text output.
"""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any, TextIO

from blueprint_engine.utils.validation import sanitize_log_message

RUN_FIELDS = (
    "execution_id",
    "automation_id",
    "step_id",
    "step_type",
    "status",
    "status_code",
    "duration_ms",
)

# Marks handlers installed by configure_logging so reconfiguring replaces only them
_HANDLER_FLAG = "_blueprint_engine_handler"


def _run_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {name: getattr(record, name) for name in RUN_FIELDS if hasattr(record, name)}


class SanitizingFilter(logging.Filter):
    """Redacts credentials from messages and string arguments.

    Step configs carry headers and API keys, so records are scrubbed before
    any handler formats them.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = sanitize_log_message(str(record.msg))
        if isinstance(record.args, tuple):
            record.args = tuple(
                sanitize_log_message(arg) if isinstance(arg, str) else arg for arg in record.args
            )
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with run fields at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_run_fields(record),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines ending in ``[execution_id=... step_id=...]``."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = _run_fields(record)
        if not fields:
            return line
        suffix = " ".join(f"{key}={value}" for key, value in fields.items())
        return f"{line} [{suffix}]"


class RunLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that stamps every record with one run's identifiers."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def configure_logging(
    level: str = "INFO",
    format: str = "text",
    sanitize_logs: bool = True,
    stream: TextIO | None = None,
) -> logging.Handler:
    """Install the engine's handler on the root logger.

    Calling it again replaces the handler it installed earlier and leaves
    other handlers alone.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: 'text' or 'json'
        sanitize_logs: Redact API keys and tokens from records
        stream: Output stream (defaults to stdout)

    Returns:
        The installed handler
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        if getattr(handler, _HANDLER_FLAG, False):
            root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter() if format.lower() == "json" else TextFormatter())
    if sanitize_logs:
        handler.addFilter(SanitizingFilter())
    setattr(handler, _HANDLER_FLAG, True)
    root_logger.addHandler(handler)

    for noisy in ("httpx", "httpcore", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return handler


def configure_logging_from_settings(settings=None) -> logging.Handler:
    """Configure logging from a Settings instance (defaults to get_settings())."""
    if settings is None:
        from blueprint_engine.config.settings import get_settings

        settings = get_settings()
    return configure_logging(
        level=settings.log_level,
        format=settings.log_format,
        sanitize_logs=settings.sanitize_logs,
    )
