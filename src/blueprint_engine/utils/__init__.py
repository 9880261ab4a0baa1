"""Blueprint engine utility modules."""

from blueprint_engine.utils.validation import redact_headers, sanitize_log_message

__all__ = [
    "redact_headers",
    "sanitize_log_message",
]
