"""Structured logging primitives for ForkChat."""

from .events import (
    before_sleep_log_event,
    log_event,
    setup_logging,
    summarize_text,
)
from .formatter import StructuredTextFormatter
from .sanitization import sanitize_error_message
from .schema import (
    DEFAULT_EVENT_KEY_ORDER,
    EVENT_KEY_ORDER,
    LOG_NAME_LIMIT,
    LOG_PATH_FIELDS,
)

__all__ = [
    "DEFAULT_EVENT_KEY_ORDER",
    "EVENT_KEY_ORDER",
    "LOG_NAME_LIMIT",
    "LOG_PATH_FIELDS",
    "StructuredTextFormatter",
    "before_sleep_log_event",
    "log_event",
    "sanitize_error_message",
    "setup_logging",
    "summarize_text",
]
