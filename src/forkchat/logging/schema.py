"""Preferred field order for structured log events."""

from __future__ import annotations

# Titles and names are cut to this many characters in log fields.
LOG_NAME_LIMIT = 80

DEFAULT_EVENT_KEY_ORDER = ("ts_utc", "level", "logger", "ts", "chat_id")

_MESSAGE_KEYS = ("ts_utc", "level", "ts", "chat_id", "branch_id", "message_id", "role")
_TURN_KEYS = (
    "ts_utc",
    "level",
    "ts",
    "chat_id",
    "message_id",
    "slot",
    "model",
    "latency_ms",
    "output_chars",
)

EVENT_KEY_ORDER: dict[str, tuple[str, ...]] = {
    "chat_created": ("ts_utc", "level", "ts", "chat_id", "default_branch_id", "title"),
    "chat_deleted": ("ts_utc", "level", "ts", "chat_id", "branches", "messages"),
    "chat_updated": ("ts_utc", "level", "ts", "chat_id", "fields"),
    "chat_moved": ("ts_utc", "level", "ts", "chat_id", "folder_id"),
    "folder_created": ("ts_utc", "level", "ts", "folder_id", "name"),
    "folder_deleted": ("ts_utc", "level", "ts", "folder_id", "chats"),
    "template_added": ("ts_utc", "level", "ts", "template_id", "name"),
    "template_updated": ("ts_utc", "level", "ts", "template_id", "fields"),
    "template_deleted": ("ts_utc", "level", "ts", "template_id", "refused"),
    "message_appended": _MESSAGE_KEYS + ("parent_message_id",),
    "message_deleted": _MESSAGE_KEYS,
    "variant_added": _MESSAGE_KEYS + ("variant_index",),
    "branch_created": (
        "ts_utc",
        "level",
        "ts",
        "chat_id",
        "branch_id",
        "name",
        "parent_branch_id",
        "fork_from_message_id",
    ),
    "branch_renamed": ("ts_utc", "level", "ts", "chat_id", "branch_id", "name"),
    "branch_deleted": ("ts_utc", "level", "ts", "chat_id", "branch_id", "refused"),
    "branch_switched": ("ts_utc", "level", "ts", "chat_id", "branch_id"),
    "fork_point_missing": (
        "ts_utc",
        "level",
        "ts",
        "chat_id",
        "branch_id",
        "fork_from_message_id",
    ),
    "turn_started": _TURN_KEYS,
    "turn_completed": _TURN_KEYS,
    "turn_failed": _TURN_KEYS + ("error_type", "error"),
    "turn_cancelled": _TURN_KEYS,
    "turn_cancel_requested": ("ts_utc", "level", "ts", "chat_id", "message_id"),
    "state_saved": ("ts_utc", "level", "ts", "state_file", "chats", "skipped"),
    "state_loaded": ("ts_utc", "level", "ts", "state_file", "chats"),
    "provider_retry": (
        "ts_utc",
        "level",
        "ts",
        "provider",
        "operation",
        "attempt",
        "sleep_sec",
        "error_type",
        "error",
    ),
}

LOG_PATH_FIELDS = frozenset({"state_file", "log_file", "profile_file"})
