"""JSON snapshot load/save for the shared chat state.

The whole state is one JSON document keyed by collection name::

    {
      "schema_version": 1,
      "current_chat_id": "...",
      "chats": [...],
      "branches": {"<chat_id>": [...]},
      "messages": {"<chat_id>": [...]},
      "folders": [...],
      "templates": [...],
      "favorite_templates": ["<template_id>", ...]
    }
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import aiofiles  # type: ignore[import-untyped]

from .constants import STATE_SCHEMA_VERSION
from .domain.chat import Branch, Chat, Folder, Message
from .domain.templates import BUILTIN_TEMPLATE_IDS, PromptTemplate
from .errors import StateFileError
from .logging import log_event
from .store.state import ChatState


def state_to_dict(state: ChatState) -> dict[str, Any]:
    """Serialize state to its persisted dict shape.

    Messages are written with ``streaming`` cleared: no turn survives a
    restart, so a half-streamed reply is stored as final partial text.
    """
    messages: dict[str, list[dict[str, Any]]] = {}
    for chat_id, chat_messages in state.messages.items():
        serialized = []
        for message in chat_messages:
            payload = message.to_dict()
            payload["streaming"] = False
            serialized.append(payload)
        messages[chat_id] = serialized

    return {
        "schema_version": STATE_SCHEMA_VERSION,
        "current_chat_id": state.current_chat_id,
        "chats": [chat.to_dict() for chat in state.chats.values()],
        "branches": {
            chat_id: [branch.to_dict() for branch in chat_branches.values()]
            for chat_id, chat_branches in state.branches.items()
        },
        "messages": messages,
        "folders": [folder.to_dict() for folder in state.folders.values()],
        "templates": [template.to_dict() for template in state.templates.values()],
        "favorite_templates": list(state.favorite_template_ids),
    }


def state_from_dict(raw: Any) -> ChatState:
    """Validate a persisted payload and rebuild a ``ChatState``."""
    if not isinstance(raw, dict):
        raise StateFileError("Invalid state file structure")

    version = raw.get("schema_version")
    if version != STATE_SCHEMA_VERSION:
        raise StateFileError(f"Unsupported state schema version: {version!r}")

    raw_chats = raw.get("chats", [])
    raw_branches = raw.get("branches", {})
    raw_messages = raw.get("messages", {})
    raw_folders = raw.get("folders", [])
    raw_templates = raw.get("templates", [])
    raw_favorites = raw.get("favorite_templates", [])
    if not isinstance(raw_chats, list):
        raise StateFileError("Invalid state: 'chats' must be a list")
    if not isinstance(raw_branches, dict) or not isinstance(raw_messages, dict):
        raise StateFileError("Invalid state: 'branches' and 'messages' must be objects")
    if not all(isinstance(items, list) for items in (raw_folders, raw_templates, raw_favorites)):
        raise StateFileError(
            "Invalid state: 'folders', 'templates' and 'favorite_templates' must be lists"
        )

    state = ChatState()
    try:
        for item in raw_chats:
            chat = Chat.from_raw(item)
            state.chats[chat.id] = chat

        for chat_id, items in raw_branches.items():
            if chat_id not in state.chats or not isinstance(items, list):
                raise StateFileError(f"Invalid state: orphan branches for chat {chat_id}")
            state.branches[chat_id] = {}
            for item in items:
                branch = Branch.from_raw(item)
                state.branches[chat_id][branch.id] = branch

        for chat_id, items in raw_messages.items():
            if chat_id not in state.chats or not isinstance(items, list):
                raise StateFileError(f"Invalid state: orphan messages for chat {chat_id}")
            state.messages[chat_id] = [
                Message.from_raw(item, index=index) for index, item in enumerate(items)
            ]

        for item in raw_folders:
            folder = Folder.from_raw(item)
            state.folders[folder.id] = folder

        for item in raw_templates:
            template = PromptTemplate.from_raw(item)
            state.templates[template.id] = template
    except ValueError as e:
        raise StateFileError(str(e)) from e

    for chat in state.chats.values():
        state.branches.setdefault(chat.id, {})
        state.messages.setdefault(chat.id, [])
        if chat.default_branch_id not in state.branches[chat.id]:
            raise StateFileError(f"Invalid state: chat {chat.id} has no default branch")
        if chat.active_branch_id not in state.branches[chat.id]:
            chat.active_branch_id = chat.default_branch_id
        if chat.folder_id is not None and chat.folder_id not in state.folders:
            chat.folder_id = None
        chat.message_count = len(state.messages[chat.id])

    known_templates = BUILTIN_TEMPLATE_IDS.union(state.templates)
    for template_id in raw_favorites:
        if not isinstance(template_id, str) or template_id not in known_templates:
            continue
        if template_id not in state.favorite_template_ids:
            state.favorite_template_ids.append(template_id)

    current = raw.get("current_chat_id")
    state.current_chat_id = current if current in state.chats else None
    state.reindex()
    return state


def _load_existing_payload(state_path: Path) -> dict[str, Any] | None:
    """Load an existing state file for change detection."""
    if not state_path.exists():
        return None
    try:
        with open(state_path, "r", encoding="utf-8") as f:
            raw: Any = json.load(f)
    except (OSError, ValueError):
        # Fall back to writing a fresh payload.
        return None
    return raw if isinstance(raw, dict) else None


def load_state(path: str | Path) -> ChatState:
    """Load state from a JSON file; a missing file yields empty state."""
    state_path = Path(path).expanduser()
    if not state_path.exists():
        return ChatState()

    try:
        with open(state_path, "r", encoding="utf-8") as f:
            raw: Any = json.load(f)
    except json.JSONDecodeError as e:
        raise StateFileError(f"Invalid JSON in state file: {e}") from e

    state = state_from_dict(raw)
    log_event("state_loaded", state_file=str(state_path), chats=len(state.chats))
    return state


async def save_state(path: str | Path, state: ChatState) -> bool:
    """Save state to a JSON file (async).

    Returns ``False`` when the file already holds the same conversations
    and nothing was written.
    """
    state_path = Path(path).expanduser()
    payload = state_to_dict(state)

    existing = _load_existing_payload(state_path)
    if existing == payload:
        log_event(
            "state_saved", state_file=str(state_path), chats=len(state.chats), skipped=True
        )
        return False

    state_path.parent.mkdir(parents=True, exist_ok=True)
    async with aiofiles.open(state_path, "w", encoding="utf-8") as f:
        await f.write(json.dumps(payload, indent=2, ensure_ascii=False))

    log_event("state_saved", state_file=str(state_path), chats=len(state.chats), skipped=False)
    return True
