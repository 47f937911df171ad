"""Chat directory: chat records, active branch pointers and counters."""

from __future__ import annotations

from typing import Any, Optional

from ..domain.chat import Chat
from ..errors import ChatNotFoundError
from ..logging import LOG_NAME_LIMIT, log_event, summarize_text
from .state import ChatState

_UPDATABLE_FIELDS = ("title", "template_id", "is_pinned", "tags", "selected_model")


class ChatDirectory:
    """Registry mapping chat id to its record.

    Creating the default branch is the branch directory's job; this class
    only stores the pointer it is given.
    """

    def __init__(self, state: ChatState):
        self._state = state

    def create(
        self,
        chat_id: str,
        *,
        default_branch_id: str,
        title: str,
        template_id: str,
        selected_model: Optional[str] = None,
    ) -> Chat:
        now = self._state.clock.now()
        chat = Chat(
            id=chat_id,
            title=title,
            template_id=template_id,
            default_branch_id=default_branch_id,
            active_branch_id=default_branch_id,
            created_at=now,
            updated_at=now,
            selected_model=selected_model,
        )
        self._state.chats[chat_id] = chat
        self._state.messages.setdefault(chat_id, [])
        self._state.current_chat_id = chat_id
        log_event(
            "chat_created",
            chat_id=chat_id,
            default_branch_id=default_branch_id,
            title=summarize_text(title, limit=LOG_NAME_LIMIT),
            template_id=template_id,
        )
        return chat

    def find(self, chat_id: str) -> Optional[Chat]:
        return self._state.chats.get(chat_id)

    def get(self, chat_id: str) -> Chat:
        """Raise ChatNotFoundError if not found."""
        chat = self._state.chats.get(chat_id)
        if chat is None:
            raise ChatNotFoundError(chat_id)
        return chat

    def list_chats(self) -> list[Chat]:
        """Pinned chats first, then most recently updated first."""
        by_recency = sorted(
            self._state.chats.values(), key=lambda c: c.updated_at, reverse=True
        )
        return sorted(by_recency, key=lambda c: not c.is_pinned)

    @property
    def current_chat_id(self) -> Optional[str]:
        return self._state.current_chat_id

    def set_current(self, chat_id: Optional[str]) -> None:
        if chat_id is not None:
            self.get(chat_id)
        self._state.current_chat_id = chat_id

    def delete(self, chat_id: str) -> Chat:
        """Remove the chat together with all of its branches and messages."""
        chat = self.get(chat_id)
        branches = self._state.branches.pop(chat_id, {})
        messages = self._state.messages.pop(chat_id, [])
        del self._state.chats[chat_id]

        self._state.id_set.discard(chat_id)
        self._state.id_set.difference_update(branches.keys())
        self._state.id_set.difference_update(m.id for m in messages)

        if self._state.current_chat_id == chat_id:
            self._state.current_chat_id = None

        log_event(
            "chat_deleted",
            chat_id=chat_id,
            branches=len(branches),
            messages=len(messages),
        )
        return chat

    def update(self, chat_id: str, **fields: Any) -> Chat:
        """Update user-editable chat fields and touch ``updated_at``."""
        chat = self.get(chat_id)
        for key in fields:
            if key not in _UPDATABLE_FIELDS:
                raise ValueError(f"Unknown chat field: {key}")
        for key, value in fields.items():
            if key == "tags":
                value = [str(tag) for tag in value]
            setattr(chat, key, value)
        self.touch(chat_id)
        log_event("chat_updated", chat_id=chat_id, fields=sorted(fields))
        return chat

    def toggle_pin(self, chat_id: str) -> bool:
        chat = self.get(chat_id)
        chat.is_pinned = not chat.is_pinned
        log_event("chat_updated", chat_id=chat_id, fields=["is_pinned"])
        return chat.is_pinned

    def set_active_branch(self, chat_id: str, branch_id: str) -> None:
        """Point the chat at *branch_id* (existence is checked by the caller)."""
        self.get(chat_id).active_branch_id = branch_id

    def adjust_message_count(self, chat_id: str, delta: int) -> int:
        """Add *delta* to the message counter, flooring at zero."""
        chat = self.get(chat_id)
        chat.message_count = max(0, chat.message_count + delta)
        self.touch(chat_id)
        return chat.message_count

    def touch(self, chat_id: str) -> None:
        self.get(chat_id).updated_at = self._state.clock.now()
