"""Shared state container for chats, branches and messages.

One ``ChatState`` is created per process and handed by reference to every
component that reads or mutates it. Mutations are synchronous; nothing in
this package awaits while holding partially-updated state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .. import ids
from ..domain.chat import Branch, Chat, Folder, Message
from ..domain.templates import PromptTemplate
from ..time_utils import MonotonicClock


@dataclass
class ChatState:
    """All chats with their branches and messages, plus folders and templates."""

    chats: dict[str, Chat] = field(default_factory=dict)
    # chat_id -> branch_id -> Branch
    branches: dict[str, dict[str, Branch]] = field(default_factory=dict)
    # chat_id -> messages in insertion order
    messages: dict[str, list[Message]] = field(default_factory=dict)
    folders: dict[str, Folder] = field(default_factory=dict)
    # User templates and overrides of built-ins, by template id
    templates: dict[str, PromptTemplate] = field(default_factory=dict)
    favorite_template_ids: list[str] = field(default_factory=list)
    current_chat_id: Optional[str] = None
    clock: MonotonicClock = field(default_factory=MonotonicClock)
    id_set: set[str] = field(default_factory=set)

    def new_id(self) -> str:
        """Allocate an id unique across every record in the state."""
        return ids.generate_id(self.id_set)

    def find_message(self, chat_id: str, message_id: str) -> Optional[Message]:
        for message in self.messages.get(chat_id, ()):
            if message.id == message_id:
                return message
        return None

    def reindex(self) -> None:
        """Rebuild the id set and clock floor after bulk-loading records."""
        self.id_set.clear()
        self.id_set.update(self.chats.keys())
        for chat_branches in self.branches.values():
            self.id_set.update(chat_branches.keys())
            for branch in chat_branches.values():
                self.clock.observe(branch.created_at)
        for chat_messages in self.messages.values():
            for message in chat_messages:
                self.id_set.add(message.id)
                self.clock.observe(message.created_at)
        for chat in self.chats.values():
            self.clock.observe(chat.updated_at)
        for folder in self.folders.values():
            self.id_set.add(folder.id)
            self.clock.observe(folder.created_at)
        for template in self.templates.values():
            if not template.builtin:
                self.id_set.add(template.id)
