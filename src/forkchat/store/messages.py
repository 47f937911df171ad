"""Message store: the flat, insertion-ordered message collection per chat."""

from __future__ import annotations

from dataclasses import fields as dataclass_fields
from typing import Any, Optional

from ..domain.chat import (
    MESSAGE_ROLES,
    Message,
    MessageDraft,
    MessageMetadata,
    TextSlot,
    current_text,
    write_slot,
)
from ..errors import (
    ForkPointInUseError,
    MessageNotFoundError,
    VariantIndexOutOfRangeError,
    VariantNotAllowedError,
)
from ..logging import log_event
from .branches import BranchDirectory
from .chats import ChatDirectory
from .state import ChatState

_METADATA_FIELDS = tuple(
    f.name for f in dataclass_fields(MessageMetadata) if f.name != "extras"
)


class MessageStore:
    """Holds every message of every chat, tagged with the branch it was appended to.

    Appending keeps the branch head and the chat's message counter in step;
    deleting decrements the counter but leaves children's parent pointers
    as they were.
    """

    def __init__(self, state: ChatState, chats: ChatDirectory, branches: BranchDirectory):
        self._state = state
        self._chats = chats
        self._branches = branches

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find(self, chat_id: str, message_id: str) -> Optional[Message]:
        return self._state.find_message(chat_id, message_id)

    def get(self, chat_id: str, message_id: str) -> Message:
        """Raise ChatNotFoundError or MessageNotFoundError if missing."""
        self._chats.get(chat_id)
        message = self._state.find_message(chat_id, message_id)
        if message is None:
            raise MessageNotFoundError(chat_id, message_id)
        return message

    def list_messages(self, chat_id: str) -> list[Message]:
        """All messages of a chat in insertion order."""
        return list(self._state.messages.get(chat_id, ()))

    def branch_messages(self, chat_id: str, branch_id: str) -> list[Message]:
        """Messages appended to exactly *branch_id*, in insertion order."""
        return [
            m for m in self._state.messages.get(chat_id, ()) if m.branch_id == branch_id
        ]

    def display_text(self, chat_id: str, message_id: str) -> str:
        """Text currently shown for a message (primary content or active variant)."""
        return current_text(self.get(chat_id, message_id))

    # ------------------------------------------------------------------
    # Append / delete
    # ------------------------------------------------------------------

    def append(self, chat_id: str, branch_id: str, draft: MessageDraft) -> str:
        """Append a message to *branch_id* and return its new id.

        The parent pointer is the last message already on the branch, or the
        branch's fork point when the branch has no messages of its own yet.
        """
        self._chats.get(chat_id)
        branch = self._branches.get(chat_id, branch_id)
        if draft.role not in MESSAGE_ROLES:
            raise ValueError(f"Invalid message role: {draft.role!r}")

        own = self.branch_messages(chat_id, branch_id)
        parent_message_id = own[-1].id if own else branch.fork_from_message_id

        message = Message(
            id=self._state.new_id(),
            role=draft.role,
            content=draft.content,
            branch_id=branch_id,
            created_at=self._state.clock.now(),
            parent_message_id=parent_message_id,
            streaming=draft.streaming,
            metadata=draft.metadata,
        )
        self._state.messages.setdefault(chat_id, []).append(message)
        self._branches.set_head(chat_id, branch_id, message.id)
        self._chats.adjust_message_count(chat_id, 1)

        log_event(
            "message_appended",
            chat_id=chat_id,
            branch_id=branch_id,
            message_id=message.id,
            role=message.role,
            parent_message_id=parent_message_id,
        )
        return message.id

    def delete(self, chat_id: str, message_id: str) -> Message:
        """Remove a message without touching messages that point at it.

        A message that is some branch's fork point cannot be deleted, since
        that branch's inherited history is cut at it.
        """
        message = self.get(chat_id, message_id)
        dependents = self._branches.forks_from(chat_id, message_id)
        if dependents:
            raise ForkPointInUseError(message_id, [b.id for b in dependents])

        self._state.messages[chat_id].remove(message)
        self._state.id_set.discard(message_id)
        self._chats.adjust_message_count(chat_id, -1)

        log_event(
            "message_deleted",
            chat_id=chat_id,
            branch_id=message.branch_id,
            message_id=message_id,
            role=message.role,
        )
        return message

    # ------------------------------------------------------------------
    # Content mutation
    # ------------------------------------------------------------------

    def update_content(self, chat_id: str, message_id: str, content: str) -> None:
        """Replace the primary content (streaming accumulation or direct edit)."""
        self.get(chat_id, message_id).content = content

    def set_streaming(self, chat_id: str, message_id: str, flag: bool) -> None:
        self.get(chat_id, message_id).streaming = bool(flag)

    def update_metadata(self, chat_id: str, message_id: str, **values: Any) -> None:
        metadata = self.get(chat_id, message_id).metadata
        for key, value in values.items():
            if key in _METADATA_FIELDS:
                setattr(metadata, key, value)
            else:
                metadata.extras[key] = value

    def add_variant(self, chat_id: str, message_id: str, content: str) -> int:
        """Append an alternative reply, make it active and return its 1-based index."""
        message = self.get(chat_id, message_id)
        if message.role != "assistant":
            raise VariantNotAllowedError(message_id, message.role)

        message.variants.append(content)
        message.active_variant = len(message.variants)

        log_event(
            "variant_added",
            chat_id=chat_id,
            branch_id=message.branch_id,
            message_id=message_id,
            role=message.role,
            variant_index=message.active_variant,
        )
        return message.active_variant

    def set_active_variant(self, chat_id: str, message_id: str, index: int) -> None:
        """Select the displayed text: 0 for primary content, 1..n for variants."""
        message = self.get(chat_id, message_id)
        if isinstance(index, bool) or not isinstance(index, int) or not message.has_slot(index):
            raise VariantIndexOutOfRangeError(message_id, index, len(message.variants))
        message.active_variant = index

    def write_slot(self, chat_id: str, slot: TextSlot, text: str) -> None:
        """Replace the text held by one slot of a message."""
        message = self.get(chat_id, slot.message_id)
        if not message.has_slot(slot.index):
            raise VariantIndexOutOfRangeError(
                slot.message_id, slot.index, len(message.variants)
            )
        write_slot(message, slot, text)
