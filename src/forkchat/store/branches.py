"""Branch directory: per-chat branch records, fork lineage and heads."""

from __future__ import annotations

from typing import Optional

from ..constants import DEFAULT_BRANCH_NAME, EDIT_BRANCH_PREFIX
from ..domain.chat import Branch
from ..errors import (
    BranchHasChildrenError,
    BranchNotFoundError,
    DefaultBranchProtectedError,
    MessageNotFoundError,
)
from ..logging import LOG_NAME_LIMIT, log_event, summarize_text
from .chats import ChatDirectory
from .state import ChatState


def _clean_name(name: str) -> str:
    cleaned = " ".join(str(name).split())
    if not cleaned:
        raise ValueError("Branch name must not be empty")
    return cleaned


class BranchDirectory:
    """Unordered set of branches per chat.

    Branches only ever fork; there is no merge. A fork records the branch
    that owned the fork-point message and the fork-point message id.
    """

    def __init__(self, state: ChatState, chats: ChatDirectory):
        self._state = state
        self._chats = chats

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find(self, chat_id: str, branch_id: str) -> Optional[Branch]:
        return self._state.branches.get(chat_id, {}).get(branch_id)

    def get(self, chat_id: str, branch_id: str) -> Branch:
        """Raise BranchNotFoundError if not found."""
        branch = self.find(chat_id, branch_id)
        if branch is None:
            raise BranchNotFoundError(chat_id, branch_id)
        return branch

    def list_branches(self, chat_id: str) -> list[Branch]:
        """Branches of a chat in creation order."""
        return sorted(
            self._state.branches.get(chat_id, {}).values(), key=lambda b: b.created_at
        )

    def children(self, chat_id: str, branch_id: str) -> list[Branch]:
        return [
            b for b in self.list_branches(chat_id) if b.parent_branch_id == branch_id
        ]

    def forks_from(self, chat_id: str, message_id: str) -> list[Branch]:
        """Branches whose fork point is *message_id*."""
        return [
            b
            for b in self.list_branches(chat_id)
            if b.fork_from_message_id == message_id
        ]

    def next_edit_name(self, chat_id: str) -> str:
        """Name for the next edit fork, e.g. ``edit-2`` when one branch exists."""
        count = len(self._state.branches.get(chat_id, {}))
        return f"{EDIT_BRANCH_PREFIX}{count + 1}"

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _register(self, branch: Branch) -> Branch:
        self._state.branches.setdefault(branch.chat_id, {})[branch.id] = branch
        log_event(
            "branch_created",
            chat_id=branch.chat_id,
            branch_id=branch.id,
            name=summarize_text(branch.name, limit=LOG_NAME_LIMIT),
            parent_branch_id=branch.parent_branch_id,
            fork_from_message_id=branch.fork_from_message_id,
        )
        return branch

    def create_root_branch(self, chat_id: str, name: str) -> Branch:
        """Create a branch with no parent and an empty head."""
        return self._register(
            Branch(
                id=self._state.new_id(),
                chat_id=chat_id,
                name=_clean_name(name),
                created_at=self._state.clock.now(),
            )
        )

    def create_main_branch(self, chat_id: str) -> Branch:
        """Create the default branch; called once while creating a chat."""
        return self.create_root_branch(chat_id, DEFAULT_BRANCH_NAME)

    def fork(self, chat_id: str, from_message_id: str, name: str) -> Branch:
        """Fork a new branch whose history ends at *from_message_id*.

        The new branch's parent is the branch that owns the fork-point
        message. No message is appended; callers append to the returned
        branch afterward.
        """
        self._chats.get(chat_id)
        message = self._state.find_message(chat_id, from_message_id)
        if message is None:
            raise MessageNotFoundError(chat_id, from_message_id)

        return self._register(
            Branch(
                id=self._state.new_id(),
                chat_id=chat_id,
                name=_clean_name(name),
                created_at=self._state.clock.now(),
                head_message_id=from_message_id,
                parent_branch_id=message.branch_id,
                fork_from_message_id=from_message_id,
            )
        )

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def set_head(self, chat_id: str, branch_id: str, message_id: str) -> None:
        self.get(chat_id, branch_id).head_message_id = message_id

    def rename(self, chat_id: str, branch_id: str, name: str) -> Branch:
        branch = self.get(chat_id, branch_id)
        branch.name = _clean_name(name)
        log_event(
            "branch_renamed",
            chat_id=chat_id,
            branch_id=branch_id,
            name=summarize_text(branch.name, limit=LOG_NAME_LIMIT),
        )
        return branch

    def switch(self, chat_id: str, branch_id: str) -> Branch:
        """Make *branch_id* the chat's active branch."""
        self._chats.get(chat_id)
        branch = self.get(chat_id, branch_id)
        self._chats.set_active_branch(chat_id, branch_id)
        log_event("branch_switched", chat_id=chat_id, branch_id=branch_id)
        return branch

    def delete(self, chat_id: str, branch_id: str, *, strict: bool = False) -> bool:
        """Delete a non-default leaf branch and the messages appended to it.

        Deleting the default branch is refused: a no-op returning ``False``,
        or ``DefaultBranchProtectedError`` when *strict* is set. A branch
        that other branches fork from raises ``BranchHasChildrenError``.
        If the deleted branch was active, the chat falls back to its
        default branch.
        """
        chat = self._chats.get(chat_id)
        if branch_id == chat.default_branch_id:
            log_event("branch_deleted", chat_id=chat_id, branch_id=branch_id, refused=True)
            if strict:
                raise DefaultBranchProtectedError(branch_id)
            return False

        self.get(chat_id, branch_id)
        children = self.children(chat_id, branch_id)
        if children:
            raise BranchHasChildrenError(branch_id, [b.id for b in children])

        del self._state.branches[chat_id][branch_id]
        self._state.id_set.discard(branch_id)

        chat_messages = self._state.messages.get(chat_id, [])
        own = [m for m in chat_messages if m.branch_id == branch_id]
        if own:
            self._state.messages[chat_id] = [
                m for m in chat_messages if m.branch_id != branch_id
            ]
            self._state.id_set.difference_update(m.id for m in own)
            self._chats.adjust_message_count(chat_id, -len(own))

        if chat.active_branch_id == branch_id:
            self._chats.set_active_branch(chat_id, chat.default_branch_id)

        log_event(
            "branch_deleted",
            chat_id=chat_id,
            branch_id=branch_id,
            refused=False,
            messages=len(own),
        )
        return True
