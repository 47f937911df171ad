"""Branch resolution: the linear conversation visible on one branch."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .domain.chat import Branch, Message
from .logging import log_event
from .store.state import ChatState


def _by_creation(messages: list[Message]) -> list[Message]:
    return sorted(messages, key=lambda m: m.created_at)


@dataclass(slots=True, frozen=True)
class BranchNode:
    """One row of a chat's branch tree."""

    branch: Branch
    depth: int
    message_count: int


class BranchResolver:
    """Read-only views over a ``ChatState``.

    Nothing here mutates state or raises for unknown ids: a missing chat or
    branch resolves to an empty conversation.
    """

    def __init__(self, state: ChatState):
        self._state = state

    def _own_messages(self, chat_id: str, branch_id: str) -> list[Message]:
        return [
            m for m in self._state.messages.get(chat_id, ()) if m.branch_id == branch_id
        ]

    def resolve(self, chat_id: str, branch_id: str) -> list[Message]:
        """Return the branch's messages, with inherited ancestor history, oldest first.

        A forked branch sees its parent's resolved conversation up to and
        including the fork-point message, followed by its own messages.
        """
        return self._resolve(chat_id, branch_id, set())

    def _resolve(self, chat_id: str, branch_id: str, visiting: set[str]) -> list[Message]:
        branch = self._state.branches.get(chat_id, {}).get(branch_id)
        if branch is None or branch_id in visiting:
            return []
        visiting.add(branch_id)

        own = self._own_messages(chat_id, branch_id)
        if branch.parent_branch_id is None:
            return _by_creation(own)

        inherited = self._inherited(chat_id, branch, visiting)
        return _by_creation(inherited + own)

    def _inherited(
        self, chat_id: str, branch: Branch, visiting: set[str]
    ) -> list[Message]:
        parent_id = branch.parent_branch_id
        assert parent_id is not None
        if parent_id in self._state.branches.get(chat_id, {}):
            parent_view = self._resolve(chat_id, parent_id, visiting)
        else:
            parent_view = self._own_messages(chat_id, parent_id)

        fork_point = None
        if branch.fork_from_message_id is not None:
            fork_point = self._state.find_message(chat_id, branch.fork_from_message_id)

        if fork_point is None:
            # Without an anchor the whole parent history is kept.
            log_event(
                "fork_point_missing",
                level=logging.WARNING,
                chat_id=chat_id,
                branch_id=branch.id,
                fork_from_message_id=branch.fork_from_message_id,
            )
            return parent_view

        cutoff = fork_point.created_at
        return [m for m in parent_view if m.created_at <= cutoff]

    def history_before(
        self, chat_id: str, branch_id: str, message_id: str
    ) -> Optional[list[Message]]:
        """Resolved messages that precede *message_id* on *branch_id*.

        Returns ``None`` when the message is not visible on that branch.
        """
        view = self.resolve(chat_id, branch_id)
        for index, message in enumerate(view):
            if message.id == message_id:
                return view[:index]
        return None

    def branch_tree(self, chat_id: str) -> list[BranchNode]:
        """Branches in depth-first order, each parent before its children."""
        chat_branches = self._state.branches.get(chat_id, {})
        ordered = sorted(chat_branches.values(), key=lambda b: b.created_at)

        children: dict[Optional[str], list[Branch]] = {}
        for branch in ordered:
            parent = branch.parent_branch_id
            if parent is not None and parent not in chat_branches:
                parent = None
            children.setdefault(parent, []).append(branch)

        counts: dict[str, int] = {}
        for message in self._state.messages.get(chat_id, ()):
            counts[message.branch_id] = counts.get(message.branch_id, 0) + 1

        nodes: list[BranchNode] = []
        stack = [(branch, 0) for branch in reversed(children.get(None, []))]
        while stack:
            branch, depth = stack.pop()
            nodes.append(BranchNode(branch, depth, counts.get(branch.id, 0)))
            for child in reversed(children.get(branch.id, [])):
                stack.append((child, depth + 1))
        return nodes
