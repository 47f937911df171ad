"""Per-chat generation lock.

At most one assistant turn is in flight per chat. The holder of the lock
is a ``GenerationToken`` bound to the single text slot it may write and,
once the turn is running, to the task that drives it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..domain.chat import TextSlot
from ..errors import GenerationInProgressError
from ..logging import log_event


def _running_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class GenerationToken:
    """Exclusive write permission for one chat's in-flight turn."""

    def __init__(self, chat_id: str):
        self.chat_id = chat_id
        self.slot: Optional[TextSlot] = None
        self.task: Optional[asyncio.Task] = None
        self._cancelled = False
        self._released = False
        self._task_cancel_pending = False

    def bind(self, slot: TextSlot) -> None:
        if self.slot is not None and self.slot != slot:
            raise RuntimeError("Generation token is already bound to another slot")
        self.slot = slot

    def attach(self, task: Optional[asyncio.Task]) -> None:
        """Record the task driving this turn so a stop can interrupt it."""
        self.task = task

    def cancel(self) -> None:
        self._cancelled = True

    def interrupt(self) -> None:
        """Cancel the turn and wake its task if it is awaiting the model."""
        self.cancel()
        task = self.task
        if task is None or task.done() or task is _running_task():
            return
        if not self._task_cancel_pending:
            self._task_cancel_pending = True
            task.cancel()

    def absorb_interrupt(self) -> bool:
        """Undo the task cancellation requested by ``interrupt``.

        Returns True when that was the task's only pending cancellation, in
        which case the turn may finish normally. Any other cancellation
        (the caller's own) is left in place.
        """
        if not self._task_cancel_pending or self.task is None:
            return False
        self._task_cancel_pending = False
        return self.task.uncancel() == 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def released(self) -> bool:
        return self._released

    @property
    def active(self) -> bool:
        """True while writes through this token are allowed."""
        return not self._cancelled and not self._released

    def __repr__(self) -> str:
        return (
            f"GenerationToken(chat_id={self.chat_id!r}, slot={self.slot!r}, "
            f"cancelled={self._cancelled}, released={self._released})"
        )


class GenerationRegistry:
    """Tracks the in-flight token of every chat."""

    def __init__(self) -> None:
        self._tokens: dict[str, GenerationToken] = {}

    def acquire(self, chat_id: str) -> GenerationToken:
        """Take the chat's lock or raise GenerationInProgressError."""
        if chat_id in self._tokens:
            raise GenerationInProgressError(chat_id)
        token = GenerationToken(chat_id)
        self._tokens[chat_id] = token
        return token

    def release(self, token: GenerationToken) -> None:
        token._released = True
        if self._tokens.get(token.chat_id) is token:
            del self._tokens[token.chat_id]

    def current(self, chat_id: str) -> Optional[GenerationToken]:
        return self._tokens.get(chat_id)

    def writing_to(self, chat_id: str, message_id: str) -> Optional[GenerationToken]:
        """The chat's in-flight token if its slot targets *message_id*."""
        token = self._tokens.get(chat_id)
        if token is not None and token.slot is not None and token.slot.message_id == message_id:
            return token
        return None

    def is_generating(self, chat_id: str) -> bool:
        return chat_id in self._tokens

    def cancel(self, chat_id: str) -> Optional[GenerationToken]:
        """Stop the chat's in-flight turn and free its lock at once.

        Returns the stopped token, or None when nothing was generating.
        The turn's task is interrupted; it keeps whatever text already
        reached the slot.
        """
        token = self._tokens.get(chat_id)
        if token is None:
            return None
        token.interrupt()
        self.release(token)
        log_event(
            "turn_cancel_requested",
            level=logging.INFO,
            chat_id=chat_id,
            message_id=token.slot.message_id if token.slot else None,
        )
        return token
