"""Contract between the turn driver and whatever talks to a model."""

from __future__ import annotations

from collections.abc import Sequence
from typing import AsyncGenerator, Protocol

from ..constants import FAILURE_MARKER
from ..domain.chat import Message, current_text


class ModelProvider(Protocol):
    """Anything that turns a role/content list into reply text chunks.

    Streaming providers yield deltas as they arrive; with ``stream=False``
    a provider yields the complete reply once. Failures are raised. The
    result must be an async generator: the turn driver closes it early
    when a reply is stopped.
    """

    def send_message(
        self,
        messages: list[dict[str, str]],
        model: str,
        *,
        stream: bool = True,
    ) -> AsyncGenerator[str, None]: ...


def is_failed_turn(message: Message) -> bool:
    """True for assistant messages that record a failed turn."""
    return message.role == "assistant" and current_text(message).startswith(FAILURE_MARKER)


def format_request_messages(
    history: Sequence[Message],
    system_prompt: str | None = None,
) -> list[dict[str, str]]:
    """Build the provider payload from resolved history.

    Failed turns and still-empty streaming placeholders are left out.
    """
    formatted: list[dict[str, str]] = []
    if system_prompt:
        formatted.append({"role": "system", "content": system_prompt})
    for message in history:
        if is_failed_turn(message):
            continue
        text = current_text(message)
        if message.streaming and not text:
            continue
        formatted.append({"role": message.role, "content": text})
    return formatted
