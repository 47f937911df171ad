"""Assistant turn driver.

A turn moves one text slot through ``pending -> streaming -> complete``.
Model errors never propagate out of ``run_turn``: they become the slot's
final text, prefixed with the failure marker.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass
from typing import Literal

from ..constants import EMPTY_RESPONSE_TEXT, FAILURE_MARKER
from ..domain.chat import TextSlot
from ..errors import UpstreamFailure
from ..logging import log_event, sanitize_error_message
from ..store.messages import MessageStore
from .lock import GenerationRegistry, GenerationToken
from .provider import ModelProvider

TurnStatus = Literal["completed", "failed", "cancelled"]


def failure_text(detail: str) -> str:
    """Render a failed turn as conversation content."""
    return f"{FAILURE_MARKER} {detail}"


@dataclass(slots=True, frozen=True)
class TurnResult:
    """Outcome of one assistant turn."""

    status: TurnStatus
    message_id: str
    slot: TextSlot
    text: str
    latency_ms: float
    error: str | None = None


class SlotWriter:
    """Receives provider output and writes it into the token's slot.

    Every write first checks the token, so a cancelled or released turn
    stops touching the message immediately.
    """

    def __init__(self, store: MessageStore, chat_id: str, token: GenerationToken):
        if token.slot is None:
            raise ValueError("Generation token is not bound to a slot")
        self._store = store
        self._chat_id = chat_id
        self._token = token
        self._slot: TextSlot = token.slot
        self._text = ""

    @property
    def slot(self) -> TextSlot:
        return self._slot

    @property
    def text(self) -> str:
        return self._text

    def _write(self, text: str) -> bool:
        if not self._token.active:
            return False
        if self._store.find(self._chat_id, self._slot.message_id) is None:
            # Message deleted under the turn.
            self._token.cancel()
            return False
        self._text = text
        self._store.write_slot(self._chat_id, self._slot, text)
        return True

    def push_delta(self, delta: str) -> bool:
        """Append a streamed chunk; False once the turn is cancelled."""
        return self._write(self._text + delta)

    def push_final(self, text: str) -> bool:
        """Replace the slot with a complete reply."""
        return self._write(text)

    def push_error(self, detail: str) -> bool:
        return self._write(failure_text(detail))

    def finish(self) -> None:
        """Clear the streaming flag if the message still exists."""
        if self._store.find(self._chat_id, self._slot.message_id) is not None:
            self._store.set_streaming(self._chat_id, self._slot.message_id, False)


async def run_turn(
    provider: ModelProvider,
    request_messages: list[dict[str, str]],
    *,
    model: str,
    store: MessageStore,
    registry: GenerationRegistry,
    token: GenerationToken,
    stream: bool = True,
) -> TurnResult:
    """Drive one model call into the slot bound to *token*.

    The token is released and the message's streaming flag cleared on every
    exit path. A stop through the registry interrupts the awaiting task and
    ends the turn as ``cancelled``; any other task cancellation is
    propagated after that cleanup.
    """
    chat_id = token.chat_id
    writer = SlotWriter(store, chat_id, token)
    slot = writer.slot
    token.attach(asyncio.current_task())
    started = time.perf_counter()
    status: TurnStatus = "completed"
    error_text: str | None = None

    log_event(
        "turn_started",
        chat_id=chat_id,
        message_id=slot.message_id,
        slot=slot.index,
        model=model,
        request_messages=len(request_messages),
    )

    try:
        try:
            chunks: list[str] = []
            async with aclosing(
                provider.send_message(request_messages, model, stream=stream)
            ) as replies:
                async for chunk in replies:
                    if not token.active:
                        break
                    if stream:
                        writer.push_delta(chunk)
                    else:
                        chunks.append(chunk)
            if not stream:
                writer.push_final("".join(chunks))
        except asyncio.CancelledError:
            token.cancel()
            if not token.absorb_interrupt():
                raise
            status = "cancelled"
        except Exception as e:
            raise UpstreamFailure(sanitize_error_message(str(e) or type(e).__name__)) from e
    except UpstreamFailure as failure:
        if token.cancelled:
            # Stopped while the provider was failing; the partial text stays.
            status = "cancelled"
        else:
            status = "failed"
            error_text = str(failure)
            cause = failure.__cause__
            writer.push_error(f"Error: {error_text}")
            log_event(
                "turn_failed",
                level=logging.ERROR,
                chat_id=chat_id,
                message_id=slot.message_id,
                slot=slot.index,
                model=model,
                error_type=type(cause).__name__ if cause is not None else None,
                error=error_text,
            )
    else:
        if token.cancelled:
            status = "cancelled"
        elif not writer.text.strip():
            status = "failed"
            error_text = EMPTY_RESPONSE_TEXT
            writer.push_error(EMPTY_RESPONSE_TEXT)
    finally:
        owner = registry.writing_to(chat_id, slot.message_id)
        # A newer turn on the same message owns its streaming flag.
        if owner is None or owner is token:
            writer.finish()
        registry.release(token)

    latency_ms = round((time.perf_counter() - started) * 1000, 1)
    if status == "cancelled":
        log_event(
            "turn_cancelled",
            chat_id=chat_id,
            message_id=slot.message_id,
            slot=slot.index,
            model=model,
            output_chars=len(writer.text),
        )
    elif status == "completed":
        log_event(
            "turn_completed",
            chat_id=chat_id,
            message_id=slot.message_id,
            slot=slot.index,
            model=model,
            latency_ms=latency_ms,
            output_chars=len(writer.text),
        )

    return TurnResult(
        status=status,
        message_id=slot.message_id,
        slot=slot,
        text=writer.text,
        latency_ms=latency_ms,
        error=error_text,
    )
