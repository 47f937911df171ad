"""Model-turn generation: locking, provider contract and the turn driver."""

from .lock import GenerationRegistry, GenerationToken
from .provider import ModelProvider, format_request_messages, is_failed_turn
from .turn import SlotWriter, TurnResult, failure_text, run_turn

__all__ = [
    "GenerationRegistry",
    "GenerationToken",
    "ModelProvider",
    "SlotWriter",
    "TurnResult",
    "failure_text",
    "format_request_messages",
    "is_failed_turn",
    "run_turn",
]
