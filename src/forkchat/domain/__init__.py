"""Typed domain models used at module boundaries."""

from .chat import (
    MESSAGE_ROLES,
    Branch,
    Chat,
    Folder,
    Message,
    MessageDraft,
    MessageMetadata,
    MessageRole,
    PrimarySlot,
    TextSlot,
    VariantSlot,
    current_text,
    slot_for,
    slot_text,
    write_slot,
)
from .config import RuntimeProfile, load_profile
from .templates import (
    BUILTIN_TEMPLATE_IDS,
    BUILTIN_TEMPLATES,
    PromptTemplate,
    get_template,
    system_prompt_for,
)

__all__ = [
    "BUILTIN_TEMPLATE_IDS",
    "BUILTIN_TEMPLATES",
    "MESSAGE_ROLES",
    "Branch",
    "Chat",
    "Folder",
    "Message",
    "MessageDraft",
    "MessageMetadata",
    "MessageRole",
    "PrimarySlot",
    "PromptTemplate",
    "RuntimeProfile",
    "TextSlot",
    "VariantSlot",
    "current_text",
    "get_template",
    "load_profile",
    "slot_for",
    "slot_text",
    "system_prompt_for",
    "write_slot",
]
