"""Typed chat/branch/message domain models and serialization helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, TypeAlias

from ..time_utils import parse_utc_iso, to_utc_iso

MessageRole = Literal["user", "assistant", "system"]
MESSAGE_ROLES: tuple[str, ...] = ("user", "assistant", "system")

_METADATA_KEYS = {"model_used", "latency_ms", "edited_from"}
_CHAT_KEYS = {
    "id",
    "title",
    "template_id",
    "default_branch_id",
    "active_branch_id",
    "message_count",
    "created_utc",
    "updated_utc",
    "is_pinned",
    "tags",
    "selected_model",
    "folder_id",
}


def _require_object(raw: Any, what: str) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise ValueError(f"Invalid {what}: expected object")
    return dict(raw)


def _require_str(payload: dict[str, Any], key: str, what: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise ValueError(f"Invalid {what}: missing '{key}'")
    return value


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def _parse_timestamp(payload: dict[str, Any], key: str, what: str) -> datetime:
    try:
        return parse_utc_iso(payload.get(key))  # type: ignore[arg-type]
    except ValueError as e:
        raise ValueError(f"Invalid {what}: bad '{key}'") from e


# ---------------------------------------------------------------------------
# Text slots
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class PrimarySlot:
    """The message's own ``content`` field."""

    message_id: str
    kind: Literal["primary"] = "primary"

    @property
    def index(self) -> int:
        return 0


@dataclass(slots=True, frozen=True)
class VariantSlot:
    """One regenerated alternative; ``index`` is 1-based into ``variants``."""

    message_id: str
    index: int
    kind: Literal["variant"] = "variant"


TextSlot: TypeAlias = PrimarySlot | VariantSlot


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class MessageMetadata:
    """Provenance recorded alongside a message."""

    model_used: str | None = None
    latency_ms: float | None = None
    edited_from: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Any) -> MessageMetadata:
        if raw is None:
            return cls()
        payload = _require_object(raw, "message metadata")
        latency = payload.get("latency_ms")
        return cls(
            model_used=_optional_str(payload.get("model_used")),
            latency_ms=float(latency) if isinstance(latency, (int, float)) else None,
            edited_from=_optional_str(payload.get("edited_from")),
            extras={k: v for k, v in payload.items() if k not in _METADATA_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.model_used is not None:
            payload["model_used"] = self.model_used
        if self.latency_ms is not None:
            payload["latency_ms"] = self.latency_ms
        if self.edited_from is not None:
            payload["edited_from"] = self.edited_from
        payload.update(self.extras)
        return payload


@dataclass(slots=True)
class MessageDraft:
    """Caller-supplied fields for a message about to be appended."""

    role: MessageRole
    content: str = ""
    streaming: bool = False
    metadata: MessageMetadata = field(default_factory=MessageMetadata)


@dataclass(slots=True)
class Message:
    """One turn in a chat.

    ``branch_id`` is the branch the message was appended to and never changes.
    ``active_variant`` is 0 for ``content`` and ``1..len(variants)`` for a
    regenerated alternative.
    """

    id: str
    role: MessageRole
    content: str
    branch_id: str
    created_at: datetime
    parent_message_id: str | None = None
    streaming: bool = False
    variants: list[str] = field(default_factory=list)
    active_variant: int = 0
    metadata: MessageMetadata = field(default_factory=MessageMetadata)

    @property
    def active_slot(self) -> TextSlot:
        return slot_for(self, self.active_variant)

    def has_slot(self, index: int) -> bool:
        return 0 <= index <= len(self.variants)

    @classmethod
    def from_raw(cls, raw_message: Any, *, index: int | None = None) -> Message:
        """Create a typed message from its persisted dict payload."""
        what = "message" if index is None else f"message at index {index}"
        payload = _require_object(raw_message, what)

        role = payload.get("role")
        if role not in MESSAGE_ROLES:
            raise ValueError(f"Invalid {what}: unknown role {role!r}")

        content = payload.get("content", "")
        if not isinstance(content, str):
            raise ValueError(f"Invalid {what}: content must be a string")

        raw_variants = payload.get("variants") or []
        if not isinstance(raw_variants, list):
            raise ValueError(f"Invalid {what}: variants must be a list")
        variants = [str(v) for v in raw_variants]
        if variants and role != "assistant":
            raise ValueError(f"Invalid {what}: only assistant messages hold variants")

        active_variant = payload.get("active_variant", 0)
        if (
            isinstance(active_variant, bool)
            or not isinstance(active_variant, int)
            or not 0 <= active_variant <= len(variants)
        ):
            # Out-of-range selections from older files fall back to the primary text.
            active_variant = 0

        return cls(
            id=_require_str(payload, "id", what),
            role=role,
            content=content,
            branch_id=_require_str(payload, "branch_id", what),
            created_at=_parse_timestamp(payload, "created_utc", what),
            parent_message_id=_optional_str(payload.get("parent_message_id")),
            streaming=bool(payload.get("streaming", False)),
            variants=variants,
            active_variant=active_variant,
            metadata=MessageMetadata.from_raw(payload.get("metadata")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize message to persisted dict shape."""
        payload: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "branch_id": self.branch_id,
            "parent_message_id": self.parent_message_id,
            "created_utc": to_utc_iso(self.created_at),
            "streaming": self.streaming,
        }
        if self.variants:
            payload["variants"] = list(self.variants)
            payload["active_variant"] = self.active_variant
        metadata = self.metadata.to_dict()
        if metadata:
            payload["metadata"] = metadata
        return payload


def slot_for(message: Message, index: int) -> TextSlot:
    """Build the slot reference for *index* on *message* (no range check)."""
    if index == 0:
        return PrimarySlot(message.id)
    return VariantSlot(message.id, index)


def slot_text(message: Message, slot: TextSlot) -> str:
    """Read the text held by *slot*."""
    if isinstance(slot, PrimarySlot):
        return message.content
    return message.variants[slot.index - 1]


def write_slot(message: Message, slot: TextSlot, text: str) -> None:
    """Replace the text held by *slot*."""
    if isinstance(slot, PrimarySlot):
        message.content = text
    else:
        message.variants[slot.index - 1] = text


def current_text(message: Message) -> str:
    """Return the text currently displayed for *message*."""
    if not message.has_slot(message.active_variant):
        return message.content
    return slot_text(message, message.active_slot)


# ---------------------------------------------------------------------------
# Branches and chats
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class Branch:
    """A named line of conversation, optionally forked from a parent branch."""

    id: str
    chat_id: str
    name: str
    created_at: datetime
    head_message_id: str | None = None
    parent_branch_id: str | None = None
    fork_from_message_id: str | None = None

    @property
    def is_fork(self) -> bool:
        return self.parent_branch_id is not None

    @classmethod
    def from_raw(cls, raw_branch: Any) -> Branch:
        payload = _require_object(raw_branch, "branch")
        parent_branch_id = _optional_str(payload.get("parent_branch_id"))
        fork_from_message_id = _optional_str(payload.get("fork_from_message_id"))
        if parent_branch_id is not None and fork_from_message_id is None:
            raise ValueError("Invalid branch: parent branch set without fork point")
        return cls(
            id=_require_str(payload, "id", "branch"),
            chat_id=_require_str(payload, "chat_id", "branch"),
            name=str(payload.get("name") or ""),
            created_at=_parse_timestamp(payload, "created_utc", "branch"),
            head_message_id=_optional_str(payload.get("head_message_id")),
            parent_branch_id=parent_branch_id,
            fork_from_message_id=fork_from_message_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "chat_id": self.chat_id,
            "name": self.name,
            "head_message_id": self.head_message_id,
            "parent_branch_id": self.parent_branch_id,
            "fork_from_message_id": self.fork_from_message_id,
            "created_utc": to_utc_iso(self.created_at),
        }


@dataclass(slots=True)
class Chat:
    """Top-level conversation record with its default/active branch pointers."""

    id: str
    title: str
    template_id: str
    default_branch_id: str
    active_branch_id: str
    created_at: datetime
    updated_at: datetime
    message_count: int = 0
    is_pinned: bool = False
    tags: list[str] = field(default_factory=list)
    selected_model: str | None = None
    folder_id: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw_chat: Any) -> Chat:
        payload = _require_object(raw_chat, "chat")
        count = payload.get("message_count", 0)
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise ValueError("Invalid chat: message_count must be a non-negative integer")
        tags = payload.get("tags") or []
        if not isinstance(tags, list):
            raise ValueError("Invalid chat: tags must be a list")
        default_branch_id = _require_str(payload, "default_branch_id", "chat")
        return cls(
            id=_require_str(payload, "id", "chat"),
            title=str(payload.get("title") or ""),
            template_id=str(payload.get("template_id") or ""),
            default_branch_id=default_branch_id,
            active_branch_id=_optional_str(payload.get("active_branch_id"))
            or default_branch_id,
            created_at=_parse_timestamp(payload, "created_utc", "chat"),
            updated_at=_parse_timestamp(payload, "updated_utc", "chat"),
            message_count=count,
            is_pinned=bool(payload.get("is_pinned", False)),
            tags=[str(tag) for tag in tags],
            selected_model=_optional_str(payload.get("selected_model")),
            folder_id=_optional_str(payload.get("folder_id")),
            extras={k: v for k, v in payload.items() if k not in _CHAT_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "template_id": self.template_id,
            "default_branch_id": self.default_branch_id,
            "active_branch_id": self.active_branch_id,
            "message_count": self.message_count,
            "created_utc": to_utc_iso(self.created_at),
            "updated_utc": to_utc_iso(self.updated_at),
            "is_pinned": self.is_pinned,
            "tags": list(self.tags),
            "selected_model": self.selected_model,
            "folder_id": self.folder_id,
        }
        payload.update(self.extras)
        return payload


@dataclass(slots=True)
class Folder:
    """A named group of chats; chats point at it through ``Chat.folder_id``."""

    id: str
    name: str
    created_at: datetime

    @classmethod
    def from_raw(cls, raw_folder: Any) -> Folder:
        payload = _require_object(raw_folder, "folder")
        return cls(
            id=_require_str(payload, "id", "folder"),
            name=str(payload.get("name") or ""),
            created_at=_parse_timestamp(payload, "created_utc", "folder"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "created_utc": to_utc_iso(self.created_at),
        }
