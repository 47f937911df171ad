"""System-prompt templates a chat can be created from.

Built-in templates ship with the package. User templates live in the chat
state; a user template may also override a built-in by reusing its id.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from ..time_utils import parse_utc_iso, to_utc_iso

FALLBACK_SYSTEM_PROMPT = "You are a helpful assistant."


@dataclass(frozen=True, slots=True)
class PromptTemplate:
    """Named system prompt shown when starting a chat."""

    id: str
    name: str
    description: str
    system_prompt: str
    category: str = ""
    tags: tuple[str, ...] = ()
    builtin: bool = True
    created_at: Optional[datetime] = None

    @classmethod
    def from_raw(cls, raw_template: Any) -> PromptTemplate:
        if not isinstance(raw_template, dict):
            raise ValueError("Invalid template: expected object")
        template_id = raw_template.get("id")
        if not isinstance(template_id, str) or not template_id:
            raise ValueError("Invalid template: missing 'id'")
        tags = raw_template.get("tags") or []
        if not isinstance(tags, list):
            raise ValueError("Invalid template: tags must be a list")
        created = raw_template.get("created_utc")
        try:
            created_at = parse_utc_iso(created) if created else None
        except ValueError as e:
            raise ValueError("Invalid template: bad 'created_utc'") from e
        return cls(
            id=template_id,
            name=str(raw_template.get("name") or ""),
            description=str(raw_template.get("description") or ""),
            system_prompt=str(raw_template.get("system_prompt") or ""),
            category=str(raw_template.get("category") or ""),
            tags=tuple(str(tag) for tag in tags),
            builtin=bool(raw_template.get("builtin", False)),
            created_at=created_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "system_prompt": self.system_prompt,
            "category": self.category,
            "tags": list(self.tags),
            "builtin": self.builtin,
            "created_utc": to_utc_iso(self.created_at) if self.created_at else None,
        }


BUILTIN_TEMPLATES: tuple[PromptTemplate, ...] = (
    PromptTemplate(
        id="default",
        name="General assistant",
        description="Helper for any task",
        category="General",
        system_prompt="You are a helpful AI assistant. Answer precisely and to the point.",
    ),
    PromptTemplate(
        id="coder",
        name="Programmer",
        description="Writes and debugs code",
        category="Development",
        system_prompt=(
            "You are an experienced programmer. Help write clean, efficient, "
            "commented code."
        ),
    ),
    PromptTemplate(
        id="writer",
        name="Writer",
        description="Helps with writing text",
        category="Creative",
        system_prompt="You are a talented writer. Help produce high-quality text.",
    ),
    PromptTemplate(
        id="analyst",
        name="Analyst",
        description="Helps analyze data",
        category="Business",
        system_prompt="You are a business analyst. Help analyze data and make decisions.",
    ),
    PromptTemplate(
        id="translator",
        name="Translator",
        description="Translates text",
        category="Languages",
        system_prompt=(
            "You are a professional translator. Translate accurately while "
            "preserving style."
        ),
    ),
)


BUILTIN_TEMPLATE_IDS = frozenset(template.id for template in BUILTIN_TEMPLATES)


def get_template(
    template_id: str | None,
    user_templates: Mapping[str, PromptTemplate] | None = None,
) -> PromptTemplate | None:
    """Look up a template by id; user templates shadow built-ins."""
    if template_id is None:
        return None
    if user_templates and template_id in user_templates:
        return user_templates[template_id]
    for template in BUILTIN_TEMPLATES:
        if template.id == template_id:
            return template
    return None


def system_prompt_for(
    template_id: str | None,
    user_templates: Mapping[str, PromptTemplate] | None = None,
) -> str:
    """System prompt for *template_id*, falling back to a generic assistant prompt."""
    template = get_template(template_id, user_templates)
    if template is None or not template.system_prompt.strip():
        return FALLBACK_SYSTEM_PROMPT
    return template.system_prompt
