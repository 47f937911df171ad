"""Template library: built-in prompt templates plus the user's own."""

from __future__ import annotations

import dataclasses
from typing import Any, Optional

from ..domain.templates import (
    BUILTIN_TEMPLATE_IDS,
    BUILTIN_TEMPLATES,
    PromptTemplate,
    get_template,
    system_prompt_for,
)
from ..errors import TemplateNotFoundError, TemplateProtectedError
from ..logging import LOG_NAME_LIMIT, log_event, summarize_text
from .state import ChatState

_UPDATABLE_FIELDS = ("name", "description", "system_prompt", "category", "tags")


class TemplateLibrary:
    """Looks up, adds, edits and deletes prompt templates.

    Editing a built-in stores an edited copy under the same id, which then
    shadows the packaged one. Built-ins themselves cannot be deleted.
    """

    def __init__(self, state: ChatState):
        self._state = state

    def find(self, template_id: Optional[str]) -> Optional[PromptTemplate]:
        return get_template(template_id, self._state.templates)

    def get(self, template_id: str) -> PromptTemplate:
        """Raise TemplateNotFoundError if not found."""
        template = self.find(template_id)
        if template is None:
            raise TemplateNotFoundError(template_id)
        return template

    def system_prompt_for(self, template_id: Optional[str]) -> str:
        return system_prompt_for(template_id, self._state.templates)

    def list_templates(self) -> list[PromptTemplate]:
        """Built-ins in packaged order, then user templates by creation."""
        templates = [self.find(builtin.id) or builtin for builtin in BUILTIN_TEMPLATES]
        templates.extend(
            sorted(
                (t for t in self._state.templates.values() if not t.builtin),
                key=lambda t: (t.created_at is None, t.created_at),
            )
        )
        return templates

    def favorites(self) -> list[PromptTemplate]:
        """Favorite templates in the order they were marked."""
        found = (self.find(template_id) for template_id in self._state.favorite_template_ids)
        return [template for template in found if template is not None]

    def is_favorite(self, template_id: str) -> bool:
        return template_id in self._state.favorite_template_ids

    def add(
        self,
        name: str,
        system_prompt: str,
        *,
        description: str = "",
        category: str = "",
        tags: Optional[list[str]] = None,
    ) -> PromptTemplate:
        name = str(name).strip()
        if not name:
            raise ValueError("Template name must not be empty")
        template = PromptTemplate(
            id=self._state.new_id(),
            name=name,
            description=description,
            system_prompt=system_prompt,
            category=category,
            tags=tuple(str(tag) for tag in tags or ()),
            builtin=False,
            created_at=self._state.clock.now(),
        )
        self._state.templates[template.id] = template
        log_event(
            "template_added",
            template_id=template.id,
            name=summarize_text(template.name, limit=LOG_NAME_LIMIT),
        )
        return template

    def update(self, template_id: str, **fields: Any) -> PromptTemplate:
        """Replace user-editable fields of a template."""
        template = self.get(template_id)
        for key in fields:
            if key not in _UPDATABLE_FIELDS:
                raise ValueError(f"Unknown template field: {key}")
        if "tags" in fields:
            fields["tags"] = tuple(str(tag) for tag in fields["tags"] or ())
        if "name" in fields and not str(fields["name"]).strip():
            raise ValueError("Template name must not be empty")
        updated = dataclasses.replace(template, **fields)
        self._state.templates[template_id] = updated
        log_event("template_updated", template_id=template_id, fields=sorted(fields))
        return updated

    def delete(self, template_id: str, *, strict: bool = False) -> bool:
        """Delete a user template.

        Built-ins are refused: a no-op returning ``False``, or
        ``TemplateProtectedError`` when *strict* is set. Chats created from a
        deleted template fall back to the generic system prompt.
        """
        self.get(template_id)
        if template_id in BUILTIN_TEMPLATE_IDS:
            log_event("template_deleted", template_id=template_id, refused=True)
            if strict:
                raise TemplateProtectedError(template_id)
            return False
        del self._state.templates[template_id]
        self._state.id_set.discard(template_id)
        if template_id in self._state.favorite_template_ids:
            self._state.favorite_template_ids.remove(template_id)
        log_event("template_deleted", template_id=template_id, refused=False)
        return True

    def toggle_favorite(self, template_id: str) -> bool:
        """Flip the favorite mark; returns whether the template is now a favorite."""
        self.get(template_id)
        favorites = self._state.favorite_template_ids
        if template_id in favorites:
            favorites.remove(template_id)
            return False
        favorites.append(template_id)
        return True
