"""Tests for user prompt templates and favorites."""

import pytest

from forkchat.domain.templates import BUILTIN_TEMPLATES, FALLBACK_SYSTEM_PROMPT, get_template
from forkchat.errors import TemplateNotFoundError, TemplateProtectedError
from forkchat.service import ChatService
from test_helpers import FakeProvider, make_service


@pytest.fixture
def service():
    return ChatService()


def test_add_template_lists_after_builtins(service):
    template = service.add_template(
        "Reviewer",
        "You review pull requests.",
        description="Code review",
        category="Development",
        tags=["review", "code"],
    )

    listed = service.list_templates()
    assert [t.id for t in listed[: len(BUILTIN_TEMPLATES)]] == [t.id for t in BUILTIN_TEMPLATES]
    assert listed[-1] == template
    assert template.builtin is False
    assert template.tags == ("review", "code")
    assert template.created_at is not None


def test_add_template_rejects_blank_name(service):
    with pytest.raises(ValueError, match="must not be empty"):
        service.add_template("  ", "prompt")


def test_chat_from_user_template_uses_its_name(service):
    template = service.add_template("Reviewer", "You review pull requests.")

    chat = service.create_chat(template.id)

    assert chat.title == "Reviewer"
    assert service.templates.system_prompt_for(chat.template_id) == "You review pull requests."


def test_update_user_template(service):
    template = service.add_template("Reviewer", "Old prompt")

    updated = service.update_template(template.id, system_prompt="New prompt", tags=["x"])

    assert updated.system_prompt == "New prompt"
    assert updated.tags == ("x",)
    assert updated.name == "Reviewer"
    assert service.templates.get(template.id) == updated


def test_update_rejects_unknown_fields_and_templates(service):
    template = service.add_template("Reviewer", "prompt")

    with pytest.raises(ValueError, match="Unknown template field"):
        service.update_template(template.id, builtin=False)
    with pytest.raises(ValueError, match="must not be empty"):
        service.update_template(template.id, name=" ")
    with pytest.raises(TemplateNotFoundError):
        service.update_template("missing", name="x")


def test_updating_a_builtin_shadows_it_without_touching_the_package(service):
    service.update_template("coder", system_prompt="Only write Rust.")

    assert service.templates.get("coder").system_prompt == "Only write Rust."
    assert service.templates.get("coder").builtin is True
    assert get_template("coder").system_prompt != "Only write Rust."
    assert [t.id for t in service.list_templates()].count("coder") == 1


def test_delete_user_template_and_its_favorite(service):
    template = service.add_template("Reviewer", "prompt")
    service.toggle_favorite_template(template.id)

    assert service.delete_template(template.id) is True

    assert service.templates.find(template.id) is None
    assert not service.templates.is_favorite(template.id)
    assert template.id not in service.state.id_set


def test_builtin_templates_cannot_be_deleted(service):
    assert service.delete_template("default") is False
    assert service.templates.get("default").id == "default"

    with pytest.raises(TemplateProtectedError):
        service.delete_template("default", strict=True)
    with pytest.raises(TemplateNotFoundError):
        service.delete_template("missing")


def test_chat_falls_back_when_its_template_is_deleted(service):
    template = service.add_template("Reviewer", "prompt")
    chat = service.create_chat(template.id)

    service.delete_template(template.id)

    assert service.templates.system_prompt_for(chat.template_id) == FALLBACK_SYSTEM_PROMPT


def test_toggle_favorite(service):
    assert service.toggle_favorite_template("writer") is True
    assert service.toggle_favorite_template("coder") is True
    assert [t.id for t in service.templates.favorites()] == ["writer", "coder"]

    assert service.toggle_favorite_template("writer") is False
    assert [t.id for t in service.templates.favorites()] == ["coder"]

    with pytest.raises(TemplateNotFoundError):
        service.toggle_favorite_template("missing")


@pytest.mark.asyncio
async def test_turn_sends_the_user_template_prompt():
    provider = FakeProvider(["ok"])
    service = make_service(provider)
    template = service.add_template("Pirate", "Talk like a pirate.")
    chat = service.create_chat(template.id)

    await service.send_message(chat.id, "hello")

    assert provider.calls[0]["messages"][0] == {
        "role": "system",
        "content": "Talk like a pirate.",
    }
