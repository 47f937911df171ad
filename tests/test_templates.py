"""Tests for prompt template lookup and serialization."""

from datetime import datetime, timezone

import pytest

from forkchat.domain.templates import (
    BUILTIN_TEMPLATES,
    FALLBACK_SYSTEM_PROMPT,
    PromptTemplate,
    get_template,
    system_prompt_for,
)


def test_builtin_template_ids_are_unique():
    ids = [template.id for template in BUILTIN_TEMPLATES]
    assert len(ids) == len(set(ids))
    assert {"default", "coder", "writer", "analyst", "translator"} <= set(ids)


def test_get_template_unknown_returns_none():
    assert get_template("nope") is None
    assert get_template(None) is None


def test_system_prompt_for_known_and_unknown_templates():
    assert system_prompt_for("coder") == get_template("coder").system_prompt
    assert system_prompt_for("missing") == FALLBACK_SYSTEM_PROMPT


def test_user_templates_shadow_builtins():
    override = PromptTemplate(
        id="coder",
        name="Rustacean",
        description="",
        system_prompt="Only write Rust.",
    )
    user = {"coder": override}

    assert get_template("coder", user) is override
    assert system_prompt_for("coder", user) == "Only write Rust."
    assert get_template("writer", user).name == "Writer"


def test_blank_template_prompt_falls_back():
    blank = PromptTemplate(id="t1", name="Blank", description="", system_prompt="  ", builtin=False)
    assert system_prompt_for("t1", {"t1": blank}) == FALLBACK_SYSTEM_PROMPT


def test_template_round_trip():
    template = PromptTemplate(
        id="t1",
        name="Reviewer",
        description="Code review",
        system_prompt="Review code.",
        category="Development",
        tags=("review",),
        builtin=False,
        created_at=datetime(2026, 2, 1, tzinfo=timezone.utc),
    )

    payload = template.to_dict()

    assert payload["created_utc"] == "2026-02-01T00:00:00.000000Z"
    assert PromptTemplate.from_raw(payload) == template


def test_template_from_raw_rejects_bad_payloads():
    with pytest.raises(ValueError, match="missing 'id'"):
        PromptTemplate.from_raw({"name": "x"})
    with pytest.raises(ValueError, match="tags must be a list"):
        PromptTemplate.from_raw({"id": "t1", "tags": "x"})
