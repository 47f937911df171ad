"""Tests for ChatService send/edit/regenerate protocols."""

import asyncio
import json
from unittest.mock import patch

import pytest

from forkchat.errors import (
    ForkChatError,
    GenerationInProgressError,
    ProviderNotConfiguredError,
    VariantNotAllowedError,
)
from forkchat.generation.openai_provider import OpenAICompatibleProvider
from forkchat.persistence import load_state
from forkchat.service import ChatService, build_provider
from test_helpers import FakeProvider, make_profile, make_service, seed_two_messages


async def _wait_for(predicate):
    for _ in range(200):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


def _last_text(service, chat_id):
    resolved = service.resolve(chat_id)
    return resolved[-1].content if resolved else None


# ---------------------------------------------------------------------------
# send_message
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_send_message_appends_user_and_reply():
    provider = FakeProvider(["Hi", "!"])
    service = make_service(provider)
    chat = service.create_chat("coder")

    result = await service.send_message(chat.id, "  hello  ")

    resolved = service.resolve(chat.id)
    assert [(m.role, m.content) for m in resolved] == [("user", "hello"), ("assistant", "Hi!")]
    assert result.status == "completed"
    assert result.message_id == resolved[1].id
    assert resolved[1].metadata.model_used == "gpt-test"
    assert resolved[1].metadata.latency_ms is not None
    assert service.get_chat(chat.id).message_count == 2

    request = provider.calls[0]["messages"]
    assert request[0]["role"] == "system"
    assert "programmer" in request[0]["content"]
    assert request[1:] == [{"role": "user", "content": "hello"}]


@pytest.mark.asyncio
async def test_send_message_continues_history():
    provider = FakeProvider(["ok"])
    service = make_service(provider)
    chat = service.create_chat()

    await service.send_message(chat.id, "one")
    await service.send_message(chat.id, "two")

    request = provider.calls[1]["messages"][1:]
    assert request == [
        {"role": "user", "content": "one"},
        {"role": "assistant", "content": "ok"},
        {"role": "user", "content": "two"},
    ]


@pytest.mark.asyncio
async def test_send_message_rejects_empty_text():
    service = make_service()
    chat = service.create_chat()

    with pytest.raises(ValueError, match="empty"):
        await service.send_message(chat.id, "   ")
    assert service.get_chat(chat.id).message_count == 0


@pytest.mark.asyncio
async def test_send_message_without_provider():
    service = ChatService(profile=make_profile())
    chat = service.create_chat()

    with pytest.raises(ProviderNotConfiguredError):
        await service.send_message(chat.id, "hi")
    assert service.get_chat(chat.id).message_count == 0


@pytest.mark.asyncio
async def test_model_selection_order():
    provider = FakeProvider(["ok"])
    service = make_service(provider)
    chat = service.create_chat(model="chat-model")

    await service.send_message(chat.id, "a")
    await service.send_message(chat.id, "b", model="explicit")
    service.update_chat(chat.id, selected_model=None)
    await service.send_message(chat.id, "c")

    assert [call["model"] for call in provider.calls] == ["chat-model", "explicit", "gpt-test"]


@pytest.mark.asyncio
async def test_send_message_failure_is_stored_and_skipped_later():
    provider = FakeProvider([], error=RuntimeError("upstream down"))
    service = make_service(provider)
    chat = service.create_chat()

    result = await service.send_message(chat.id, "first")

    assert result.status == "failed"
    assert service.resolve(chat.id)[-1].content == "❌ Error: upstream down"

    provider.error = None
    provider.chunks = ["fine"]
    await service.send_message(chat.id, "second")
    request = provider.calls[1]["messages"][1:]
    assert request == [
        {"role": "user", "content": "first"},
        {"role": "user", "content": "second"},
    ]


@pytest.mark.asyncio
async def test_second_turn_in_same_chat_is_refused():
    gate = asyncio.Event()
    provider = FakeProvider(["Hel", "lo"], gate=gate)
    service = make_service(provider)
    chat = service.create_chat()
    other = service.create_chat()

    task = asyncio.create_task(service.send_message(chat.id, "first"))
    await provider.started.wait()

    with pytest.raises(GenerationInProgressError):
        await service.send_message(chat.id, "second")
    assert service.get_chat(chat.id).message_count == 2
    assert service.generations.is_generating(chat.id)
    assert not service.generations.is_generating(other.id)

    gate.set()
    result = await task
    assert result.text == "Hello"
    assert not service.generations.is_generating(chat.id)


@pytest.mark.asyncio
async def test_stop_generation_keeps_partial_reply():
    gate = asyncio.Event()
    provider = FakeProvider(["Partial", " rest"], gate=gate)
    service = make_service(provider)
    chat = service.create_chat()

    task = asyncio.create_task(service.send_message(chat.id, "go"))
    await _wait_for(lambda: _last_text(service, chat.id) == "Partial")

    assert service.stop_generation(chat.id) is True
    gate.set()
    result = await task

    reply = service.resolve(chat.id)[-1]
    assert result.status == "cancelled"
    assert reply.content == "Partial"
    assert reply.streaming is False
    assert reply.metadata.model_used is None
    assert service.stop_generation(chat.id) is False


@pytest.mark.asyncio
async def test_stop_generation_frees_chat_while_model_is_stalled():
    gate = asyncio.Event()
    provider = FakeProvider(["Partial", " rest"], gate=gate)
    service = make_service(provider)
    chat = service.create_chat()

    task = asyncio.create_task(service.send_message(chat.id, "go"))
    await _wait_for(lambda: _last_text(service, chat.id) == "Partial")

    assert service.stop_generation(chat.id) is True

    reply = service.resolve(chat.id)[-1]
    assert reply.streaming is False
    assert not service.generations.is_generating(chat.id)

    gate.set()
    second = await service.send_message(chat.id, "again")
    first = await task

    assert first.status == "cancelled"
    assert second.status == "completed"
    assert [m.content for m in service.resolve(chat.id)] == [
        "go",
        "Partial",
        "again",
        "Partial rest",
    ]
    assert not any(m.streaming for m in service.resolve(chat.id))


@pytest.mark.asyncio
async def test_delete_branch_mid_turn_stops_its_reply():
    gate = asyncio.Event()
    provider = FakeProvider(["Partial", " rest"], gate=gate)
    service = make_service(provider)
    chat_id, main_id, _, assistant_id = seed_two_messages(service)
    side = service.create_branch(chat_id, assistant_id, "side")
    service.switch_branch(chat_id, side.id)

    task = asyncio.create_task(service.send_message(chat_id, "go"))
    await _wait_for(lambda: _last_text(service, chat_id) == "Partial")

    assert service.delete_branch(chat_id, side.id) is True
    assert not service.generations.is_generating(chat_id)

    result = await asyncio.wait_for(task, timeout=1)

    assert result.status == "cancelled"
    assert service.active_branch(chat_id).id == main_id
    assert [m.content for m in service.resolve(chat_id)] == ["hi", "hello"]
    assert service.get_chat(chat_id).message_count == 2


@pytest.mark.asyncio
async def test_delete_other_branch_leaves_turn_running():
    gate = asyncio.Event()
    provider = FakeProvider(["Partial", " rest"], gate=gate)
    service = make_service(provider)
    chat_id, _, _, assistant_id = seed_two_messages(service)
    side = service.create_branch(chat_id, assistant_id, "side")

    task = asyncio.create_task(service.send_message(chat_id, "go"))
    await _wait_for(lambda: _last_text(service, chat_id) == "Partial")

    assert service.delete_branch(chat_id, side.id) is True
    assert service.generations.is_generating(chat_id)

    gate.set()
    result = await task
    assert result.status == "completed"
    assert result.text == "Partial rest"


@pytest.mark.asyncio
async def test_delete_chat_mid_turn_stops_writes():
    gate = asyncio.Event()
    provider = FakeProvider(["Partial", " rest"], gate=gate)
    service = make_service(provider)
    chat = service.create_chat()

    task = asyncio.create_task(service.send_message(chat.id, "go"))
    await _wait_for(lambda: _last_text(service, chat.id) == "Partial")

    service.delete_chat(chat.id)
    gate.set()
    result = await task

    assert result.status == "cancelled"
    assert service.state.chats == {}
    assert not service.generations.is_generating(chat.id)


@pytest.mark.asyncio
async def test_delete_message_mid_turn_cancels_its_turn():
    gate = asyncio.Event()
    provider = FakeProvider(["Partial", " rest"], gate=gate)
    service = make_service(provider)
    chat = service.create_chat()

    task = asyncio.create_task(service.send_message(chat.id, "go"))
    await _wait_for(lambda: _last_text(service, chat.id) == "Partial")
    reply_id = service.resolve(chat.id)[-1].id

    service.delete_message(chat.id, reply_id)
    gate.set()
    result = await task

    assert result.status == "cancelled"
    assert [m.content for m in service.resolve(chat.id)] == ["go"]
    assert service.get_chat(chat.id).message_count == 1


# ---------------------------------------------------------------------------
# Edit with fork
# ---------------------------------------------------------------------------


def test_fork_for_edit_branches_before_the_edited_message():
    service = make_service()
    chat_id, main_id, user_id, assistant_id = seed_two_messages(service)
    second_user = service.append_message(chat_id, main_id, "user", "question")
    service.append_message(chat_id, main_id, "assistant", "answer")

    edit = service.fork_for_edit(chat_id, second_user, "better question")

    branch = service.branches.get(chat_id, edit.new_branch_id)
    assert branch.name == "edit-2"
    assert branch.parent_branch_id == main_id
    assert branch.fork_from_message_id == assistant_id
    assert edit.original_branch_id == main_id
    assert service.get_chat(chat_id).active_branch_id == edit.new_branch_id

    new_view = [m.content for m in service.resolve(chat_id)]
    assert new_view == ["hi", "hello", "better question"]
    assert [m.content for m in service.resolve(chat_id, main_id)] == [
        "hi",
        "hello",
        "question",
        "answer",
    ]
    edited = service.messages.get(chat_id, edit.new_message_id)
    assert edited.metadata.edited_from == second_user


def test_fork_for_edit_of_first_message_creates_root_branch():
    service = make_service()
    chat_id, main_id, user_id, _ = seed_two_messages(service)

    edit = service.fork_for_edit(chat_id, user_id, "hi v2")

    branch = service.branches.get(chat_id, edit.new_branch_id)
    assert branch.parent_branch_id is None
    assert branch.fork_from_message_id is None
    assert [m.content for m in service.resolve(chat_id)] == ["hi v2"]
    assert len(service.resolve(chat_id, main_id)) == 2


def test_fork_for_edit_with_dangling_parent_uses_preceding_message():
    service = make_service()
    chat_id, main_id, user_id, assistant_id = seed_two_messages(service)
    question = service.append_message(chat_id, main_id, "user", "question")
    service.delete_message(chat_id, assistant_id)

    edit = service.fork_for_edit(chat_id, question, "rephrased")

    branch = service.branches.get(chat_id, edit.new_branch_id)
    assert branch.fork_from_message_id == user_id
    assert [m.content for m in service.resolve(chat_id)] == ["hi", "rephrased"]


def test_fork_for_edit_only_for_user_messages():
    service = make_service()
    chat_id, _, _, assistant_id = seed_two_messages(service)
    with pytest.raises(ValueError, match="user messages"):
        service.fork_for_edit(chat_id, assistant_id, "nope")


def test_edit_names_increase_with_branch_count():
    service = make_service()
    chat_id, main_id, user_id, _ = seed_two_messages(service)
    first = service.fork_for_edit(chat_id, user_id, "v2")
    second = service.fork_for_edit(chat_id, user_id, "v3")

    names = [service.branches.get(chat_id, e.new_branch_id).name for e in (first, second)]
    assert names == ["edit-2", "edit-3"]


@pytest.mark.asyncio
async def test_edit_message_generates_reply_on_new_branch():
    provider = FakeProvider(["new answer"])
    service = make_service(provider)
    chat_id, main_id, user_id, _ = seed_two_messages(service)
    question = service.append_message(chat_id, main_id, "user", "question")
    service.append_message(chat_id, main_id, "assistant", "answer")

    edit = await service.edit_message(chat_id, question, "better question")

    assert edit.turn is not None
    assert edit.turn.status == "completed"
    assert [m.content for m in service.resolve(chat_id)] == [
        "hi",
        "hello",
        "better question",
        "new answer",
    ]
    assert provider.calls[0]["messages"][1:] == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
        {"role": "user", "content": "better question"},
    ]
    assert service.get_chat(chat_id).message_count == 6


@pytest.mark.asyncio
async def test_edit_message_failure_releases_lock():
    service = make_service()
    chat_id, _, _, assistant_id = seed_two_messages(service)

    with pytest.raises(ValueError):
        await service.edit_message(chat_id, assistant_id, "nope")
    assert not service.generations.is_generating(chat_id)


# ---------------------------------------------------------------------------
# Regenerate
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_regenerate_adds_variant_without_forking():
    provider = FakeProvider(["second take"])
    service = make_service(provider)
    chat_id, main_id, user_id, assistant_id = seed_two_messages(service)

    result = await service.regenerate(chat_id, assistant_id)

    message = service.messages.get(chat_id, assistant_id)
    assert result.slot.index == 1
    assert message.content == "hello"
    assert message.variants == ["second take"]
    assert message.active_variant == 1
    assert message.streaming is False
    assert len(service.branches.list_branches(chat_id)) == 1
    assert service.get_chat(chat_id).message_count == 2
    assert provider.calls[0]["messages"][1:] == [{"role": "user", "content": "hi"}]


@pytest.mark.asyncio
async def test_regenerate_on_forked_branch_uses_that_branch_history():
    provider = FakeProvider(["alt reply"])
    service = make_service(provider)
    chat_id, main_id, user_id, _ = seed_two_messages(service)
    edit = service.fork_for_edit(chat_id, user_id, "hi v2")
    reply = service.append_message(chat_id, edit.new_branch_id, "assistant", "first")

    await service.regenerate(chat_id, reply)

    assert provider.calls[0]["messages"][1:] == [{"role": "user", "content": "hi v2"}]


@pytest.mark.asyncio
async def test_regenerate_rejects_user_messages():
    service = make_service()
    chat_id, _, user_id, _ = seed_two_messages(service)

    with pytest.raises(VariantNotAllowedError):
        await service.regenerate(chat_id, user_id)
    assert not service.generations.is_generating(chat_id)


@pytest.mark.asyncio
async def test_regenerate_unknown_message():
    service = make_service()
    chat_id, *_ = seed_two_messages(service)

    with pytest.raises(ForkChatError):
        await service.regenerate(chat_id, "missing")
    assert not service.generations.is_generating(chat_id)


# ---------------------------------------------------------------------------
# Profile wiring and persistence
# ---------------------------------------------------------------------------


def test_build_provider_reads_key_from_environment(monkeypatch):
    monkeypatch.setenv("FORKCHAT_TEST_KEY", "sk-test-value")
    profile = make_profile(api_key_env="FORKCHAT_TEST_KEY", base_url="http://localhost:1234/v1")

    provider = build_provider(profile)

    assert isinstance(provider, OpenAICompatibleProvider)
    assert provider.api_key == "sk-test-value"
    assert provider.base_url == "http://localhost:1234/v1"


def test_build_provider_requires_key(monkeypatch):
    monkeypatch.delenv("FORKCHAT_TEST_KEY", raising=False)
    profile = make_profile(api_key_env="FORKCHAT_TEST_KEY")

    with pytest.raises(ValueError, match="FORKCHAT_TEST_KEY"):
        build_provider(profile)


@pytest.mark.asyncio
async def test_from_profile_loads_and_saves_state(tmp_path):
    state_file = tmp_path / "state.json"
    profile = make_profile(state_file=str(state_file))
    service = ChatService.from_profile(profile, provider=FakeProvider(["saved"]))
    chat = service.create_chat()
    await service.send_message(chat.id, "persist me")

    assert await service.save() is True
    assert await service.save() is False

    reloaded = ChatService.from_profile(profile, provider=FakeProvider())
    assert [m.content for m in reloaded.resolve(chat.id)] == ["persist me", "saved"]
    assert load_state(state_file).current_chat_id == chat.id


def test_from_profile_sets_up_its_log_file(tmp_path):
    log_file = str(tmp_path / "logs" / "forkchat.log")
    profile = make_profile(log_file=log_file)

    with patch("forkchat.service.setup_logging") as mock_setup:
        ChatService.from_profile(profile, provider=FakeProvider())

    mock_setup.assert_called_once_with(log_file)


def test_from_profile_without_log_file_leaves_logging_alone():
    with patch("forkchat.service.setup_logging") as mock_setup:
        ChatService.from_profile(make_profile(), provider=FakeProvider())

    mock_setup.assert_not_called()


def test_chat_created_log_summarizes_the_title():
    service = make_service()

    with patch("forkchat.logging.events.logging.log") as mock_logging_log:
        service.create_chat(title="  Trip\nplanning " + "x" * 100)

    payloads = [json.loads(call.args[1]) for call in mock_logging_log.call_args_list]
    created = next(p for p in payloads if p["event"] == "chat_created")
    assert created["title"].startswith("Trip planning xxx")
    assert created["title"].endswith("...")
    assert len(created["title"]) == 83


@pytest.mark.asyncio
async def test_save_without_state_file():
    service = ChatService()
    with pytest.raises(ValueError, match="No state file"):
        await service.save()
