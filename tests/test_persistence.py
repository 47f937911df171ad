"""Tests for JSON state load/save."""

import json

import pytest

from forkchat.constants import STATE_SCHEMA_VERSION
from forkchat.errors import StateFileError
from forkchat.persistence import load_state, save_state, state_from_dict, state_to_dict
from forkchat.service import ChatService
from test_helpers import seed_two_messages


def _populated_service():
    service = ChatService()
    chat_id, main_id, user_id, assistant_id = seed_two_messages(service)
    service.add_variant(chat_id, assistant_id, "v1")
    fork = service.create_branch(chat_id, user_id, "alt")
    service.append_message(chat_id, fork.id, "assistant", "fork reply")
    return service, chat_id, fork.id


def test_load_state_missing_file_is_empty(tmp_path):
    state = load_state(tmp_path / "missing.json")
    assert state.chats == {}
    assert state.current_chat_id is None


def test_load_state_invalid_json(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{broken", encoding="utf-8")

    with pytest.raises(StateFileError, match="Invalid JSON"):
        load_state(path)


@pytest.mark.asyncio
async def test_save_and_load_round_trip(tmp_path):
    service, chat_id, fork_id = _populated_service()
    path = tmp_path / "nested" / "state.json"

    assert await save_state(path, service.state) is True

    restored = ChatService(load_state(path))
    assert restored.current_chat_id == chat_id
    for branch_id in (service.get_chat(chat_id).default_branch_id, fork_id):
        assert [m.to_dict() for m in restored.resolve(chat_id, branch_id)] == [
            m.to_dict() for m in service.resolve(chat_id, branch_id)
        ]
    assert restored.get_chat(chat_id).message_count == 3


@pytest.mark.asyncio
async def test_save_skips_unchanged_state(tmp_path):
    service, chat_id, _ = _populated_service()
    path = tmp_path / "state.json"

    assert await save_state(path, service.state) is True
    mtime = path.stat().st_mtime_ns
    assert await save_state(path, service.state) is False
    assert path.stat().st_mtime_ns == mtime

    service.rename_branch(chat_id, service.get_chat(chat_id).default_branch_id, "trunk")
    assert await save_state(path, service.state) is True


def test_streaming_flag_is_cleared_on_save():
    service = ChatService()
    chat = service.create_chat()
    service.append_message(chat.id, chat.default_branch_id, "assistant", "half", streaming=True)

    payload = state_to_dict(service.state)

    assert payload["messages"][chat.id][0]["streaming"] is False
    assert payload["schema_version"] == STATE_SCHEMA_VERSION


def test_loaded_ids_do_not_collide_with_new_ones():
    service, chat_id, _ = _populated_service()
    restored = ChatService(state_from_dict(state_to_dict(service.state)))

    existing = set(service.state.id_set)
    new_id = restored.append_message(
        chat_id, restored.get_chat(chat_id).default_branch_id, "user", "after load"
    )

    assert existing <= restored.state.id_set
    assert new_id not in existing
    newest = restored.messages.get(chat_id, new_id)
    assert all(m.created_at < newest.created_at for m in service.messages.list_messages(chat_id))


def test_load_recomputes_message_count_and_active_branch():
    service, chat_id, _ = _populated_service()
    payload = state_to_dict(service.state)
    payload["chats"][0]["message_count"] = 99
    payload["chats"][0]["active_branch_id"] = "gone"

    state = state_from_dict(payload)

    chat = state.chats[chat_id]
    assert chat.message_count == 3
    assert chat.active_branch_id == chat.default_branch_id


@pytest.mark.parametrize(
    "mutate, message",
    [
        (lambda p: p.update(schema_version=99), "schema version"),
        (lambda p: p.update(chats={}), "'chats' must be a list"),
        (lambda p: p["messages"].update(stray=[]), "orphan messages"),
        (lambda p: p["branches"].update(stray=[]), "orphan branches"),
        (lambda p: p.update(folders={}), "must be lists"),
        (lambda p: p["messages"][next(iter(p["messages"]))][0].update(role="robot"), "unknown role"),
    ],
)
def test_state_from_dict_rejects_invalid_payloads(mutate, message):
    service, _, _ = _populated_service()
    payload = state_to_dict(service.state)
    mutate(payload)

    with pytest.raises(StateFileError, match=message):
        state_from_dict(payload)


def test_state_from_dict_requires_default_branch():
    service, chat_id, _ = _populated_service()
    payload = state_to_dict(service.state)
    default_id = payload["chats"][0]["default_branch_id"]
    payload["branches"][chat_id] = [
        b for b in payload["branches"][chat_id] if b["id"] != default_id
    ]

    with pytest.raises(StateFileError, match="no default branch"):
        state_from_dict(payload)


def test_state_file_is_plain_json(tmp_path):
    service, chat_id, _ = _populated_service()
    path = tmp_path / "state.json"
    path.write_text(json.dumps(state_to_dict(service.state)), encoding="utf-8")

    state = load_state(path)

    assert set(state.chats) == {chat_id}


def test_folders_and_templates_round_trip():
    service, chat_id, _ = _populated_service()
    folder = service.create_folder("Work")
    service.move_to_folder(chat_id, folder.id)
    template = service.add_template("Reviewer", "You review code.", tags=["review"])
    service.update_template("coder", description="Edited")
    service.toggle_favorite_template(template.id)
    service.toggle_favorite_template("writer")

    restored = ChatService(state_from_dict(json.loads(json.dumps(state_to_dict(service.state)))))

    assert restored.get_chat(chat_id).folder_id == folder.id
    assert [f.name for f in restored.list_folders()] == ["Work"]
    assert restored.templates.get(template.id) == template
    assert restored.templates.get("coder").description == "Edited"
    assert [t.id for t in restored.templates.favorites()] == [template.id, "writer"]
    assert {folder.id, template.id} <= restored.state.id_set


def test_load_drops_dangling_folder_and_favorite_references():
    service, chat_id, _ = _populated_service()
    payload = state_to_dict(service.state)
    payload["chats"][0]["folder_id"] = "gone"
    payload["favorite_templates"] = ["gone", "coder", "coder", 7]

    state = state_from_dict(payload)

    assert state.chats[chat_id].folder_id is None
    assert state.favorite_template_ids == ["coder"]


def test_state_without_folder_or_template_keys_still_loads():
    service, chat_id, _ = _populated_service()
    payload = state_to_dict(service.state)
    for key in ("folders", "templates", "favorite_templates"):
        del payload[key]

    state = state_from_dict(payload)

    assert set(state.chats) == {chat_id}
    assert state.folders == {}
    assert state.templates == {}
