"""Tests for branch resolution."""

import logging
from unittest.mock import patch

import pytest

from forkchat.service import ChatService
from test_helpers import seed_two_messages


@pytest.fixture
def service():
    return ChatService()


def _texts(messages):
    return [m.content for m in messages]


def test_fork_keeps_original_branch_intact(service):
    """Forking from message 1 and appending to the fork leaves main alone."""
    chat_id, main_id, user_id, _ = seed_two_messages(service)
    fork = service.create_branch(chat_id, user_id, "edit-1")
    service.append_message(chat_id, fork.id, "user", "hi v2")

    main_view = service.resolve(chat_id, main_id)
    fork_view = service.resolve(chat_id, fork.id)

    assert _texts(main_view) == ["hi", "hello"]
    assert [m.id for m in fork_view][0] == user_id
    assert _texts(fork_view) == ["hi", "hi v2"]


def test_fork_isolation_both_directions(service):
    chat_id, main_id, user_id, _ = seed_two_messages(service)
    fork = service.create_branch(chat_id, user_id, "alt")

    later_main = service.append_message(chat_id, main_id, "user", "main later")
    on_fork = service.append_message(chat_id, fork.id, "user", "fork only")

    fork_ids = {m.id for m in service.resolve(chat_id, fork.id)}
    main_ids = {m.id for m in service.resolve(chat_id, main_id)}
    assert later_main not in fork_ids
    assert on_fork not in main_ids


def test_fork_inherits_prefix_up_to_fork_point(service):
    chat_id, main_id, _, assistant_id = seed_two_messages(service)
    third = service.append_message(chat_id, main_id, "user", "third")
    service.append_message(chat_id, main_id, "assistant", "fourth")
    fork = service.create_branch(chat_id, third, "alt")
    own = [
        service.append_message(chat_id, fork.id, "assistant", "own 1"),
        service.append_message(chat_id, fork.id, "user", "own 2"),
    ]

    view = service.resolve(chat_id, fork.id)

    main_view = service.resolve(chat_id, main_id)
    expected_prefix = [m.id for m in main_view[:3]]
    assert [m.id for m in view] == expected_prefix + own
    timestamps = [m.created_at for m in view]
    assert timestamps == sorted(timestamps)


def test_nested_forks_resolve_through_every_ancestor(service):
    chat_id, main_id, user_id, _ = seed_two_messages(service)
    first = service.create_branch(chat_id, user_id, "first")
    a = service.append_message(chat_id, first.id, "assistant", "first reply")
    b = service.append_message(chat_id, first.id, "user", "first follow-up")
    nested = service.create_branch(chat_id, a, "nested")
    c = service.append_message(chat_id, nested.id, "user", "nested follow-up")

    view = service.resolve(chat_id, nested.id)

    assert [m.id for m in view] == [user_id, a, c]
    assert b not in [m.id for m in view]


def test_resolve_defaults_to_active_branch(service):
    chat_id, main_id, user_id, _ = seed_two_messages(service)
    fork = service.create_branch(chat_id, user_id, "alt")
    service.switch_branch(chat_id, fork.id)

    assert [m.id for m in service.resolve(chat_id)] == [user_id]


def test_resolve_unknown_ids_is_empty(service):
    chat_id, *_ = seed_two_messages(service)
    assert service.resolve("missing") == []
    assert service.resolve(chat_id, "missing") == []


def test_missing_fork_point_keeps_whole_parent_history(service):
    chat_id, main_id, user_id, assistant_id = seed_two_messages(service)
    fork = service.create_branch(chat_id, user_id, "alt")
    own = service.append_message(chat_id, fork.id, "user", "own")
    # Simulate a fork point lost outside the store's own delete guard.
    fork.fork_from_message_id = "gone"

    with patch("forkchat.resolver.log_event") as mock_log_event:
        view = service.resolve(chat_id, fork.id)

    assert [m.id for m in view] == [user_id, assistant_id, own]
    mock_log_event.assert_called_once_with(
        "fork_point_missing",
        level=logging.WARNING,
        chat_id=chat_id,
        branch_id=fork.id,
        fork_from_message_id="gone",
    )


def test_missing_parent_branch_uses_its_tagged_messages(service):
    chat_id, main_id, user_id, assistant_id = seed_two_messages(service)
    fork = service.create_branch(chat_id, user_id, "alt")
    own = service.append_message(chat_id, fork.id, "user", "own")
    del service.state.branches[chat_id][main_id]

    view = service.resolver.resolve(chat_id, fork.id)

    assert [m.id for m in view] == [user_id, own]


def test_parent_cycle_does_not_recurse_forever(service):
    chat_id, main_id, user_id, _ = seed_two_messages(service)
    fork = service.create_branch(chat_id, user_id, "alt")
    main = service.branches.get(chat_id, main_id)
    main.parent_branch_id = fork.id
    main.fork_from_message_id = user_id

    view = service.resolver.resolve(chat_id, fork.id)

    assert user_id in [m.id for m in view]


def test_history_before(service):
    chat_id, main_id, user_id, assistant_id = seed_two_messages(service)

    assert service.resolver.history_before(chat_id, main_id, user_id) == []
    before = service.resolver.history_before(chat_id, main_id, assistant_id)
    assert [m.id for m in before] == [user_id]
    assert service.resolver.history_before(chat_id, main_id, "missing") is None
