import itertools

import pytest

from diffagent.models.chat import ChatMessage, ChatSession
from diffagent.services import session_store as session_store_module
from diffagent.services.session_store import SessionStore


@pytest.fixture
def store(tmp_path):
    return SessionStore(tmp_path / "config")


@pytest.fixture
def ticking_clock(monkeypatch):
    clock = itertools.count(1000)
    monkeypatch.setattr(session_store_module.time, "time", lambda: next(clock))


def test_create_and_get(store):
    created = store.create_session("Refactor")

    loaded = store.get_session(created.id)

    assert loaded.title == "Refactor"
    assert loaded.messages == []


def test_missing_session_is_none(store):
    assert store.get_session("missing") is None


def test_sessions_sorted_newest_first(store, ticking_clock):
    first = store.create_session("first")
    second = store.create_session("second")
    store.save_session(first)

    assert [s.id for s in store.get_sessions()] == [first.id, second.id]


def test_delete_and_clear(store):
    keep = store.create_session("keep")
    drop = store.create_session("drop")

    assert store.delete_session(drop.id)
    assert not store.delete_session(drop.id)
    assert [s.id for s in store.get_sessions()] == [keep.id]

    store.clear_history()
    assert store.get_sessions() == []


def test_corrupt_file_loads_as_empty(store, tmp_path):
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "sessions.json").write_text("{not json")

    assert store.get_sessions() == []


def test_get_or_create_keeps_requested_id(store):
    assert store.get_or_create("abc").id == "abc"
    assert store.get_or_create(None).id


def test_append_turn_titles_new_sessions(store):
    session = store.get_or_create(None)

    store.append_turn(session, "Please explain the unified diff applier in detail", "Sure.")

    loaded = store.get_session(session.id)
    assert loaded.title == "Please explain the unified dif..."
    assert [m.role for m in loaded.messages] == ["user", "assistant"]


@pytest.mark.parametrize(
    "messages, expected",
    [
        ([], "New Chat"),
        ([ChatMessage(role="assistant", content="hi")], "New Chat"),
        ([ChatMessage(role="user", content="short")], "short"),
        ([ChatMessage(role="user", content="x" * 31)], "x" * 30 + "..."),
    ],
)
def test_session_title(messages, expected):
    assert SessionStore.session_title(ChatSession(id="s", messages=messages)) == expected
