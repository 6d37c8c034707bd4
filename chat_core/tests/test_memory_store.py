import pytest

from chat_core.domain.exceptions import ValidationError
from chat_core.domain.session import Message
from chat_core.infrastructure.storage.memory_store import InMemorySessionStore


def test_create_session_defaults():
    store = InMemorySessionStore()
    sid = store.create_session("gpt-4o-mini")
    session = store.get_session(sid)
    assert session.name == "Chat with gpt-4o-mini"
    assert session.messages == []
    assert store.active_session_ids() == [sid]


def test_append_assigns_id_and_timestamp():
    store = InMemorySessionStore()
    sid = store.create_session("gpt-4o-mini", name="notes")
    mid = store.append_message(sid, Message(role="user", content="hi"))
    message = store.get_message(sid, mid)
    assert mid.startswith("m-")
    assert message.timestamp is not None
    assert message.content == "hi"


def test_operations_on_missing_session_are_noops():
    store = InMemorySessionStore()
    assert store.append_message("s-missing", Message(role="user", content="hi")) is None
    assert store.update_message("s-missing", "m-1", content="x") is False
    assert store.context_window("s-missing") == []
    assert store.streaming_message("s-missing") is None
    store.clear_session("s-missing")
    store.set_active("s-missing", False)


def test_remove_session_is_idempotent_and_late_updates_are_ignored():
    store = InMemorySessionStore()
    sid = store.create_session("gpt-4o-mini")
    mid = store.append_message(sid, Message(role="assistant", is_streaming=True))
    store.remove_session(sid)
    store.remove_session(sid)
    assert store.get_session(sid) is None
    assert store.active_session_ids() == []
    assert store.update_message(sid, mid, content="late chunk") is False


def test_only_one_streaming_message_per_session():
    store = InMemorySessionStore()
    sid = store.create_session("gpt-4o-mini")
    store.append_message(sid, Message(role="assistant", is_streaming=True))
    with pytest.raises(ValidationError) as exc:
        store.append_message(sid, Message(role="assistant", is_streaming=True))
    assert exc.value.code == "STREAM_IN_PROGRESS"


def test_update_message_rejects_unknown_and_immutable_fields():
    store = InMemorySessionStore()
    sid = store.create_session("gpt-4o-mini")
    mid = store.append_message(sid, Message(role="assistant", is_streaming=True))
    with pytest.raises(ValueError):
        store.update_message(sid, mid, colour="red")
    with pytest.raises(ValueError):
        store.update_message(sid, mid, role="user")
    assert store.update_message(sid, mid, content="ok", is_streaming=False, status="complete")
    assert store.streaming_message(sid) is None
    assert store.update_message(sid, "m-unknown", content="x") is False


def test_context_window_keeps_most_recent_messages_in_order():
    store = InMemorySessionStore(context_limit=3)
    sid = store.create_session("gpt-4o-mini")
    for i in range(5):
        store.append_message(sid, Message(role="user" if i % 2 == 0 else "assistant", content=f"m{i}"))
    window = store.context_window(sid)
    assert [w["content"] for w in window] == ["m2", "m3", "m4"]
    assert window[0] == {"role": "user", "content": "m2"}
    assert len(store.get_session(sid).messages) == 5
    assert [w["content"] for w in store.context_window(sid, limit=1)] == ["m4"]


def test_set_active_and_clear():
    store = InMemorySessionStore()
    a = store.create_session("gpt-4o-mini")
    b = store.create_session("gpt-4o")
    store.set_active(a, False)
    assert store.active_session_ids() == [b]
    assert store.get_session(a).is_active is False
    store.set_active(a, True)
    assert store.active_session_ids() == [b, a]

    store.append_message(b, Message(role="user", content="hi"))
    store.clear_session(b)
    assert store.get_session(b).messages == []
    assert len(store.list_sessions()) == 2


def test_zero_context_limit_disables_history():
    store = InMemorySessionStore(context_limit=0)
    sid = store.create_session("gpt-4o-mini")
    store.append_message(sid, Message(role="user", content="hi"))
    assert store.context_window(sid) == []
