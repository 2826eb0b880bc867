import pytest

from notechat_core.domain.exceptions import BusinessError
from notechat_core.domain.models import ChatMessage
from notechat_core.infrastructure.storage.memory_store import CallbackConversationStore


class SaveRecorder:
    def __init__(self):
        self.snapshots = []

    async def __call__(self, snapshot):
        self.snapshots.append(snapshot)


@pytest.mark.asyncio
async def test_add_and_read_messages():
    saved = SaveRecorder()
    store = CallbackConversationStore(save_callback=saved)
    assert not store.has_conversation("n1")

    await store.add_user_message("n1", "hello")
    await store.add_assistant_message("n1", "hi there")

    assert store.has_conversation("n1")
    assert [m.role for m in store.get_messages("n1")] == ["user", "assistant"]
    assert len(saved.snapshots) == 2
    last = saved.snapshots[-1]["n1"]
    assert last["noteId"] == "n1"
    assert last["messages"] == [
        {"role": "user", "content": "hello"},
        {"role": "assistant", "content": "hi there"},
    ]
    assert last["createdAt"] <= last["updatedAt"]


@pytest.mark.asyncio
async def test_get_messages_returns_copy():
    store = CallbackConversationStore()
    await store.add_message("n1", ChatMessage(role="user", content="x"))
    store.get_messages("n1").clear()
    assert len(store.get_messages("n1")) == 1
    assert store.get_messages("missing") == []


@pytest.mark.asyncio
async def test_context_keeps_most_recent_messages():
    store = CallbackConversationStore()
    for i in range(5):
        await store.add_user_message("n1", f"m{i}")
    assert [m.content for m in store.get_conversation_context("n1", 3)] == ["m2", "m3", "m4"]
    assert len(store.get_conversation_context("n1")) == 5


@pytest.mark.asyncio
async def test_clear_conversation_and_clear_all():
    saved = SaveRecorder()
    store = CallbackConversationStore(save_callback=saved)
    await store.add_user_message("a", "1")
    await store.add_user_message("b", "2")

    await store.clear_conversation("a")
    assert not store.has_conversation("a")
    assert set(saved.snapshots[-1]) == {"b"}

    await store.clear_all()
    assert store.list_conversations() == {}
    assert saved.snapshots[-1] == {}


def test_load_from_snapshot():
    store = CallbackConversationStore(snapshot={
        "n1": {
            "noteId": "n1",
            "messages": [{"role": "user", "content": "q"}, {"role": "assistant", "content": "a"}],
            "createdAt": 1700000000000,
            "updatedAt": 1700000001000,
        }
    })
    entry = store.list_conversations()["n1"]
    assert [m.content for m in entry.messages] == ["q", "a"]
    assert entry.created_at.year == 2023
    assert store.snapshot()["n1"]["updatedAt"] == 1700000001000


def test_load_rejects_broken_snapshot():
    with pytest.raises(BusinessError) as ei:
        CallbackConversationStore(snapshot={"n1": {"messages": [{"content": "no role"}]}})
    assert ei.value.code == "STORE_READ_ERROR"
