"""Tests for the conversation store backends."""

import threading
import time

import pytest
from sqlalchemy.pool import NullPool, StaticPool

from vertigo.conversations import (
    ROLE_ASSISTANT,
    ROLE_USER,
    DatabaseConversationStore,
    MemoryConversationStore,
    Message,
    build_conversation_store,
)
from vertigo.database.base import DatabaseBase
from vertigo.database.factory import create_database
from vertigo.database.models import ConversationRecord, MessageRecord


def _sqlite_config(path: str) -> dict:
    return {"backend": "sqlite", "connection": {"sqlite": {"path": path}}}


@pytest.fixture(params=["memory", "database"])
def store(request):
    if request.param == "memory":
        instance = MemoryConversationStore()
    else:
        instance = DatabaseConversationStore(create_database(_sqlite_config(":memory:")))
    yield instance
    instance.close()


class TestStoreContract:
    def test_get_unknown_id_creates_empty_conversation(self, store):
        conversation = store.get("conv-1")
        assert conversation.id == "conv-1"
        assert conversation.messages == ()

    def test_get_without_id_generates_one(self, store):
        first = store.get(None)
        second = store.get("")
        assert first.id
        assert second.id
        assert first.id != second.id

    def test_append_then_get_grows_history_by_one(self, store):
        store.append("conv-1", ROLE_USER, "hello")
        before = store.get("conv-1")

        store.append("conv-1", ROLE_ASSISTANT, "hi there")
        after = store.get("conv-1")

        assert len(after.messages) == len(before.messages) + 1
        assert after.messages[-1] == Message(role=ROLE_ASSISTANT, content="hi there")

    def test_messages_keep_append_order(self, store):
        for index in range(5):
            role = ROLE_USER if index % 2 == 0 else ROLE_ASSISTANT
            store.append("conv-order", role, f"message {index}")

        contents = [message.content for message in store.get("conv-order").messages]
        assert contents == [f"message {index}" for index in range(5)]

    def test_append_empty_content_still_updates_last_updated(self, store):
        created = store.get("conv-1").last_updated
        time.sleep(0.01)
        store.append("conv-1", ROLE_ASSISTANT, "")

        conversation = store.get("conv-1")
        assert conversation.messages[-1].content == ""
        assert conversation.last_updated > created

    def test_append_to_never_read_id(self, store):
        store.append("fresh-id", ROLE_USER, "first")
        assert store.get("fresh-id").messages == (Message(role=ROLE_USER, content="first"),)

    def test_conversations_are_isolated(self, store):
        store.append("a", ROLE_USER, "for a")
        store.append("b", ROLE_USER, "for b")
        assert [m.content for m in store.get("a").messages] == ["for a"]
        assert [m.content for m in store.get("b").messages] == ["for b"]

    def test_delete(self, store):
        store.append("conv-1", ROLE_USER, "hello")
        assert store.delete("conv-1") is True
        assert store.delete("conv-1") is False
        assert store.get("conv-1").messages == ()

    def test_invalid_role_is_rejected(self, store):
        with pytest.raises(ValueError):
            store.append("conv-1", "tool", "nope")


class TestMemoryStore:
    def test_concurrent_appends_are_not_lost(self):
        store = MemoryConversationStore()

        def worker(prefix: str):
            for index in range(50):
                store.append("shared", ROLE_USER, f"{prefix}-{index}")

        threads = [threading.Thread(target=worker, args=(f"t{i}",)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        messages = store.get("shared").messages
        assert len(messages) == 400
        # Per-writer order is preserved
        t0 = [m.content for m in messages if m.content.startswith("t0-")]
        assert t0 == [f"t0-{index}" for index in range(50)]


class TestDatabaseStore:
    def test_history_survives_reopen(self, tmp_path):
        config = _sqlite_config(str(tmp_path / "conversations.db"))

        first = DatabaseConversationStore(create_database(config))
        first.append("persisted", ROLE_USER, "remember me")
        first.append("persisted", ROLE_ASSISTANT, "I will")
        first.close()

        second = DatabaseConversationStore(create_database(config))
        messages = second.get("persisted").messages
        second.close()

        assert messages == (
            Message(role=ROLE_USER, content="remember me"),
            Message(role=ROLE_ASSISTANT, content="I will"),
        )

    def test_get_creates_conversation_row_lazily(self):
        database = create_database(_sqlite_config(":memory:"))
        store = DatabaseConversationStore(database)

        store.get("lazy")

        with database.session() as sess:
            assert sess.get(ConversationRecord, "lazy") is not None
            assert sess.query(MessageRecord).count() == 0
        store.close()

    def test_messages_always_reference_existing_conversation(self):
        database = create_database(_sqlite_config(":memory:"))
        store = DatabaseConversationStore(database)

        store.append("parentless", ROLE_USER, "hi")

        with database.session() as sess:
            assert sess.get(ConversationRecord, "parentless") is not None
            record = sess.query(MessageRecord).one()
            assert record.conversation_id == "parentless"
        store.close()


class TestBuildStore:
    def test_memory_backend(self):
        assert isinstance(build_conversation_store("memory"), MemoryConversationStore)

    def test_database_backend(self):
        store = build_conversation_store("database", _sqlite_config(":memory:"))
        assert isinstance(store, DatabaseConversationStore)
        store.close()

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_conversation_store("redis")


class TestDatabaseBackends:
    def test_in_memory_sqlite_shares_one_connection(self):
        database = create_database(_sqlite_config(":memory:"))
        assert database.get_pool_options()["poolclass"] is StaticPool

    def test_file_sqlite_uses_null_pool(self, tmp_path):
        database = create_database(_sqlite_config(str(tmp_path / "vertigo.db")))
        assert database.get_pool_options()["poolclass"] is NullPool

    def test_backend_must_declare_pool_options(self):
        class BareDatabase(DatabaseBase):
            backend_name = "bare"

            def get_connection_string(self) -> str:
                return "sqlite://"

        with pytest.raises(TypeError):
            BareDatabase({})
