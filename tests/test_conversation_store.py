import asyncio
from datetime import timedelta

import pytest

from shared.models.conversation import MessageRole, SourceRecord
from shared.persistence.ConversationStore import ConversationStore, utcnow


class TestConversationStore:
    """Test suite for ConversationStore."""

    @pytest.fixture
    def store(self, helper_config, database):
        return ConversationStore(helper_config=helper_config, database=database)

    async def test_conversation_is_scoped_to_owner(self, store):
        conversation = await store.create_conversation("u1", "Leave question")
        assert (await store.get_conversation(conversation.id, "u1")).title == "Leave question"
        assert await store.get_conversation(conversation.id, "u2") is None

    async def test_conversations_are_listed_newest_first(self, store):
        first = await store.create_conversation("u1", "first")
        second = await store.create_conversation("u1", "second")
        await store.create_conversation("u2", "other user")
        listed = await store.list_conversations("u1")
        assert [c.id for c in listed] == [second.id, first.id]

    async def test_message_timestamps_strictly_increase(self, store):
        conversation = await store.create_conversation("u1", "busy")
        for i in range(10):
            await store.append_message(conversation.id, MessageRole.USER, f"question {i}")
        messages = await store.load_messages(conversation.id)
        timestamps = [m.created_at for m in messages]
        assert all(a < b for a, b in zip(timestamps, timestamps[1:]))
        assert [m.content for m in messages] == [f"question {i}" for i in range(10)]

    async def test_concurrent_appends_keep_a_total_order(self, store):
        conversation = await store.create_conversation("u1", "parallel")
        await asyncio.gather(*[
            store.append_message(conversation.id, MessageRole.USER, f"q{i}") for i in range(8)
        ])
        timestamps = [m.created_at for m in await store.load_messages(conversation.id)]
        assert len(set(timestamps)) == 8
        assert timestamps == sorted(timestamps)

    async def test_load_messages_with_limit_returns_latest_in_order(self, store):
        conversation = await store.create_conversation("u1", "long")
        for i in range(6):
            await store.append_message(conversation.id, MessageRole.USER, f"m{i}")
        recent = await store.load_messages(conversation.id, limit=3)
        assert [m.content for m in recent] == ["m3", "m4", "m5"]

    async def test_assistant_answer_is_saved_with_sources(self, store):
        conversation = await store.create_conversation("u1", "sources")
        await store.append_message(conversation.id, MessageRole.USER, "Leave days?")
        saved = await store.save_assistant_answer(
            conversation.id,
            "25 days.",
            [SourceRecord(content="Employees get 25 days.", metadata={"source": "handbook.txt", "version": 2})],
        )
        assert saved.role == MessageRole.ASSISTANT

        messages = await store.load_messages_with_sources(conversation.id)
        assert [m.role for m in messages] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert messages[1].sources[0].metadata == {"source": "handbook.txt", "version": 2}
        assert messages[0].sources == []

    async def test_delete_conversation_requires_owner(self, store):
        conversation = await store.create_conversation("u1", "mine")
        await store.append_message(conversation.id, MessageRole.USER, "hello")
        assert await store.delete_conversation(conversation.id, "u2") is False
        assert await store.delete_conversation(conversation.id, "u1") is True
        assert await store.get_conversation(conversation.id, "u1") is None
        assert await store.load_messages(conversation.id) == []

    async def test_delete_user_data_removes_everything_of_the_user(self, store):
        for title in ("a", "b"):
            conversation = await store.create_conversation("u1", title)
            await store.save_assistant_answer(conversation.id, "answer", [SourceRecord(content="c", metadata={})])
        kept = await store.create_conversation("u2", "kept")
        await store.add_feedback("u1", "q", "r", "thumbs_up", ["handbook.txt"])

        assert await store.delete_user_data("u1") == 2
        assert await store.list_conversations("u1") == []
        assert [c.id for c in await store.list_conversations("u2")] == [kept.id]

    async def test_user_messages_between_filters_role_and_window(self, store):
        conversation = await store.create_conversation("u1", "window")
        await store.append_message(conversation.id, MessageRole.USER, "in window")
        await store.save_assistant_answer(conversation.id, "assistant text", [])
        now = utcnow()
        contents = await store.list_user_messages_between(now - timedelta(minutes=1), now + timedelta(minutes=1))
        assert contents == ["in window"]
        assert await store.list_user_messages_between(now + timedelta(minutes=1), now + timedelta(minutes=2)) == []
