"""
Conversation store integration tests.

This module verifies ownership scoping, suffix truncation for edit and
regenerate, and ordinal ordering of persisted messages.
"""

import uuid
from unittest.mock import patch

import pytest
from conftest import add_messages, make_conversation
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.domains.chat.history import TurnPlan, plan_turn
from app.domains.chat.service import ChatService
from app.exceptions.base import PersistenceError
from app.exceptions.chat import ConversationAccessError
from app.schemas.chat import ChatStreamRequest, TurnMode
from models import ChatConversation, ChatMessage


async def _contents(factory, conversation_id):
    async with factory() as session:
        result = await session.execute(
            select(ChatMessage.content)
            .where(ChatMessage.conversation_id == conversation_id)
            .order_by(ChatMessage.created_at)
        )
        return list(result.scalars().all())


class TestConversationCrud:
    """Integration tests for conversation CRUD."""

    @pytest.mark.asyncio
    async def test_create_with_default_title(self, test_db, test_user):
        conversation = await ChatService(test_db).create_conversation(test_user.id)

        assert conversation.id is not None
        assert conversation.title == "New Chat"
        assert conversation.user_id == test_user.id

    @pytest.mark.asyncio
    async def test_owner_scoping(self, test_db, test_user, test_user_2, populated_conversation):
        """Test that another user's conversation is indistinguishable from a missing one."""
        service = ChatService(test_db)

        with pytest.raises(ConversationAccessError):
            await service.get_owned_conversation(populated_conversation.id, test_user_2.id)
        with pytest.raises(ConversationAccessError):
            await service.get_owned_conversation(uuid.uuid4(), test_user.id)

        owned = await service.get_owned_conversation(populated_conversation.id, test_user.id)
        assert owned.id == populated_conversation.id

    @pytest.mark.asyncio
    async def test_detail_has_ordered_messages(self, test_db, test_user, populated_conversation):
        detail = await ChatService(test_db).get_conversation_detail(populated_conversation.id, test_user.id)

        assert detail.message_count == 4
        assert [m.content for m in detail.messages] == [
            "Where should I go in Ghana?",
            "Accra and Cape Coast are popular.",
            "What about the weather?",
            "It is warm all year.",
        ]

    @pytest.mark.asyncio
    async def test_list_paginates_with_counts(self, test_db, test_user, test_user_2, populated_conversation):
        await make_conversation(test_db, test_user, title="Empty one")
        await make_conversation(test_db, test_user_2, title="Not mine")

        page = await ChatService(test_db).get_user_conversations(test_user.id, page=1, size=1)

        assert page.total == 2
        assert page.has_next is True
        assert page.has_prev is False
        assert len(page.conversations) == 1

        everything = await ChatService(test_db).get_user_conversations(test_user.id, page=1, size=10)
        counts = {c.title: c.message_count for c in everything.conversations}
        assert counts == {"Trip planning": 4, "Empty one": 0}

    @pytest.mark.asyncio
    async def test_rename(self, test_db, test_user, populated_conversation):
        renamed = await ChatService(test_db).rename_conversation(
            populated_conversation.id, test_user.id, "Ghana"
        )

        assert renamed.title == "Ghana"

    @pytest.mark.asyncio
    async def test_rename_requires_ownership(self, test_db, test_user_2, populated_conversation):
        with pytest.raises(ConversationAccessError):
            await ChatService(test_db).rename_conversation(populated_conversation.id, test_user_2.id, "Mine now")

    @pytest.mark.asyncio
    async def test_delete_removes_messages(self, test_db, test_session_factory, test_user, populated_conversation):
        await ChatService(test_db).delete_conversation(populated_conversation.id, test_user.id)

        assert await _contents(test_session_factory, populated_conversation.id) == []
        async with test_session_factory() as session:
            assert await session.get(ChatConversation, populated_conversation.id) is None


class TestTurnPreparation:
    """Integration tests for truncation and the user-row write."""

    @pytest.mark.asyncio
    async def test_send_appends_user_row(self, test_db, test_session_factory, populated_conversation):
        service = ChatService(test_db)
        messages = await service.get_messages(populated_conversation.id)
        plan = plan_turn(
            populated_conversation.id,
            messages,
            ChatStreamRequest(chatId=populated_conversation.id, message="And the food?"),
        )

        await service.prepare_turn(plan)

        contents = await _contents(test_session_factory, populated_conversation.id)
        assert len(contents) == 5
        assert contents[-1] == "And the food?"

    @pytest.mark.asyncio
    async def test_regenerate_scoped_to_conversation(self, test_db, test_session_factory, test_user):
        """Test that regenerate deletes only position > i, and only in this conversation."""
        first = await make_conversation(test_db, test_user, title="first")
        second = await make_conversation(test_db, test_user, title="second")
        pairs = [("user", "q1"), ("assistant", "a1"), ("user", "q2"), ("assistant", "a2")]
        await add_messages(test_db, first, *pairs)
        other_rows = await add_messages(test_db, second, *pairs)

        service = ChatService(test_db)
        messages = await service.get_messages(first.id)
        plan = plan_turn(
            first.id,
            messages,
            ChatStreamRequest(chatId=first.id, regenerate=True, regenerateFromIndex=0),
        )
        # A crafted plan that also names rows of the other conversation
        plan.delete_ids.extend(row.id for row in other_rows)

        await service.prepare_turn(plan)

        assert await _contents(test_session_factory, first.id) == ["q1"]
        assert await _contents(test_session_factory, second.id) == ["q1", "a1", "q2", "a2"]

    @pytest.mark.asyncio
    async def test_edit_keeps_prefix_then_appends(self, test_db, test_session_factory, populated_conversation):
        """Test that edit at i leaves positions < i and appends the new text next."""
        service = ChatService(test_db)
        messages = await service.get_messages(populated_conversation.id)
        plan = plan_turn(
            populated_conversation.id,
            messages,
            ChatStreamRequest(
                chatId=populated_conversation.id, message="What about the rain?", editFromMessageIndex=2
            ),
        )

        await service.prepare_turn(plan)

        assert await _contents(test_session_factory, populated_conversation.id) == [
            "Where should I go in Ghana?",
            "Accra and Cape Coast are popular.",
            "What about the rain?",
        ]

    @pytest.mark.asyncio
    async def test_write_failure_raises_persistence_error(self, test_db, populated_conversation):
        plan = TurnPlan(
            mode=TurnMode.SEND,
            conversation_id=populated_conversation.id,
            user_text="hello",
            append_user=True,
        )

        with patch.object(
            ChatService, "_append", side_effect=OperationalError("INSERT", {}, Exception("disk I/O error"))
        ):
            with pytest.raises(PersistenceError):
                await ChatService(test_db).prepare_turn(plan)


class TestAssistantSegments:
    """Integration tests for assistant segment persistence."""

    @pytest.mark.asyncio
    async def test_segments_in_order_and_after_tail(self, test_db, test_session_factory, populated_conversation):
        written = await ChatService(test_db).append_assistant_segments(
            populated_conversation.id, ["one", "  ", "two", "three"]
        )

        assert written == 3
        contents = await _contents(test_session_factory, populated_conversation.id)
        assert contents[-3:] == ["one", "two", "three"]

    @pytest.mark.asyncio
    async def test_timestamps_strictly_increase(self, test_db, test_session_factory, test_conversation):
        service = ChatService(test_db)
        await service.append_assistant_segments(test_conversation.id, ["a", "b", "c"])
        await service.append_assistant_segments(test_conversation.id, ["d"])

        async with test_session_factory() as session:
            result = await session.execute(
                select(ChatMessage.created_at)
                .where(ChatMessage.conversation_id == test_conversation.id)
                .order_by(ChatMessage.created_at)
            )
            stamps = list(result.scalars().all())

        assert len(stamps) == 4
        assert all(earlier < later for earlier, later in zip(stamps, stamps[1:]))

    @pytest.mark.asyncio
    async def test_set_title(self, test_db, test_session_factory, test_conversation):
        await ChatService(test_db).set_title(test_conversation.id, "Weather in Accra")

        async with test_session_factory() as session:
            conversation = await session.get(ChatConversation, test_conversation.id)
            assert conversation.title == "Weather in Accra"
