"""Conversation store: ownership-scoped reads, truncation and message appends."""

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core.config import settings
from app.domains.chat.history import TurnPlan
from app.exceptions.base import PersistenceError
from app.exceptions.chat import ConversationAccessError
from app.schemas.chat import (
    ChatConversationDetailResponse,
    ChatConversationResponse,
    ChatHistoryResponse,
    ChatMessageResponse,
)
from models.chat_conversation import ChatConversation
from models.chat_message import ChatMessage, MessageRole


logger = logging.getLogger(__name__)

_TICK = timedelta(microseconds=1)


class ChatService:
    """Service class for conversation and message persistence."""

    def __init__(self, db: AsyncSession):
        """Initialize chat service with database session.

        Args:
            db: Async database session for data operations.
        """
        self.db = db

    async def create_conversation(self, user_id: UUID, title: str | None = None) -> ChatConversation:
        """Create an empty conversation owned by the user."""
        conversation = ChatConversation(user_id=user_id, title=title or settings.default_chat_title)
        try:
            self.db.add(conversation)
            await self.db.commit()
            await self.db.refresh(conversation)
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError("Failed to create conversation") from e
        return conversation

    async def get_owned_conversation(self, conversation_id: UUID, user_id: UUID) -> ChatConversation:
        """Fetch a conversation, scoped to its owner.

        Raises:
            ConversationAccessError: If it does not exist or belongs to someone else
        """
        query = select(ChatConversation).where(
            ChatConversation.id == conversation_id, ChatConversation.user_id == user_id
        )
        result = await self.db.execute(query)
        conversation = result.scalar_one_or_none()

        if not conversation:
            raise ConversationAccessError()
        return conversation

    async def get_messages(self, conversation_id: UUID) -> list[ChatMessage]:
        """Messages of a conversation in ordinal order."""
        query = (
            select(ChatMessage)
            .where(ChatMessage.conversation_id == conversation_id)
            .order_by(ChatMessage.created_at)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_conversation_detail(
        self, conversation_id: UUID, user_id: UUID
    ) -> ChatConversationDetailResponse:
        """Get conversation with all messages (the authoritative state for clients).

        Args:
            conversation_id: Conversation ID
            user_id: User ID for authorization

        Returns:
            Conversation with ordered messages
        """
        conversation = await self.get_owned_conversation(conversation_id, user_id)
        messages = await self.get_messages(conversation_id)

        return ChatConversationDetailResponse(
            id=conversation.id,
            user_id=conversation.user_id,
            title=conversation.title,
            created_at=conversation.created_at,
            message_count=len(messages),
            messages=[ChatMessageResponse.model_validate(msg) for msg in messages],
        )

    async def get_user_conversations(self, user_id: UUID, page: int = 1, size: int = 20) -> ChatHistoryResponse:
        """Get all conversations for a user, newest first.

        Args:
            user_id: User ID
            page: Page number
            size: Page size

        Returns:
            List of conversations with pagination
        """
        offset = (page - 1) * size

        count_query = select(func.count(ChatConversation.id)).where(ChatConversation.user_id == user_id)
        total = (await self.db.execute(count_query)).scalar() or 0

        message_counts = (
            select(ChatMessage.conversation_id, func.count(ChatMessage.id).label("message_count"))
            .group_by(ChatMessage.conversation_id)
            .subquery()
        )
        query = (
            select(ChatConversation, func.coalesce(message_counts.c.message_count, 0))
            .outerjoin(message_counts, message_counts.c.conversation_id == ChatConversation.id)
            .where(ChatConversation.user_id == user_id)
            .order_by(ChatConversation.created_at.desc())
            .limit(size)
            .offset(offset)
        )
        rows = (await self.db.execute(query)).all()

        return ChatHistoryResponse(
            conversations=[
                ChatConversationResponse(
                    id=conv.id,
                    user_id=conv.user_id,
                    title=conv.title,
                    created_at=conv.created_at,
                    message_count=count,
                )
                for conv, count in rows
            ],
            total=total,
            page=page,
            size=size,
            has_next=offset + size < total,
            has_prev=page > 1,
        )

    async def rename_conversation(self, conversation_id: UUID, user_id: UUID, title: str) -> ChatConversation:
        conversation = await self.get_owned_conversation(conversation_id, user_id)
        try:
            conversation.title = title
            await self.db.commit()
            await self.db.refresh(conversation)
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError("Failed to rename conversation") from e
        return conversation

    async def delete_conversation(self, conversation_id: UUID, user_id: UUID) -> bool:
        """Delete a conversation and its messages."""
        conversation = await self.get_owned_conversation(conversation_id, user_id)
        try:
            await self.db.execute(delete(ChatMessage).where(ChatMessage.conversation_id == conversation.id))
            await self.db.delete(conversation)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError("Failed to delete conversation") from e
        return True

    async def prepare_turn(self, plan: TurnPlan) -> None:
        """Apply a turn plan: truncate the suffix and write the user row.

        Both happen in one transaction and are committed before the model is
        invoked, so the user's input survives a crash mid-turn.

        Raises:
            PersistenceError: If the truncation or the user-message write fails
        """
        try:
            if plan.delete_ids:
                await self._delete_suffix(plan.conversation_id, plan.delete_ids)
            if plan.append_user:
                await self._append(plan.conversation_id, [(MessageRole.USER, plan.user_text)])
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to prepare turn for conversation {plan.conversation_id}: {str(e)}")
            raise PersistenceError("Failed to save your message") from e

    async def append_assistant_segments(self, conversation_id: UUID, segments: list[str]) -> int:
        """Persist one assistant row per non-empty segment, in order.

        Returns:
            Number of rows written
        """
        rows = [(MessageRole.ASSISTANT, segment) for segment in segments if segment.strip()]
        if not rows:
            return 0
        try:
            await self._append(conversation_id, rows)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError("Failed to save assistant response") from e
        return len(rows)

    async def set_title(self, conversation_id: UUID, title: str) -> None:
        try:
            conversation = await self.db.get(ChatConversation, conversation_id)
            if conversation is None:
                return
            conversation.title = title
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError("Failed to save conversation title") from e

    # Private helper methods

    async def _delete_suffix(self, conversation_id: UUID, message_ids: list[UUID]) -> None:
        # Filtering on both ids and conversation keeps a crafted id list from
        # touching another conversation's rows.
        result = await self.db.execute(
            delete(ChatMessage)
            .where(ChatMessage.id.in_(message_ids), ChatMessage.conversation_id == conversation_id)
            .execution_options(synchronize_session=False)
        )
        logger.info(f"Truncated {result.rowcount} messages from conversation {conversation_id}")

    async def _append(self, conversation_id: UUID, rows: list[tuple[MessageRole, str]]) -> None:
        """Insert rows with strictly increasing timestamps after the current tail."""
        last = (
            await self.db.execute(
                select(func.max(ChatMessage.created_at)).where(ChatMessage.conversation_id == conversation_id)
            )
        ).scalar()
        timestamp = datetime.utcnow()
        if last is not None and timestamp <= last:
            timestamp = last + _TICK

        for role, content in rows:
            self.db.add(
                ChatMessage(
                    conversation_id=conversation_id,
                    role=role,
                    content=content,
                    created_at=timestamp,
                    updated_at=timestamp,
                )
            )
            timestamp += _TICK
        await self.db.flush()
