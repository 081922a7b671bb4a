"""
Chat message model.

Rows are append-only. Editing or regenerating deletes a contiguous suffix of
the conversation and appends new rows; content is never updated in place.
"""

import enum

from sqlalchemy import Column, Enum, ForeignKey, Index, Text
from sqlalchemy.orm import relationship

from .base import UUID, BaseModel


class MessageRole(str, enum.Enum):
    """Message role enumeration."""

    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """
    One persisted message. Position in the conversation is ``created_at`` order.
    """

    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("idx_chat_messages_conversation_created", "conversation_id", "created_at"),
    )

    conversation_id = Column(
        UUID(), ForeignKey("chat_conversations.id", ondelete="CASCADE"), nullable=False
    )
    role = Column(
        Enum(MessageRole, name="messagerole", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    content = Column(Text, nullable=False)

    # Relationships
    conversation = relationship("ChatConversation", back_populates="messages")
