"""
Chat conversation model.
"""

from sqlalchemy import Column, ForeignKey, Index, String
from sqlalchemy.orm import relationship

from .base import UUID, BaseModel


class ChatConversation(BaseModel):
    """
    A conversation owned by exactly one user.
    """

    __tablename__ = "chat_conversations"
    __table_args__ = (Index("idx_chat_conversations_user_created", "user_id", "created_at"),)

    user_id = Column(UUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=True)  # Set once by the first turn

    # Relationships
    user = relationship("User", back_populates="chat_conversations")
    messages = relationship(
        "ChatMessage",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="ChatMessage.created_at",
    )
