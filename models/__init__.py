"""
Models package initialization.
"""

from .base import Base, BaseModel
from .chat_conversation import ChatConversation
from .chat_message import ChatMessage, MessageRole
from .user import User

__all__ = [
    "Base",
    "BaseModel",
    "User",
    # Chat models
    "ChatConversation",
    "ChatMessage",
    "MessageRole",
]
