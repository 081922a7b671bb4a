"""Chat schemas for request/response serialization."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import ConfigDict, Field, field_validator, model_validator

from app.core.config import settings
from models.chat_message import MessageRole

from .base import BaseModelSchema, BaseSchema


class TurnMode(str, Enum):
    """How a streaming turn relates to the persisted history."""

    SEND = "send"
    EDIT = "edit"
    REGENERATE = "regenerate"


class ChatStreamRequest(BaseSchema):
    """Inbound send / edit / regenerate request."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    chat_id: UUID = Field(..., alias="chatId", description="Conversation to continue")
    message: str = Field(
        default="",
        max_length=settings.max_message_length,
        description="User message (ignored when regenerating)",
    )
    regenerate: bool = Field(default=False, description="Re-run the answer to an existing message")
    regenerate_from_index: int | None = Field(
        default=None, alias="regenerateFromIndex", ge=0, description="Position of the user message"
    )
    edit_from_message_index: int | None = Field(
        default=None, alias="editFromMessageIndex", ge=0, description="Position of the edited message"
    )

    @model_validator(mode="after")
    def validate_mode(self):
        if self.regenerate and self.edit_from_message_index is not None:
            raise ValueError("A request cannot both edit and regenerate")
        if self.regenerate and self.regenerate_from_index is None:
            raise ValueError("regenerateFromIndex is required when regenerating")
        if not self.regenerate and not self.message.strip():
            raise ValueError("Message cannot be empty")
        return self

    @property
    def mode(self) -> TurnMode:
        if self.regenerate:
            return TurnMode.REGENERATE
        if self.edit_from_message_index is not None:
            return TurnMode.EDIT
        return TurnMode.SEND


class ChatMessageResponse(BaseModelSchema):
    """Schema for chat message response."""

    conversation_id: UUID
    role: MessageRole
    content: str

    model_config = ConfigDict(from_attributes=True)


class ChatConversationCreate(BaseSchema):
    """Schema for creating a new conversation."""

    title: str = Field(default=settings.default_chat_title, max_length=200)

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Title cannot be empty")
        return v


class ChatConversationRename(ChatConversationCreate):
    """Schema for renaming a conversation."""

    title: str = Field(..., min_length=1, max_length=200)


class ChatConversationResponse(BaseModelSchema):
    """Schema for chat conversation response."""

    user_id: UUID
    title: str | None
    message_count: int = Field(default=0, description="Number of messages in conversation")

    model_config = ConfigDict(from_attributes=True)


class ChatConversationDetailResponse(ChatConversationResponse):
    """Schema for detailed chat conversation response with messages."""

    messages: list[ChatMessageResponse] = Field(default=[], description="Ordered messages")


class ChatHistoryResponse(BaseSchema):
    """Schema for the paginated conversation list."""

    conversations: list[ChatConversationResponse]
    total: int
    page: int
    size: int
    has_next: bool
    has_prev: bool


class UsageResponse(BaseSchema):
    """Effective plan and daily usage for the current user."""

    plan: str
    limit: int
    used: int
    remaining: int
    total_messages: int
    resets_in_timezone: str
    as_of: datetime


ChatConversationDetailResponse.model_rebuild()
