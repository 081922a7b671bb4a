"""Message history assembly for send, edit and regenerate.

All three modes produce a ``TurnPlan`` from the persisted, ordered message list:
which rows to delete (always a contiguous suffix of this conversation), whether
a new user row must be written, and the working history the model sees.
"""

from uuid import UUID

from pydantic import BaseModel, Field

from app.exceptions.chat import InvalidMessageIndexError
from app.schemas.chat import ChatStreamRequest, TurnMode
from app.services.model_bridge import WorkingTurn
from models.chat_message import ChatMessage, MessageRole


class TurnPlan(BaseModel):
    """What a request will do to the stored history before the model runs."""

    mode: TurnMode
    conversation_id: UUID
    user_text: str
    delete_ids: list[UUID] = Field(default_factory=list)
    append_user: bool
    prior: list[WorkingTurn] = Field(default_factory=list)

    @property
    def working_history(self) -> list[WorkingTurn]:
        """Prior turns followed by the user turn being answered."""
        return [*self.prior, WorkingTurn.text("user", self.user_text)]

    @property
    def is_first_turn(self) -> bool:
        """Whether this turn should title the conversation."""
        return not self.prior and self.mode != TurnMode.REGENERATE


def to_working_turns(messages: list[ChatMessage]) -> list[WorkingTurn]:
    return [WorkingTurn.text(_role_value(msg.role), msg.content) for msg in messages]


def _role_value(role: MessageRole | str) -> str:
    return role.value if isinstance(role, MessageRole) else str(role)


def _require_user_message(messages: list[ChatMessage], index: int, field: str) -> ChatMessage:
    if index >= len(messages):
        raise InvalidMessageIndexError(
            f"{field} is out of range",
            details={field: index, "message_count": len(messages)},
        )
    message = messages[index]
    if _role_value(message.role) != MessageRole.USER.value:
        raise InvalidMessageIndexError(
            f"{field} must point at a user message",
            details={field: index},
        )
    return message


def plan_turn(
    conversation_id: UUID, messages: list[ChatMessage], request: ChatStreamRequest
) -> TurnPlan:
    """Build the plan for one inbound request.

    Args:
        conversation_id: Conversation the messages belong to
        messages: Persisted messages in ordinal (creation) order
        request: Validated inbound request

    Returns:
        TurnPlan describing deletions, the new user row and the model history

    Raises:
        InvalidMessageIndexError: If an edit/regenerate index is unusable
    """
    mode = request.mode

    if mode == TurnMode.REGENERATE:
        index = request.regenerate_from_index
        target = _require_user_message(messages, index, "regenerateFromIndex")
        return TurnPlan(
            mode=mode,
            conversation_id=conversation_id,
            user_text=target.content,
            delete_ids=[msg.id for msg in messages[index + 1:]],
            append_user=False,
            prior=to_working_turns(messages[:index]),
        )

    if mode == TurnMode.EDIT:
        index = request.edit_from_message_index
        _require_user_message(messages, index, "editFromMessageIndex")
        return TurnPlan(
            mode=mode,
            conversation_id=conversation_id,
            user_text=request.message,
            delete_ids=[msg.id for msg in messages[index:]],
            append_user=True,
            prior=to_working_turns(messages[:index]),
        )

    return TurnPlan(
        mode=mode,
        conversation_id=conversation_id,
        user_text=request.message,
        append_user=True,
        prior=to_working_turns(messages),
    )
