"""Chat API controller with FastAPI endpoints."""

import logging
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Path, Query, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import get_current_user, get_orchestrator, validate_token
from app.database import get_db
from app.domains.chat.history import plan_turn
from app.domains.chat.orchestrator import StreamingOrchestrator
from app.domains.chat.service import ChatService
from app.domains.quota.service import QuotaService
from app.exceptions.base import PersistenceError
from app.exceptions.chat import QuotaExceededError
from app.schemas.base import ResponseSchema
from app.schemas.chat import (
    ChatConversationCreate,
    ChatConversationRename,
    ChatConversationResponse,
    ChatStreamRequest,
)
from models.user import User


logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/chat",
    tags=["chat"],
    dependencies=[Depends(validate_token)],
)

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.post("/stream")
async def stream_chat(
    chat_request: ChatStreamRequest = Body(...),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    orchestrator: StreamingOrchestrator = Depends(get_orchestrator),
):
    """Send, edit or regenerate a message and stream the assistant's answer.

    Ownership, index validation and the quota check all happen before the
    stream opens, so a rejected request gets an ordinary error response and
    no model work is started. The user's message is committed before the
    model is invoked.

    Returns:
        NDJSON stream of chat events
    """
    chat_service = ChatService(db)
    conversation = await chat_service.get_owned_conversation(chat_request.chat_id, current_user.id)
    messages = await chat_service.get_messages(conversation.id)
    plan = plan_turn(conversation.id, messages, chat_request)

    quota = QuotaService(db)
    decision = await quota.authorize(current_user.id)
    if not decision.allowed:
        raise QuotaExceededError(
            message=f"You have reached your daily limit of {decision.limit} messages on the {decision.plan} plan",
            details={"plan": decision.plan, "limit": decision.limit, "used": decision.used},
        )

    try:
        await chat_service.prepare_turn(plan)
    except PersistenceError:
        await quota.refund(current_user.id)
        raise

    logger.info(
        f"Starting {plan.mode.value} turn in conversation {conversation.id} "
        f"({decision.used}/{decision.limit} on {decision.plan})"
    )
    channel = orchestrator.start(plan, current_user.id)
    return StreamingResponse(
        channel.ndjson(),
        media_type="application/x-ndjson",
        headers=STREAM_HEADERS,
    )


@router.post("/conversations", response_model=ResponseSchema, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    conversation_data: ChatConversationCreate | None = Body(default=None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Create an empty conversation."""
    conversation = await ChatService(db).create_conversation(
        current_user.id, conversation_data.title if conversation_data else None
    )
    return ResponseSchema(
        status="success",
        message="Conversation created successfully",
        data=ChatConversationResponse.model_validate(conversation).model_dump(mode="json"),
    )


@router.get("/conversations", response_model=ResponseSchema)
async def get_conversations(
    page: int = Query(1, ge=1, description="Page number"),
    size: int = Query(20, ge=1, le=100, description="Page size"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get all conversations for the current user.

    Args:
        page: Page number
        size: Page size
        current_user: Current authenticated user
        db: Database session

    Returns:
        List of conversations with pagination
    """
    result = await ChatService(db).get_user_conversations(user_id=current_user.id, page=page, size=size)
    return ResponseSchema(
        status="success",
        message="Conversations retrieved successfully",
        data=result.model_dump(mode="json"),
    )


@router.get("/conversations/{conversation_id}", response_model=ResponseSchema)
async def get_conversation(
    conversation_id: UUID = Path(..., description="Conversation ID"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get a specific conversation with all messages in order."""
    result = await ChatService(db).get_conversation_detail(
        conversation_id=conversation_id, user_id=current_user.id
    )
    return ResponseSchema(
        status="success",
        message="Conversation retrieved successfully",
        data=result.model_dump(mode="json"),
    )


@router.patch("/conversations/{conversation_id}", response_model=ResponseSchema)
async def rename_conversation(
    conversation_id: UUID = Path(..., description="Conversation ID"),
    rename_data: ChatConversationRename = Body(...),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    conversation = await ChatService(db).rename_conversation(
        conversation_id=conversation_id, user_id=current_user.id, title=rename_data.title
    )
    return ResponseSchema(
        status="success",
        message="Conversation renamed successfully",
        data=ChatConversationResponse.model_validate(conversation).model_dump(mode="json"),
    )


@router.delete("/conversations/{conversation_id}", response_model=ResponseSchema)
async def delete_conversation(
    conversation_id: UUID = Path(..., description="Conversation ID"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Delete a conversation and its messages.

    Args:
        conversation_id: Conversation ID
        current_user: Current authenticated user
        db: Database session

    Returns:
        Success response
    """
    await ChatService(db).delete_conversation(conversation_id=conversation_id, user_id=current_user.id)
    return ResponseSchema(
        status="success",
        message="Conversation deleted successfully",
        data=None,
    )
