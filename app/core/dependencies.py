# app/core/dependencies.py
import logging
from functools import lru_cache

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.security import SessionTokenVerifier
from app.database import get_db, get_session_factory
from app.domains.chat.orchestrator import StreamingOrchestrator
from app.domains.user.service import UserService
from app.exceptions.base import AppPermissionError, AuthenticationError, PersistenceError
from app.services.model_bridge import ModelBridge
from app.services.search_service import WebSearchService
from app.services.title_service import TitleSummarizer
from models import User

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)
verifier = SessionTokenVerifier()


async def validate_token(
    token: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    """Validate and decode the session JWT.

    Returns:
        dict: Decoded token payload

    Raises:
        AuthenticationError: If the token is missing or invalid
    """
    if not token or not token.credentials:
        raise AuthenticationError("Authentication token is required")
    return verifier.verify_token(token.credentials)


async def get_current_user(
    request: Request,
    payload: dict = Depends(validate_token),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the session subject to the user row of record.

    Returns:
        User: Current authenticated user

    Raises:
        AuthenticationError: If the payload has no email for a new user
        AppPermissionError: If the account is inactive
        PersistenceError: If the users table cannot be reached
    """
    subject = payload["sub"]
    try:
        user = await UserService(db).get_or_create_user(subject, payload)
    except SQLAlchemyError as e:
        logger.error("User lookup failed: %s", str(e))
        raise PersistenceError("Authentication service error") from e

    if not user.is_active:
        raise AppPermissionError("User account is inactive", error_code="USER_INACTIVE")

    # Add user info to request state for logging
    request.state.user_id = user.id
    return user


# Streaming turn collaborators. Overridden in tests to stub the network.


@lru_cache
def get_model_bridge() -> ModelBridge:
    return ModelBridge()


@lru_cache
def get_search_service() -> WebSearchService:
    return WebSearchService()


@lru_cache
def get_title_summarizer() -> TitleSummarizer:
    return TitleSummarizer()


def get_orchestrator(
    bridge: ModelBridge = Depends(get_model_bridge),
    search_service: WebSearchService = Depends(get_search_service),
    title_summarizer: TitleSummarizer = Depends(get_title_summarizer),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> StreamingOrchestrator:
    """Assemble the orchestrator for one streaming request."""
    return StreamingOrchestrator(
        bridge=bridge,
        search_service=search_service,
        title_summarizer=title_summarizer,
        session_factory=session_factory,
    )
