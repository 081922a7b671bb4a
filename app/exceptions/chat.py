# ruff: noqa: D107
"""Chat and quota exceptions."""

from typing import Any

from .base import AppPermissionError, BaseAppException, PersistenceError, ValidationError


class ConversationAccessError(AppPermissionError):
    """Raised when a conversation does not exist or belongs to another user."""

    def __init__(self, message: str = "Conversation not found or access denied"):
        super().__init__(message=message, error_code="CONVERSATION_ACCESS_DENIED")


class InvalidMessageIndexError(ValidationError):
    """Raised when an edit/regenerate index does not point at a user message."""

    def __init__(self, message: str = "Invalid message index", details: dict[str, Any] | None = None):
        super().__init__(message=message, error_code="INVALID_MESSAGE_INDEX", details=details)


class QuotaExceededError(BaseAppException):
    """Raised when the user has used up the daily message allowance."""

    def __init__(
        self,
        message: str = "Daily message limit reached",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            message=message,
            status_code=429,
            error_code="DAILY_LIMIT_REACHED",
            details=details,
        )


class QuotaStoreError(PersistenceError):
    """Raised when the atomic quota operation cannot be performed."""

    def __init__(self, message: str = "Usage quota could not be verified"):
        super().__init__(message=message, error_code="QUOTA_STORE_UNAVAILABLE", status_code=503)
