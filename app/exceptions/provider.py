# ruff: noqa: D107
"""Model provider exceptions."""

from typing import Any

import anthropic
import httpx

from .base import BaseAppException


class ProviderError(BaseAppException):
    """Base exception for model provider errors."""

    def __init__(
        self,
        message: str = "Model provider error occurred",
        error_code: str = "PROVIDER_ERROR",
        details: dict[str, Any] | None = None,
        status_code: int = 502,
    ):
        super().__init__(message, status_code=status_code, error_code=error_code, details=details)


class ProviderUnavailableError(ProviderError):
    """Exception raised when the model provider is unreachable or overloaded."""

    def __init__(
        self,
        message: str = "Model provider is temporarily unavailable",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, "PROVIDER_UNAVAILABLE", details, status_code=503)


class ProviderTimeoutError(ProviderError):
    """Exception raised when a provider request times out."""

    def __init__(
        self,
        message: str = "Model provider request timed out",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, "PROVIDER_TIMEOUT", details, status_code=504)


class ProviderRateLimitError(ProviderError):
    """Exception raised when the provider rate limit is hit."""

    def __init__(
        self,
        message: str = "Model provider rate limit exceeded",
        retry_after: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        if details is None:
            details = {}
        if retry_after:
            details["retry_after"] = retry_after
        super().__init__(message, "PROVIDER_RATE_LIMITED", details, status_code=503)


class ProviderInvalidRequestError(ProviderError):
    """Exception raised when the provider rejects the request."""

    def __init__(
        self,
        message: str = "Invalid request to model provider",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, "PROVIDER_INVALID_REQUEST", details)


class ProviderConfigurationError(ProviderError):
    """Exception raised when the provider is not properly configured."""

    def __init__(
        self,
        message: str = "Model provider is not properly configured",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, "PROVIDER_CONFIGURATION_ERROR", details, status_code=500)


def _retry_after(exc: anthropic.APIStatusError) -> int | None:
    value = exc.response.headers.get("retry-after") if exc.response is not None else None
    try:
        return int(value) if value else None
    except ValueError:
        return None


def map_provider_error(exc: Exception) -> ProviderError:
    """Translate an SDK exception into the provider error family."""
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, anthropic.APITimeoutError):
        return ProviderTimeoutError(str(exc) or "Model provider request timed out")
    if isinstance(exc, anthropic.APIConnectionError):
        return ProviderUnavailableError(str(exc) or "Could not reach model provider")
    if isinstance(exc, anthropic.RateLimitError):
        return ProviderRateLimitError(str(exc), retry_after=_retry_after(exc))
    if isinstance(exc, anthropic.AuthenticationError | anthropic.PermissionDeniedError):
        return ProviderConfigurationError(str(exc))
    if isinstance(exc, anthropic.BadRequestError | anthropic.NotFoundError):
        return ProviderInvalidRequestError(str(exc))
    if isinstance(exc, anthropic.APIStatusError):
        if exc.status_code >= 500:
            return ProviderUnavailableError(str(exc), details={"status_code": exc.status_code})
        return ProviderError(str(exc), details={"status_code": exc.status_code})
    # Transport errors raised while reading the response body are not wrapped by the SDK
    if isinstance(exc, httpx.TimeoutException):
        return ProviderTimeoutError(str(exc) or "Model provider request timed out")
    if isinstance(exc, httpx.HTTPError):
        return ProviderUnavailableError(str(exc) or "Connection to model provider was lost")
    return ProviderError(str(exc) or exc.__class__.__name__)
