# python
# app/core/config.py
"""Configuration settings for the Chat Orchestrator API.

Uses Pydantic BaseSettings for environment variable management.
"""
import secrets
from enum import Enum

from pydantic import AnyHttpUrl, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvironmentEnum(str, Enum):
    development = "development"
    testing = "testing"
    staging = "staging"
    production = "production"


class LogLevelEnum(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormatEnum(str, Enum):
    simple = "simple"
    json = "json"


DEFAULT_SYSTEM_PROMPT = (
    "You are a direct, honest assistant. Keep answers short and clear, use proper "
    "paragraphing, and get straight to the point. When a question depends on current "
    "events, prices, weather or anything after your training data, call the web_search "
    "tool and cite the URLs you relied on."
)


class Settings(BaseSettings):
    # Pydantic v2 settings configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===== Application Settings =====
    app_name: str = Field(default="Chat Orchestrator API", description="Application name")
    environment: EnvironmentEnum = Field(
        default=EnvironmentEnum.development, description="Environment type"
    )
    debug: bool = Field(default=False, description="Debug mode")
    version: str = Field(default="1.0.0", description="Application version")

    # ===== Security Settings =====
    secret_key: str = Field(
        default_factory=lambda: secrets.token_urlsafe(32),
        description="Secret key for session JWT verification",
    )
    algorithm: str = Field(default="HS256", description="JWT algorithm")
    access_token_expire_minutes: int = Field(default=30, description="JWT token expiration time")

    # ===== Database Settings =====
    database_url: str | None = Field(default=None, description="Database connection URL")
    db_pool_size: int = Field(default=20, description="Database connection pool size")
    db_max_overflow: int = Field(default=0, description="Database max overflow connections")

    # Test database URL
    test_database_url: str | None = Field(default=None, description="Test database URL")

    # ===== Model Provider (Anthropic) =====
    anthropic_api_key: str | None = Field(default=None, description="Anthropic API key")
    anthropic_model: str = Field(default="claude-sonnet-4-20250514", description="Chat model")
    anthropic_max_tokens: int = Field(default=1024, description="Maximum tokens per model turn")
    ai_request_timeout: int = Field(default=60, description="Model request timeout in seconds")
    system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT, description="Chat system prompt")

    # ===== Title Summarizer =====
    title_model: str = Field(default="claude-3-5-haiku-latest", description="Title model")
    title_max_tokens: int = Field(default=50, description="Maximum tokens for a title")
    title_timeout: int = Field(default=10, description="Title request timeout in seconds")
    title_max_length: int = Field(default=50, description="Hard cap on stored titles")
    fallback_title_length: int = Field(
        default=30, description="Characters of user input used as fallback title"
    )
    default_chat_title: str = Field(default="New Chat", description="Title of a new chat")

    # ===== Web Search (Tavily) =====
    tavily_api_key: str | None = Field(default=None, description="Tavily API key")
    tavily_api_url: AnyHttpUrl = Field(
        default="https://api.tavily.com/search", description="Tavily search endpoint"
    )
    search_max_results: int = Field(default=5, description="Search results per query")
    search_timeout: int = Field(default=15, description="Search request timeout in seconds")
    search_max_attempts: int = Field(default=2, description="Search attempts on network errors")

    # ===== Plans & Quota =====
    plan_limits: dict[str, int] = Field(
        default={"Free": 10, "Pro": 100, "Plus": 300},
        description="Daily message limit per plan tier",
    )
    default_plan: str = Field(default="Free", description="Plan applied when none is stored")
    override_plan: str = Field(default="Plus", description="Plan granted to override emails")
    vip_emails: str = Field(default="", description="Override emails (comma-separated)")
    default_reset_timezone: str = Field(
        default="UTC", description="Anchor timezone for daily quota resets"
    )

    # ===== Chat Limits =====
    max_message_length: int = Field(default=32000, description="Maximum user message length")
    chat_max_tool_iterations: int = Field(
        default=5, description="Maximum tool calls in one turn"
    )

    # ===== CORS Settings =====
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000",
        description="Allowed CORS origins (comma-separated)",
    )

    @property
    def allowed_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def vip_email_list(self) -> list[str]:
        """Parse override emails, lowercased."""
        return [email.strip().lower() for email in self.vip_emails.split(",") if email.strip()]

    # ===== Monitoring & Logging =====
    log_level: LogLevelEnum = Field(default=LogLevelEnum.INFO, description="Logging level")
    log_format: LogFormatEnum = Field(default=LogFormatEnum.json, description="Log format")

    # ===== Server Settings =====
    host: str = Field(default="127.0.0.1", description="Host to bind the server")
    port: int = Field(default=8000, description="Port to bind the server")

    # ===== Computed Properties =====
    @property
    def is_development(self) -> bool:
        return self.environment == EnvironmentEnum.development

    @property
    def is_production(self) -> bool:
        return self.environment == EnvironmentEnum.production

    @property
    def is_testing(self) -> bool:
        return self.environment == EnvironmentEnum.testing

    @property
    def has_ai_enabled(self) -> bool:
        return bool(self.anthropic_api_key)

    @property
    def has_search_enabled(self) -> bool:
        return bool(self.tavily_api_key)

    # ===== Validation Methods =====
    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v):
        if v and isinstance(v, str):
            lv = v.lower()
            if lv in ["dev", "develop"]:
                return "development"
            if lv in ["prod"]:
                return "production"
        return v

    @field_validator("plan_limits")
    @classmethod
    def validate_plan_limits(cls, v):
        for plan, limit in v.items():
            if limit < 1:
                raise ValueError(f"Daily limit for plan {plan} must be positive")
        return v

    @field_validator("chat_max_tool_iterations")
    @classmethod
    def validate_tool_iterations(cls, v):
        if v < 1:
            raise ValueError("chat_max_tool_iterations must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_plan_tiers(self):
        for plan in (self.default_plan, self.override_plan):
            if plan not in self.plan_limits:
                raise ValueError(f"Plan {plan} has no configured daily limit")
        if not self.test_database_url and self.database_url and "neondb" in self.database_url:
            self.test_database_url = self.database_url.replace("neondb", "neondb_test")
        return self


settings = Settings()


class ConfigValidator:
    @staticmethod
    def validate_required_settings():
        errors = []
        if not settings.database_url:
            errors.append("DATABASE_URL is required")
        if settings.is_production and not settings.anthropic_api_key:
            errors.append("ANTHROPIC_API_KEY is required in production")
        if settings.is_production and not settings.tavily_api_key:
            errors.append("TAVILY_API_KEY is required in production")
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

    @staticmethod
    def get_feature_status() -> dict:
        return {
            "ai_enabled": settings.has_ai_enabled,
            "search_enabled": settings.has_search_enabled,
            "plans": sorted(settings.plan_limits),
            "environment": settings.environment,
        }


def get_config_summary() -> dict:
    return {
        "app_name": settings.app_name,
        "version": settings.version,
        "environment": settings.environment,
        "debug": settings.debug,
        "features": ConfigValidator.get_feature_status(),
        "database_configured": bool(settings.database_url),
    }


__all__ = [
    "settings",
    "Settings",
    "ConfigValidator",
    "get_config_summary",
    "EnvironmentEnum",
    "LogLevelEnum",
    "LogFormatEnum",
]
