"""Configuration management for the opportunity tracker scheduler."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    # Environment variables should be set directly
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase configuration (required)
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role key")
    SUPABASE_TIMEOUT_SECONDS: int = Field(default=10, description="PostgREST request timeout")

    # Environment
    TRACKER_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")

    # Google OAuth (optional; without it CBC task sync is skipped)
    GOOGLE_CLIENT_ID: str | None = Field(default=None, description="Google OAuth client ID")
    GOOGLE_CLIENT_SECRET: str | None = Field(default=None, description="Google OAuth client secret")
    TOKEN_ENCRYPTION_KEY: str | None = Field(
        default=None, description="Secret used to derive the OAuth token encryption key"
    )
    ACCESS_TOKEN_EXPIRY_BUFFER_SECONDS: int = Field(
        default=300, description="Refresh access tokens this many seconds before expiry"
    )

    # CBC reminder tasks
    CBC_TASK_DUE_HOUR: int = Field(default=9, description="Local hour the CBC task is due")
    CBC_TASK_TIMEZONE: str = Field(
        default="UTC", description="IANA timezone used for CBC calendar days"
    )
    CBC_DEFAULT_TASK_LIST_TITLE: str = Field(
        default="My Tasks", description="Preferred Google Tasks list for CBC reminders"
    )

    # Outbound Google Tasks API limits
    GOOGLE_TASKS_REQUESTS_PER_MINUTE: int = Field(
        default=50, description="Sustained Google Tasks calls per user per minute"
    )
    GOOGLE_TASKS_BURST_SIZE: int = Field(default=10, description="Google Tasks burst size")
    EXTERNAL_API_TIMEOUT_SECONDS: int = Field(
        default=10, description="Timeout for outbound Google API calls"
    )

    # Manual recalculation endpoint limits
    RECALCULATE_REQUESTS_PER_MINUTE: int = Field(
        default=10, description="Manual recalculations per opportunity per minute"
    )
    RECALCULATE_BURST_SIZE: int = Field(default=15, description="Manual recalculation burst size")

    # Shutdown
    SHUTDOWN_SYNC_TIMEOUT_SECONDS: float = Field(
        default=10.0, description="How long shutdown waits for background CBC task syncs"
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If required environment variables are missing
    """
    return Settings()
