"""Application configuration using pydantic-settings."""
from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.navigation import Route


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The backend endpoint and public API key are required. Constructing Settings
    without them raises a validation error, which is treated as fatal at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Supabase - shared with the web frontend (NEXT_PUBLIC_ prefix for Next.js exposure)
    supabase_url: str = Field(
        validation_alias=AliasChoices("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL"),
    )
    supabase_anon_key: str = Field(
        validation_alias=AliasChoices("SUPABASE_ANON_KEY", "NEXT_PUBLIC_SUPABASE_ANON_KEY"),
    )

    # OAuth
    site_url: str = Field(default="http://localhost:3000", validation_alias="SITE_URL")
    oauth_provider: str = Field(default="google", validation_alias="OAUTH_PROVIDER")
    redirect_strategy: Literal["active", "passive"] = Field(
        default="active", validation_alias="REDIRECT_STRATEGY",
    )

    bookmarks_table: str = Field(default="bookmarks", validation_alias="BOOKMARKS_TABLE")

    # Transport
    http_timeout: float = Field(default=30.0, validation_alias="HTTP_TIMEOUT")
    realtime_heartbeat_interval: float = Field(
        default=25.0, validation_alias="REALTIME_HEARTBEAT_INTERVAL",
    )
    realtime_reconnect_delay: float = Field(
        default=5.0, validation_alias="REALTIME_RECONNECT_DELAY",
    )

    # Database - used by migrations and the local backend
    database_url: str = Field(
        default="sqlite+aiosqlite://",
        validation_alias="DATABASE_URL",
    )

    @model_validator(mode="after")
    def validate_backend_credentials(self) -> "Settings":
        """Reject blank backend credentials and normalize URLs."""
        if not self.supabase_url.strip():
            raise ValueError("SUPABASE_URL must be set to the backend endpoint.")
        if not self.supabase_anon_key.strip():
            raise ValueError("SUPABASE_ANON_KEY must be set to the public API key.")
        self.supabase_url = self.supabase_url.strip().rstrip("/")
        self.supabase_anon_key = self.supabase_anon_key.strip()
        self.site_url = self.site_url.strip().rstrip("/")
        return self

    @property
    def auth_callback_url(self) -> str:
        """Get the URL the OAuth provider redirects back to."""
        return f"{self.site_url}{Route.AUTH_CALLBACK}"

    @property
    def realtime_url(self) -> str:
        """Get the websocket URL of the realtime change feed."""
        if self.supabase_url.startswith("https://"):
            base = "wss://" + self.supabase_url.removeprefix("https://")
        elif self.supabase_url.startswith("http://"):
            base = "ws://" + self.supabase_url.removeprefix("http://")
        else:
            base = self.supabase_url
        return f"{base}/realtime/v1/websocket"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
