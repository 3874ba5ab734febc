"""
Configuration management via environment variables.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Authentication settings
    secret_key: str = Field(
        default="change-me-to-a-random-string-at-least-32-chars",
        description="Secret key for signing session cookies and OAuth state",
    )
    session_cookie_name: str = Field(
        default="signin_session",
        description="Name of the session cookie",
    )
    session_max_age: int = Field(
        default=28800,
        description="Session max age in seconds (default 8 hours)",
    )
    bcrypt_rounds: int = Field(
        default=10,
        ge=4,
        le=31,
        description="bcrypt cost factor for new password verifiers",
    )

    # Storage settings
    storage_backend: Literal["memory", "postgres"] = Field(
        default="memory",
        description="Where accounts and attempt records live",
    )
    database_url: str | None = Field(
        default=None,
        description="Full database URL (takes precedence over individual vars)",
    )
    db_host: str = Field(default="localhost", description="Database host")
    db_port: int = Field(default=5432, description="Database port")
    db_name: str = Field(default="signin", description="Database name")
    db_user: str = Field(default="signin", description="Database user")
    db_password: str = Field(default="", description="Database password")

    # OAuth settings
    google_client_id: str = Field(default="", description="Google OAuth client id")
    google_client_secret: str = Field(default="", description="Google OAuth client secret")
    github_client_id: str = Field(default="", description="GitHub OAuth client id")
    github_client_secret: str = Field(default="", description="GitHub OAuth client secret")
    public_base_url: str = Field(
        default="http://localhost:8000",
        description="Externally visible base URL used to build OAuth callbacks",
    )
    oauth_state_max_age: int = Field(
        default=600,
        description="Seconds an OAuth state parameter stays valid",
    )

    # Paths
    base_dir: Path = Field(
        default_factory=lambda: Path(__file__).parent.parent,
        description="Base directory of the application",
    )

    @computed_field
    @property
    def db_url(self) -> str:
        """Get database URL, preferring DATABASE_URL if set."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @computed_field
    @property
    def templates_dir(self) -> Path:
        return self.base_dir / "signin" / "templates"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
