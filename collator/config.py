"""
Configuration management for Comments Collator.

Uses Pydantic Settings for type-safe environment variable loading.
Configured via .env file in project root.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be configured via .env file or environment variables.
    """

    # Python & Application
    python_env: Literal["development", "production"] = Field(
        default="development",
        description="Application environment"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level"
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./data/comments.db",
        description="Database connection URL"
    )

    # API Configuration
    api_host: str = Field(
        default="0.0.0.0",
        description="API server host"
    )
    api_port: int = Field(
        default=3000,
        description="API server port"
    )

    # Figma OAuth Configuration
    figma_client_id: str = Field(
        default="",
        description="Figma OAuth client ID"
    )
    figma_client_secret: str = Field(
        default="",
        description="Figma OAuth client secret"
    )
    figma_redirect_uri: str = Field(
        default="http://localhost:3000/auth/figma/callback",
        description="OAuth redirect URI (must match the Figma app settings)"
    )
    figma_oauth_url: str = Field(
        default="https://www.figma.com/oauth",
        description="Figma authorization endpoint"
    )
    figma_token_url: str = Field(
        default="https://api.figma.com/v1/oauth/token",
        description="Figma token endpoint (code exchange and refresh)"
    )
    figma_oauth_scope: str = Field(
        default="file_read",
        description="OAuth scope requested from Figma"
    )
    figma_api_base_url: str = Field(
        default="https://api.figma.com/v1",
        description="Figma REST API base URL"
    )
    figma_request_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for Figma API requests"
    )

    # Webhooks
    webhook_secret: str = Field(
        default="",
        description="Shared secret for HMAC-SHA256 webhook signatures"
    )

    # OAuth state & plugin sessions
    oauth_state_ttl_seconds: int = Field(
        default=1800,
        description="Lifetime of an OAuth state token"
    )
    session_max_age_hours: int = Field(
        default=24,
        description="Absolute lifetime of a plugin session"
    )

    # Comment sync
    node_lookup_batch_size: int = Field(
        default=5,
        description="Concurrent node-name lookups per batch during sync"
    )
    node_lookup_batch_delay_seconds: float = Field(
        default=1.0,
        description="Delay between node-name lookup batches"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.python_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.python_env == "production"

    @property
    def uses_postgresql(self) -> bool:
        """Check if PostgreSQL is the configured database."""
        return "postgresql" in self.database_url.lower()

    @property
    def uses_figma_oauth(self) -> bool:
        """Check if Figma OAuth is configured."""
        return bool(self.figma_client_id and self.figma_client_secret)

    def validate_production_config(self) -> None:
        """
        Validate configuration for production environment.

        Raises:
            ValueError: If required production settings are missing or invalid
        """
        if not self.is_production:
            return

        errors = []

        if not self.uses_postgresql:
            errors.append(
                "Production requires PostgreSQL. "
                "Set DATABASE_URL to a PostgreSQL connection string."
            )

        if not self.uses_figma_oauth:
            errors.append("FIGMA_CLIENT_ID and FIGMA_CLIENT_SECRET are required in production.")

        if not self.webhook_secret:
            errors.append("WEBHOOK_SECRET is required in production.")

        if errors:
            raise ValueError("Production configuration errors:\n- " + "\n- ".join(errors))


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    This function is cached to ensure we only load settings once.
    Use this function throughout the application to access settings.

    Returns:
        Settings instance loaded from environment

    Example:
        >>> from collator.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.database_url)
    """
    return Settings()
