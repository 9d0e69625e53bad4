"""
Application Configuration
=========================

Centralized configuration using Pydantic Settings.
Loads from environment variables with validation.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    ENVIRONMENT: str = Field(default="development")

    # Server
    PORT: int = Field(default=4000)

    # Development Settings
    DEV_AUTH_DISABLED: bool = Field(
        default=False,
        description="Disable identity verification for local development/testing"
    )
    DEV_USER_ID: str = Field(default="dev-user")

    # Database
    DATABASE_URL: str = Field(default="")

    # Redis
    REDIS_URL: str = Field(default="redis://localhost:6379/0")

    # Identity provider (JWT verification)
    AUTH_JWT_KEY: str = Field(
        default="",
        description="PEM public key (RS*/ES*) or shared secret (HS*) used to verify session tokens",
    )
    AUTH_JWT_ALGORITHM: str = Field(default="RS256")
    AUTH_JWT_ISSUER: Optional[str] = Field(default=None)
    AUTH_JWT_AUDIENCE: Optional[str] = Field(default=None)

    # Identity provider admin API (account deletion)
    IDENTITY_API_URL: str = Field(default="")
    IDENTITY_API_SECRET: str = Field(default="")

    # RevenueCat
    REVENUECAT_WEBHOOK_AUTH: str = Field(default="")

    # Legacy billing history lookup
    LEGACY_BILLING_API_URL: str = Field(default="")
    LEGACY_BILLING_API_KEY: str = Field(default="")

    # Azure Blob Storage (avatars)
    AZURE_STORAGE_CONNECTION_STRING: str = Field(default="")
    AZURE_STORAGE_CONTAINER: str = Field(default="affirm-dev")

    # App Configuration
    ALLOWED_ORIGINS: str = Field(default="http://localhost:3000,http://localhost:8081")
    MAX_AVATAR_UPLOAD_SIZE_MB: int = Field(default=5)
    LIFETIME_STORAGE_LIMIT_GB: int = Field(default=10)

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse ALLOWED_ORIGINS into a list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    @property
    def database_url_async(self) -> str:
        """Convert database URL to async format for asyncpg."""
        if self.DATABASE_URL.startswith("postgresql://"):
            return self.DATABASE_URL.replace(
                "postgresql://", "postgresql+asyncpg://", 1
            )
        return self.DATABASE_URL

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.ENVIRONMENT.lower() == "development"

    @property
    def auth_disabled(self) -> bool:
        """Check if auth is disabled (only allowed in development)."""
        return self.is_development and self.DEV_AUTH_DISABLED

    @field_validator("REVENUECAT_WEBHOOK_AUTH", "LEGACY_BILLING_API_URL", "IDENTITY_API_URL")
    @classmethod
    def strip_value(cls, v: str) -> str:
        return v.strip()


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    """
    return Settings()


# Export a default settings instance
settings = get_settings()
