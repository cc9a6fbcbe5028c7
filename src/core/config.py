"""Application configuration management using Pydantic Settings."""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Required settings will raise validation errors if not provided.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="club-access-backend", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins",
    )

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_secret_key: str = Field(..., description="Supabase secret key for backend operations")
    supabase_signing_key_jwk: str = Field(..., description="Supabase signing key JWK (JSON string) for JWT token verification")

    # Stripe
    stripe_secret_key: str = Field(default="", description="Stripe secret API key used for refunds")

    # Email (Resend)
    resend_api_key: str = Field(default="", description="Resend API key for admin notifications")
    email_from_address: str = Field(
        default="Club Access <noreply@club-access.local>",
        description="From address for admin notification emails",
    )
    admin_notification_emails: str = Field(
        default="",
        description="Comma-separated list of admin addresses that receive access notifications",
    )

    # External calls
    external_call_timeout_seconds: float = Field(
        default=15.0, gt=0, description="Timeout for a single community/enrollment provider call"
    )
    refund_call_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Timeout for the payment provider refund call"
    )

    # Access grants
    default_currency: str = Field(default="BYN", description="Currency used for admin-created orders")
    default_auto_renew: bool = Field(default=False, description="Auto-renew flag for newly created subscriptions")
    default_grant_days: int = Field(default=30, ge=1, description="Access window for grant_access when no days are given")
    default_grant_price: Decimal = Field(default=Decimal("0"), ge=0, description="Price of an admin grant when none is given")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def admin_notification_emails_list(self) -> list[str]:
        """Parse admin notification addresses into a list."""
        return [email.strip() for email in self.admin_notification_emails.split(",") if email.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings: Application settings instance.

    Note:
        Settings are cached using lru_cache for performance.
        Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
