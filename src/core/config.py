"""Application configuration management using Pydantic Settings."""

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
    app_name: str = Field(default="handi-backend", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_secret_key: str = Field(..., description="Supabase secret key for backend operations")
    supabase_signing_key_jwk: str = Field(..., description="Supabase signing key JWK (JSON string) for JWT token verification")
    storage_bucket: str = Field(default="chat-attachments", description="Storage bucket for chat attachments and receipts")

    # Stripe
    stripe_secret_key: str = Field(default="", description="Stripe secret API key")
    stripe_webhook_secret: str = Field(default="", description="Stripe webhook signing secret")
    stripe_publishable_key: str = Field(default="", description="Stripe publishable key (for frontend)")

    # Email (Resend)
    resend_api_key: str = Field(default="", description="Resend API key for sending emails")
    email_from_address: str = Field(
        default="Handi <noreply@handi.mx>",
        description="From address for transactional emails",
    )
    admin_email: str = Field(default="", description="Recipient for admin notifications")

    # URLs
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Frontend application URL for redirects and email links",
    )
    api_base_url: str = Field(
        default="http://localhost:8080",
        description="Public base URL of this API (used for payment redirect callbacks)",
    )

    # Rate limiting
    redis_url: str = Field(default="", description="Redis URL for shared rate limit counters (in-memory if empty)")
    rate_limit_requests: int = Field(default=30, description="Max requests per window per user and action")
    rate_limit_window_seconds: int = Field(default=60, description="Rate limit window in seconds")

    # Fees
    default_currency: str = Field(default="MXN", description="Currency used when an offer does not specify one")
    supported_currencies: str = Field(default="MXN,USD", description="Comma-separated supported currency codes")
    commission_rate: float = Field(default=0.05, description="Platform commission over the service price")
    commission_min_cents: int = Field(default=5000, description="Minimum commission in minor units")
    commission_max_cents: int = Field(default=150000, description="Maximum commission in minor units")
    iva_rate: float = Field(default=0.16, description="Tax rate applied over service plus commission")

    # Reconciliation
    receipt_lookup_attempts: int = Field(default=3, description="Canonical receipt lookups before using a placeholder")
    receipt_lookup_delay_seconds: float = Field(default=0.7, description="Base delay between receipt lookups (grows linearly)")

    # Read caches
    view_cache_ttl_seconds: int = Field(default=300, description="TTL for cached read views")
    view_cache_max_size: int = Field(default=1000, description="Maximum cached read views")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def supported_currencies_list(self) -> list[str]:
        """Parse supported currencies into upper-case codes."""
        return [code.strip().upper() for code in self.supported_currencies.split(",") if code.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def is_stripe_test_mode(self) -> bool:
        """Check if using Stripe test keys."""
        return self.stripe_secret_key.startswith("sk_test_")


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
