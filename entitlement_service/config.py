"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False  # Apply pending Alembic migrations in lifespan

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Entitlement Service API"
    api_version: str = "0.1.0"
    api_description: str = "Subscription entitlement and free-tier usage gating for chat"

    # Identity provider - Clerk
    clerk_secret_key: str = ""  # sk_test_... or sk_live_...
    clerk_api_url: str = "https://api.clerk.com/v1"
    clerk_jwks_url: str = ""  # https://<instance>.clerk.accounts.dev/.well-known/jwks.json
    clerk_authorized_parties: str = ""  # Comma-separated list of allowed azp origins
    clerk_pro_plan_slug: str = "pro"
    clerk_http_timeout_seconds: float = 5.0

    @property
    def authorized_parties(self) -> list[str]:
        """Get list of allowed session token origins (azp claim)."""
        parties = []
        for party in self.clerk_authorized_parties.split(","):
            party = party.strip()
            if party and party not in parties:
                parties.append(party)
        return parties

    # Mobile purchases - RevenueCat
    revenuecat_webhook_secret: str = ""
    revenuecat_pro_entitlement_id: str = "pro"  # Matched case-insensitively

    # Payment Provider - Stripe
    stripe_api_key: str = ""  # Stripe secret key (sk_test_... or sk_live_...)
    stripe_webhook_secret: str = ""  # Stripe webhook signing secret (whsec_...)
    stripe_pro_price_id: str = ""  # price_... for the monthly Pro plan
    stripe_success_url: str = "http://localhost:3000/settings?checkout=success"
    stripe_cancel_url: str = "http://localhost:3000/pricing?checkout=cancelled"
    stripe_portal_return_url: str = "http://localhost:3000/settings"

    # Free tier limits
    free_hourly_message_limit: int = 15
    free_daily_image_limit: int = 3
    free_daily_deep_research_limit: int = 2

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "entitlement-service"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        Provider secrets are checked per request so a missing webhook secret
        only disables that webhook instead of the whole service.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        for name in (
            "free_hourly_message_limit",
            "free_daily_image_limit",
            "free_daily_deep_research_limit",
        ):
            if getattr(self, name) < 0:
                errors.append(f"{name.upper()} must be zero or positive")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
