"""
Tenant Dashboard — Configuration via environment variables.
"""

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """All settings read from env / .env file."""

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./dashboard.db",
        description="Async SQLAlchemy DB URL",
    )

    # Analytics cache
    analytics_cache_backend: str = Field(
        default="database",
        description="Where fetched analytics are cached: 'database' or 'memory'",
    )
    analytics_cache_ttl_seconds: int = Field(
        default=3600, description="Lifetime of a cached GA4 snapshot"
    )
    analytics_cache_sweep_interval: int = Field(
        default=900, description="Seconds between expired-entry purges"
    )
    analytics_fetch_timeout_seconds: float = Field(
        default=12.0, description="Upper bound on a single GA4 round-trip"
    )
    analytics_default_window_days: int = Field(
        default=30, description="Date window used when the caller omits from/to"
    )

    # Google Analytics 4 service account, shared by all tenants
    ga4_api_base: str = Field(default="https://analyticsdata.googleapis.com/v1beta")
    ga4_service_account_project_id: str = Field(default="")
    ga4_service_account_email: str = Field(default="")
    ga4_service_account_private_key: str = Field(
        default="", description="PEM key; literal \\n sequences are unescaped"
    )
    ga4_credentials_path: str = Field(
        default="", description="Path to a service account key JSON (overrides the fields above)"
    )
    ga4_top_pages_limit: int = Field(default=10)
    ga4_traffic_sources_limit: int = Field(default=10)

    @property
    def ga4_service_account_info(self) -> dict | None:
        """Service account dict for google-auth, or None when not configured."""
        if not (
            self.ga4_service_account_email and self.ga4_service_account_private_key
        ):
            return None
        return {
            "type": "service_account",
            "project_id": self.ga4_service_account_project_id,
            "client_email": self.ga4_service_account_email,
            "private_key": self.ga4_service_account_private_key.replace("\\n", "\n"),
            "token_uri": "https://oauth2.googleapis.com/token",
        }

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
