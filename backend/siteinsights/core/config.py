"""
Centralized configuration management with Pydantic Settings.
All environment variables are validated and typed.
"""
from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = "Site Insights API"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = Field(default="development", pattern="^(development|staging|production)$")

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Database
    database_url: str = "sqlite+aiosqlite:///./siteinsights.db"
    database_pool_size: int = 20
    database_max_overflow: int = 10
    database_echo: bool = False

    # CORS - stored as comma-separated string to avoid JSON parsing issues
    allowed_origins_str: str = Field(default="http://localhost:5173", alias="ALLOWED_ORIGINS")

    @property
    def allowed_origins(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins_str.split(",") if origin.strip()]

    # Public site
    site_url: Optional[str] = None

    # Google service account (optional - external analytics disabled without these)
    ga_property_id: Optional[str] = None
    google_service_account_email: Optional[str] = None
    google_private_key: Optional[str] = None
    gsc_site_url: Optional[str] = None

    # PageSpeed Insights (optional)
    pagespeed_api_key: Optional[str] = None
    pagespeed_target_url: Optional[str] = None

    # External call policy
    external_api_timeout: float = 15.0
    external_api_max_retries: int = 2

    # Aggregation cache; None means a cached row is served for as long as it exists
    analytics_cache_ttl_seconds: Optional[int] = None

    # Geo lookup for ingestion
    geo_lookup_enabled: bool = True
    geo_lookup_url: str = "http://ip-api.com/json/{ip}?fields=status,country,regionName,city"
    geo_lookup_timeout: float = 3.0

    # Observability
    sentry_dsn: Optional[str] = None
    log_level: str = "INFO"

    @property
    def has_service_account(self) -> bool:
        return bool(self.google_service_account_email and self.google_private_key)

    @property
    def analytics_configured(self) -> bool:
        """Google Analytics Data API branch is usable."""
        return bool(self.ga_property_id) and self.has_service_account

    @property
    def search_console_configured(self) -> bool:
        return bool(self.gsc_site_url) and self.has_service_account

    @property
    def pagespeed_configured(self) -> bool:
        return bool(self.pagespeed_api_key and (self.pagespeed_target_url or self.site_url))


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
