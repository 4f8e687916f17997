"""
Configuration management for the wind cache service.
Loads environment variables and provides typed configuration.
"""
from typing import List
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ========================================================================
    # Redis / Cache Configuration
    # ========================================================================
    redis_url: str = "redis://localhost:6379/0"
    cache_ttl: int = 3600
    cache_max_payload_bytes: int = 8 * 1024 * 1024
    cache_max_history: int = 20
    cache_connect_attempts: int = 5

    # ========================================================================
    # Upstream (NOMADS OpenDAP)
    # ========================================================================
    opendap_base_url: str = "https://nomads.ncep.noaa.gov/dods/gfs_0p50"
    upstream_timeout: float = 30.0
    upstream_user_agent: str = "windcache/1.0"

    # ========================================================================
    # Scheduler
    # ========================================================================
    scheduler_enabled: bool = True
    scheduler_interval_seconds: int = 300
    scheduler_fetch_delay_seconds: float = 1.0

    # ========================================================================
    # API Configuration
    # ========================================================================
    api_host: str = "0.0.0.0"
    api_port: int = 3000

    # ========================================================================
    # CORS Configuration
    # ========================================================================
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # ========================================================================
    # Application Configuration
    # ========================================================================
    environment: str = "development"
    log_level: str = "info"
    debug: bool = False

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"

    # ========================================================================
    # Pydantic Settings Configuration
    # ========================================================================
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings
    """
    return Settings()


# Convenience exports
settings = get_settings()

if settings.is_production and "localhost" in settings.cors_origins.lower():
    raise ValueError(
        "CORS_ORIGINS must not include localhost in production!"
    )
