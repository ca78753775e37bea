"""
Application configuration management.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database (in-process storage when unset)
    database_url: Optional[str] = None

    # Redis (in-process rate limiter when unset)
    redis_url: Optional[str] = None

    # Admin API
    admin_api_key: str

    # Ingestion
    error_tracking_enabled: bool = True
    rate_limit_window_seconds: int = 300
    rate_limit_max_per_window: int = 50
    persistence_timeout_seconds: float = 5.0
    fingerprint_algorithm: str = "fnv1a"
    storage_lock_shards: int = 64

    # Application
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
