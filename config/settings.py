"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings.

    All values loaded from .env file or environment variables.
    Validation happens automatically on startup.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),  # Check current dir, then parent
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra env vars
    )

    # ===================
    # SUPABASE
    # ===================
    supabase_url: str = Field(
        ...,
        description="Supabase project URL"
    )
    supabase_key: str = Field(
        ...,
        description="Supabase anon/public key"
    )
    supabase_service_key: Optional[str] = Field(
        None,
        description="Supabase service role key (for admin operations)"
    )

    # ===================
    # IMPORT PIPELINE
    # ===================
    import_chunk_size: int = Field(
        default=100,
        ge=1,
        le=5000,
        description="Accepted records written per bulk insert"
    )
    import_progress_every_chunks: int = Field(
        default=1,
        ge=1,
        le=100,
        description="Push a progress update every N chunks (and on the last one)"
    )
    import_stale_after_minutes: int = Field(
        default=30,
        ge=1,
        le=1440,
        description="Processing runs older than this are considered orphaned"
    )
    import_rejection_sample_size: int = Field(
        default=20,
        ge=0,
        le=1000,
        description="Rejected rows kept (row number + reason) in an import result"
    )
    max_upload_mb: int = Field(
        default=20,
        ge=1,
        le=500,
        description="Maximum accepted CSV upload size in MB"
    )

    # ===================
    # FILE SOURCES
    # ===================
    ftp_timeout_seconds: int = Field(
        default=30,
        ge=1,
        le=600,
        description="Socket timeout for FTP downloads"
    )
    progress_poll_seconds: float = Field(
        default=2.0,
        gt=0,
        le=60,
        description="Polling interval of the import progress stream"
    )

    # ===================
    # APP SETTINGS
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Application environment"
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API host"
    )
    api_port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="API port"
    )
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Origins allowed by the CORS middleware"
    )

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def max_upload_bytes(self) -> int:
        """Upload limit in bytes."""
        return self.max_upload_mb * 1024 * 1024


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If required env vars are missing or invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
