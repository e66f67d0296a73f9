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
        extra="ignore"
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
        description="Supabase service role key (used by the analysis and finalize workers)"
    )

    # ===================
    # STORAGE
    # ===================
    imports_bucket: str = Field(
        default="imports",
        description="Storage bucket holding uploaded spreadsheets"
    )
    signed_url_expiry_seconds: int = Field(
        default=3600,
        ge=60,
        le=86400,
        description="Lifetime of signed download URLs"
    )
    max_upload_size_mb: int = Field(
        default=20,
        ge=1,
        le=200,
        description="Maximum spreadsheet size accepted on upload"
    )

    # ===================
    # IMPORT PIPELINE
    # ===================
    poll_interval_seconds: float = Field(
        default=3.0,
        gt=0,
        le=60,
        description="Delay between status reads while an import is being analyzed"
    )
    analysis_timeout_seconds: int = Field(
        default=900,
        ge=60,
        le=86400,
        description="Imports stuck in processing longer than this are marked failed"
    )
    stall_sweep_interval_seconds: int = Field(
        default=60,
        ge=10,
        le=3600,
        description="How often the scheduler looks for stalled analyses (disabled in debug)"
    )
    default_currency: str = Field(
        default="MRU",
        min_length=3,
        max_length=3,
        description="Currency every imported case is booked in"
    )
    phone_country_code: str = Field(
        default="222",
        pattern=r"^\d{1,4}$",
        description="Country calling code used to normalize local phone numbers"
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

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


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
