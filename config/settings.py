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

    # ===================
    # AI COLUMN MAPPING
    # ===================
    anthropic_api_key: Optional[str] = Field(
        None,
        description="Anthropic API key. Without it only pattern mapping is used"
    )
    ai_model: str = Field(
        default="claude-sonnet-4-20250514",
        description="Claude model used for column analysis"
    )
    ai_max_tokens: int = Field(
        default=4096,
        ge=256,
        le=16384,
        description="Maximum tokens for the analysis response"
    )
    ai_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Request timeout for the analysis call"
    )

    # ===================
    # IMPORT PIPELINE
    # ===================
    import_batch_size: int = Field(
        default=100,
        ge=1,
        le=5000,
        description="Rows written per batch during upload and re-mapping"
    )
    analysis_sample_rows: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Rows handed to the column mapper"
    )
    preview_sample_rows: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Rows kept as sample_data on the analysis result"
    )
    max_upload_mb: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Maximum accepted upload size in MB"
    )
    column_patterns_file: Optional[str] = Field(
        None,
        description="JSON file replacing the built-in column pattern table"
    )
    price_major_unit_threshold: int = Field(
        default=10000,
        ge=1,
        description="Sampled prices below this are treated as major units"
    )

    # ===================
    # CONFLICT POLICY
    # ===================
    title_similarity_threshold: float = Field(
        default=0.8,
        ge=0,
        le=1,
        description="Title changes below this Jaccard similarity are conflicts"
    )
    price_drop_ratio: float = Field(
        default=0.8,
        gt=0,
        le=1,
        description="New price below old * ratio is a conflict"
    )
    price_raise_ratio: float = Field(
        default=1.5,
        ge=1,
        description="New price above old * ratio is a conflict"
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
    def ai_configured(self) -> bool:
        """Check if the Claude column mapper can be used."""
        return bool(self.anthropic_api_key)

    @property
    def max_upload_bytes(self) -> int:
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
