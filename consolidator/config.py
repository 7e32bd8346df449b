"""
Configuration management for the duplicate-record consolidator.

Uses pydantic-settings for type-safe configuration with environment variable support.
"""

from pathlib import Path
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(
        env_prefix="POSTGRES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    user: str = "consolidator"
    password: str = ""  # Required: Set POSTGRES_PASSWORD in .env
    host: str = "localhost"
    port: int = 5432
    db: str = "consolidator"

    # Full URL override (DATABASE_URL), e.g. sqlite:///local.db
    database_url: Optional[str] = Field(default=None, validation_alias="DATABASE_URL")

    statement_timeout_ms: int = 30000

    @property
    def url(self) -> str:
        """Construct database URL."""
        if self.database_url:
            return self.database_url
        return f"postgresql+psycopg2://{self.user}:{self.password}@{self.host}:{self.port}/{self.db}"


class ConsolidationSettings(BaseSettings):
    """Consolidation run settings."""

    model_config = SettingsConfigDict(
        env_prefix="CONSOLIDATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Transaction isolation for the consolidation transaction
    isolation_level: str = "SERIALIZABLE"

    # Retry settings for deadlocks / serialization failures
    max_retries: int = 3
    retry_delay: float = 0.5  # seconds

    # Max ids per IN (...) list
    batch_size: int = 500

    # Number of groups shown in dry-run previews
    preview_groups: int = 10

    # Optional JSON file with extra targets
    targets_file: Optional[Path] = None

    # pg_dump output directory for --backup
    backup_dir: Path = Field(default=Path("./backups"))

    @field_validator("isolation_level", mode="before")
    @classmethod
    def check_isolation_level(cls, v):
        """Only isolation levels strong enough for the consolidation transaction."""
        level = str(v).upper().replace("_", " ")
        if level not in ("SERIALIZABLE", "REPEATABLE READ"):
            raise ValueError(f"isolation_level must be SERIALIZABLE or REPEATABLE READ, got {v!r}")
        return level

    @field_validator("max_retries", "batch_size")
    @classmethod
    def check_positive(cls, v):
        if v < 1:
            raise ValueError("must be >= 1")
        return v


class PipelineSettings(BaseSettings):
    """General runtime settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"


class Settings(BaseSettings):
    """Main settings class that combines all settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Sub-settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    consolidation: ConsolidationSettings = Field(default_factory=ConsolidationSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()


# Convenience function for quick access
settings = get_settings()


# =============================================================================
# Consolidation Targets
# =============================================================================

# Entity tables with a natural key and the complete list of their referrers.
# The referrer list must be exhaustive: an unlisted foreign key pointing at the
# entity table makes the purge fail (enforced FKs) or orphans rows (unenforced).
CONSOLIDATION_TARGETS = {
    "promo_codes": {
        "table": "PromoCode",
        "natural_key": ["whopId", "code"],
        "id_column": "id",
        "created_column": "createdAt",
        "index_name": "promo_unique_whop_code",
        "referrers": [
            {"table": "OfferTracking", "column": "promoCodeId"},
            {"table": "PromoCodeSubmission", "column": "promoCodeId"},
        ],
        "description": "Promo codes keyed by (whopId, code)",
    },
    "promo_codes_casefold": {
        "table": "PromoCode",
        "natural_key": ["whopId", "code"],
        "casefold_columns": ["code"],
        "id_column": "id",
        "created_column": "createdAt",
        "index_name": "promo_whop_codelower_uniq",
        "referrers": [
            {"table": "OfferTracking", "column": "promoCodeId"},
            {"table": "PromoCodeSubmission", "column": "promoCodeId"},
        ],
        "description": "Promo codes keyed by (whopId, lower(code))",
    },
}
