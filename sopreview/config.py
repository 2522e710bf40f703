"""
Application configuration using pydantic-settings.

Loads configuration from environment variables with sensible defaults.
"""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SOP_",
        case_sensitive=False,
    )

    # Application
    debug: bool = False
    log_level: str = "INFO"

    # Calculation behaviour
    # When enabled, an entry whose base line item cannot be resolved starts at 0
    # instead of failing. Matches spreadsheets exported by earlier releases.
    zero_fallback_on_unresolved_base: bool = False
    thousand_multiplier: int = 1000

    # Summary labels
    multiple_columns_label: str = "Multiple"
    derived_statement_label: str = "Derived"

    # Export
    export_filename_suffix: str = "_verified.xlsx"
    default_export_filename: str = "verified_line_items.xlsx"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
