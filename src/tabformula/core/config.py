"""
Engine configuration management using Pydantic Settings.

Loads configuration from environment variables (prefixed with
``TABFORMULA_``) and ``.env`` files.
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class NullMode(str, Enum):
    """NULL-handling regime applied by the evaluator."""

    LEGACY = "legacy"
    CODD = "codd"


class FormulaSettings(BaseSettings):
    """Formula engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="TABFORMULA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Application Settings
    # ==========================================================================
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=False, description="Emit JSON log lines")

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and check the logging level name."""
        level = str(v).upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level

    # ==========================================================================
    # Formula Semantics
    # ==========================================================================
    null_mode: NullMode = Field(
        default=NullMode.CODD,
        description="NULL regime: 'codd' (three-valued logic) or 'legacy' (zero coercion)",
    )
    empty_text_is_absent: bool = Field(
        default=True, description="Treat empty text as an absent value"
    )

    @field_validator("null_mode", mode="before")
    @classmethod
    def parse_null_mode(cls, v: object) -> object:
        """Accept mode names case-insensitively."""
        if isinstance(v, str):
            return v.strip().lower()
        return v

    # ==========================================================================
    # Parse Cache
    # ==========================================================================
    parse_cache_size: int = Field(
        default=1000, ge=1, description="Maximum number of cached parse results"
    )

    @property
    def codd_mode(self) -> bool:
        """Whether strict three-valued NULL semantics are active."""
        return self.null_mode == NullMode.CODD


@lru_cache
def get_settings() -> FormulaSettings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return FormulaSettings()


# Global settings instance
settings = get_settings()
