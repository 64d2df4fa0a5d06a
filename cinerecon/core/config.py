"""
Configuration module with strict validation.

Key principles:
- The reconciliation core needs NO database; DATABASE_URL is only required
  by the SQL-backed store
- Every classifier threshold is a tunable, bounded setting
- Threshold ordering is validated at load time, never at classification time
- Safe defaults for all optional settings
"""
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cinerecon.matching.classifier import MatchPolicy


DEFAULT_SOURCE_TRUST_ORDER = [
    "curated",
    "official",
    "imdb",
    "tmdb",
    "wikipedia",
    "wikidata",
    "catalog",
    "ai_generated",
]


class MissingDatabaseURLError(Exception):
    """Raised when the SQL-backed store is requested without DATABASE_URL."""
    pass


class Settings(BaseSettings):
    """Application settings with validation.

    Loads from environment variables and .env file.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database (OPTIONAL - only the SQL store needs it)
    database_url: Optional[str] = Field(
        default=None,
        description="SQLAlchemy connection URL for the reference entity store"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # Candidate matching windows
    exact_temporal_window: int = Field(
        default=1,
        ge=0,
        le=10,
        description="Max year difference when matching a single incoming record"
    )

    audit_temporal_window: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Max year difference for full-pool duplicate sweeps"
    )

    sweep_min_similarity: int = Field(
        default=60,
        ge=0,
        le=100,
        description="Sweep pairs scoring below this (and sharing no identifier) are dropped"
    )

    # Classifier thresholds
    identical_min_similarity: int = Field(default=95, ge=0, le=100)
    same_entity_min_similarity: int = Field(default=85, ge=0, le=100)
    match_floor: int = Field(
        default=70,
        ge=0,
        le=100,
        description="Below this similarity a pair is Distinct"
    )
    identifier_min_similarity: int = Field(default=40, ge=0, le=100)
    identifier_max_temporal_delta: int = Field(default=1, ge=0, le=10)
    identifier_confidence: int = Field(default=92, ge=0, le=100)
    large_temporal_gap: int = Field(default=40, ge=1, le=200)
    variant_min_similarity: int = Field(default=75, ge=0, le=100)
    auto_apply_min_confidence: int = Field(default=90, ge=0, le=100)

    # Source trust, most trusted first
    source_trust_order: List[str] = Field(
        default_factory=lambda: list(DEFAULT_SOURCE_TRUST_ORDER),
        description="Source tags ordered from most to least trusted"
    )

    # Optional JSON file with alias table, known variants and trust overrides
    tables_path: Optional[str] = Field(
        default=None,
        description="Path to a reconciliation tables JSON file"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v_upper

    @model_validator(mode="after")
    def validate_threshold_order(self) -> "Settings":
        """Thresholds must nest: identical >= same_entity >= match_floor."""
        if not (
            self.identical_min_similarity
            >= self.same_entity_min_similarity
            >= self.match_floor
        ):
            raise ValueError(
                "thresholds must satisfy identical_min_similarity >= "
                "same_entity_min_similarity >= match_floor"
            )
        if self.identifier_min_similarity > self.match_floor:
            raise ValueError("identifier_min_similarity must not exceed match_floor")
        return self

    def match_policy(self) -> MatchPolicy:
        """Build the immutable classifier policy from these settings."""
        return MatchPolicy(
            identical_min_similarity=self.identical_min_similarity,
            same_entity_min_similarity=self.same_entity_min_similarity,
            match_floor=self.match_floor,
            identifier_min_similarity=self.identifier_min_similarity,
            identifier_max_temporal_delta=self.identifier_max_temporal_delta,
            identifier_confidence=self.identifier_confidence,
            large_temporal_gap=self.large_temporal_gap,
            variant_min_similarity=self.variant_min_similarity,
            auto_apply_min_confidence=self.auto_apply_min_confidence,
        )

    def require_database_url(self) -> str:
        """
        Get the database URL, raising a clear error if missing.

        Call this before building a SQL-backed store.

        Raises:
            MissingDatabaseURLError: If the URL is not configured
        """
        if not self.database_url:
            raise MissingDatabaseURLError(
                "DATABASE_URL is required for the SQL entity store. "
                "Please set it in your .env file or environment variables, "
                "or use the in-memory store."
            )
        return self.database_url


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get or create the global settings instance.

    Lazy loading, reset between tests with reset_settings().
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset the global settings instance."""
    global _settings
    _settings = None
