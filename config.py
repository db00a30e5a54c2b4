"""
Configuration settings for the adaptive SQL tutoring engine.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Persistence
    # ========================================
    database_url: str = Field(
        default="sqlite:///tutor_state.db",
        description="SQLAlchemy URL for the key-value state store",
    )
    storage_quota_bytes: int = Field(
        default=0,
        description="Maximum bytes the state store may hold (0 = unlimited)",
    )
    merge_max_retries: int = Field(
        default=5,
        description="Optimistic-concurrency retries before a ConflictError is surfaced",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )

    # ========================================
    # Guidance Policy
    # ========================================
    default_strategy: Literal[
        "hint-only", "adaptive-low", "adaptive-medium", "adaptive-high"
    ] = Field(
        default="adaptive-medium",
        description="Strategy assigned to newly created learner profiles",
    )
    policy_version: str = Field(
        default="sql-engage-index-v3-hintid-contract",
        description="Policy stamp written onto ladder-emitted events",
    )
    default_escalation_threshold: int = Field(
        default=3,
        description="Preference: failed attempts before escalation (profile default)",
    )
    default_aggregation_delay_ms: int = Field(
        default=300_000,
        description="Preference: delay before aggregating notes (profile default)",
    )

    # ========================================
    # Coverage Evidence Weights
    # ========================================
    # Only the sign of each weight and streak3 > streak2 are load-bearing.
    coverage_success_delta: int = Field(
        default=15,
        description="Score delta for a successful execution (strong positive)",
    )
    coverage_hint_delta: int = Field(
        default=2,
        description="Score delta for viewing a hint (weak positive)",
    )
    coverage_explanation_delta: int = Field(
        default=3,
        description="Score delta for viewing an explanation (weak positive)",
    )
    coverage_note_delta: int = Field(
        default=4,
        description="Score delta for adding or updating a textbook note (weak positive)",
    )
    coverage_error_delta: int = Field(
        default=-5,
        description="Score delta for an error (penalty)",
    )
    coverage_streak2_bonus: int = Field(
        default=5,
        description="Bonus when exactly two consecutive correct executions",
    )
    coverage_streak3_bonus: int = Field(
        default=10,
        description="Bonus when three or more consecutive correct executions",
    )
    coverage_streak_penalty: int = Field(
        default=-5,
        description="Extra penalty when three or more consecutive errors",
    )
    mastery_threshold: int = Field(
        default=50,
        description="Score at or above which a concept counts as covered",
    )

    # ========================================
    # Confidence Tiers
    # ========================================
    confidence_medium_volume: int = Field(
        default=3,
        description="Evidence volume needed for medium confidence",
    )
    confidence_high_volume: int = Field(
        default=8,
        description="Evidence volume needed for high confidence",
    )
    confidence_high_diversity: int = Field(
        default=2,
        description="Distinct evidence kinds needed for high confidence",
    )

    def get_coverage_weights(self) -> dict[str, int]:
        """Get coverage evidence weights and tier thresholds."""
        return {
            "success": self.coverage_success_delta,
            "hint": self.coverage_hint_delta,
            "explanation": self.coverage_explanation_delta,
            "note": self.coverage_note_delta,
            "error": self.coverage_error_delta,
            "streak2_bonus": self.coverage_streak2_bonus,
            "streak3_bonus": self.coverage_streak3_bonus,
            "streak_penalty": self.coverage_streak_penalty,
            "mastery_threshold": self.mastery_threshold,
            "medium_volume": self.confidence_medium_volume,
            "high_volume": self.confidence_high_volume,
            "high_diversity": self.confidence_high_diversity,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
