"""
StudyBuddy Matching — Application Configuration

Loads all configuration from environment variables (and an optional .env file)
using Pydantic Settings.  A cached ``get_settings()`` helper is provided so that
FastAPI dependency-injection (and any other call-site) always receives the same
validated instance without re-parsing the environment on every request.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the StudyBuddy matching core."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Database
    # ------------------------------------------------------------------ #
    DATABASE_URL: str

    # ------------------------------------------------------------------ #
    # Runtime environment
    # ------------------------------------------------------------------ #
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    REQUEST_TIMEOUT_SECONDS: float = 30.0

    # ------------------------------------------------------------------ #
    # CORS
    # ------------------------------------------------------------------ #
    ALLOWED_ORIGINS: str = "*"

    # ------------------------------------------------------------------ #
    # Group aggregate recompute pool
    # ------------------------------------------------------------------ #
    RECOMPUTE_CORE_WORKERS: int = 2
    RECOMPUTE_MAX_WORKERS: int = 5
    RECOMPUTE_QUEUE_CAPACITY: int = 100
    RECOMPUTE_DRAIN_TIMEOUT_SECONDS: float = 60.0
    RECOMPUTE_WORKER_KEEPALIVE_SECONDS: float = 60.0  # idle time before an extra worker exits

    # ------------------------------------------------------------------ #
    # Matching policy
    # ------------------------------------------------------------------ #
    NEW_GROUP_MATCH_SCORE: int = 75
    MATCH_PERFECT_THRESHOLD: int = 80  # "Perfect fit" band
    MATCH_GREAT_THRESHOLD: int = 60    # "Great fit" band
    MATCH_GOOD_THRESHOLD: int = 40     # below this: overlapping strengths
    TOP_GROUPS_LIMIT: int = 10

    # ------------------------------------------------------------------ #
    # Derived helpers
    # ------------------------------------------------------------------ #
    @property
    def allowed_origins_list(self) -> list[str]:
        """Return ALLOWED_ORIGINS as a list split on commas."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @field_validator(
        "NEW_GROUP_MATCH_SCORE",
        "MATCH_PERFECT_THRESHOLD",
        "MATCH_GREAT_THRESHOLD",
        "MATCH_GOOD_THRESHOLD",
    )
    @classmethod
    def _score_must_be_percentage(cls, v: int) -> int:
        if not 0 <= v <= 100:
            raise ValueError(f"Score must be between 0 and 100, got {v}")
        return v

    @field_validator(
        "RECOMPUTE_CORE_WORKERS",
        "RECOMPUTE_QUEUE_CAPACITY",
        "TOP_GROUPS_LIMIT",
    )
    @classmethod
    def _must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Value must be at least 1, got {v}")
        return v

    @model_validator(mode="after")
    def _check_ordering(self) -> "Settings":
        if self.RECOMPUTE_MAX_WORKERS < self.RECOMPUTE_CORE_WORKERS:
            raise ValueError(
                "RECOMPUTE_MAX_WORKERS must be >= RECOMPUTE_CORE_WORKERS"
            )
        if not (
            self.MATCH_GOOD_THRESHOLD
            <= self.MATCH_GREAT_THRESHOLD
            <= self.MATCH_PERFECT_THRESHOLD
        ):
            raise ValueError("Match thresholds must be ordered good <= great <= perfect")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached, validated ``Settings`` instance.

    Using ``@lru_cache`` guarantees the .env file is read and validated
    exactly once per process lifetime.  Import this function anywhere you
    need access to configuration::

        from app.config import get_settings
        settings = get_settings()
    """
    return Settings()  # type: ignore[call-arg]
