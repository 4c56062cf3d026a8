"""
Engine settings.

Pure computation runs without any environment. Store-backed operations
need DATABASE_URL and fail early with a clear error when it is missing.
Forecast defaults, coverage tiers and fan-out limits are tunable here.
"""
from typing import Optional
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MissingDatabaseURLError(Exception):
    """Raised when a store-backed operation is requested without DATABASE_URL."""
    pass


class Settings(BaseSettings):
    """Settings read from the environment (and .env when present)."""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database (OPTIONAL for pure computation, REQUIRED for repository reads)
    database_url: Optional[str] = Field(
        default=None,
        description="SQLAlchemy URL of the deal/quota store (read-only use)"
    )

    # Fan-out of store reads (rep-by-rep rollups)
    max_concurrency: int = Field(
        default=4,
        ge=1,
        le=50,
        description="Maximum concurrent store reads when fanning out"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # Stage probabilities used when an org has none configured
    default_commit_probability: float = Field(default=0.80, ge=0.0, le=1.0)
    default_best_case_probability: float = Field(default=0.325, ge=0.0, le=1.0)
    default_pipeline_probability: float = Field(default=0.10, ge=0.0, le=1.0)

    # Raw health score scale (scores are 0..health_score_max)
    health_score_max: float = Field(
        default=30.0,
        gt=0,
        description="Maximum raw health score; used to express health as a percentage"
    )

    # Coverage tiers
    coverage_at_risk_below: float = Field(
        default=3.0,
        gt=0,
        description="Coverage ratios below this are at-risk"
    )
    coverage_healthy_at: float = Field(
        default=3.5,
        gt=0,
        description="Coverage ratios at or above this are healthy"
    )

    # Channel scoring
    partner_promise_min_closed: int = Field(
        default=3,
        ge=1,
        description="Minimum closed opps before a partner can rank as showing promise"
    )

    top_products_limit: int = Field(default=5, ge=1)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Upper-case and check against the stdlib level names."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v_upper

    @model_validator(mode="after")
    def validate_coverage_tiers(self) -> "Settings":
        """The healthy cutoff can never sit below the at-risk cutoff."""
        if self.coverage_healthy_at < self.coverage_at_risk_below:
            raise ValueError(
                "coverage_healthy_at must be >= coverage_at_risk_below"
            )
        return self

    def require_database_url(self) -> str:
        """
        Get the store URL, raising a clear error if missing.

        Call this at the START of any operation that reads from the store.

        Raises:
            MissingDatabaseURLError: If DATABASE_URL is not configured

        Returns:
            str: The database URL
        """
        if not self.database_url:
            raise MissingDatabaseURLError(
                "DATABASE_URL is required for store-backed forecast operations. "
                "Please set it in your .env file or environment variables."
            )
        return self.database_url


# Process-wide instance, created on first access
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process settings, loading them on first call."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next get_settings() reloads them."""
    global _settings
    _settings = None
