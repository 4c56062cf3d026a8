"""
Pydantic value structs for forecast configuration.

Programmer-constructed values are validated strictly (out-of-range values
raise). Rows read from the store go through the lenient ``from_rows`` /
``from_row`` constructors, which drop invalid values back to defaults.
"""
import enum
import logging
from datetime import date
from typing import Any, Iterable, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)


class ForecastBucket(str, enum.Enum):
    """Open-forecast category."""
    COMMIT = "commit"
    BEST_CASE = "best_case"
    PIPELINE = "pipeline"

    @property
    def label(self) -> str:
        return _BUCKET_LABELS[self]

    @classmethod
    def from_label(cls, value: Any) -> "ForecastBucket":
        """Accept bucket keys or display labels ("Best Case", "best-case", ...)."""
        if isinstance(value, cls):
            return value
        key = "_".join(str(value or "").strip().lower().replace("-", " ").split())
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown forecast bucket: {value!r}")


_BUCKET_LABELS = {
    ForecastBucket.COMMIT: "Commit",
    ForecastBucket.BEST_CASE: "Best Case",
    ForecastBucket.PIPELINE: "Pipeline",
}

BUCKETS: Tuple[ForecastBucket, ...] = (
    ForecastBucket.COMMIT,
    ForecastBucket.BEST_CASE,
    ForecastBucket.PIPELINE,
)


class DealStatus(str, enum.Enum):
    """Deal status derived from free-text stage."""
    OPEN = "open"
    WON = "won"
    LOST = "lost"
    CLOSED = "closed"  # closed without a won/lost outcome


class StageProbabilities(BaseModel):
    """Org-configured probability (0..1) per bucket."""
    model_config = ConfigDict(frozen=True)

    commit: float = Field(default=0.80, ge=0.0, le=1.0)
    best_case: float = Field(default=0.325, ge=0.0, le=1.0)
    pipeline: float = Field(default=0.10, ge=0.0, le=1.0)
    is_default: bool = False

    def for_bucket(self, bucket: ForecastBucket) -> float:
        return getattr(self, bucket.value)

    @classmethod
    def defaults(cls, settings=None) -> "StageProbabilities":
        """Defaults from settings (or the built-in 0.80 / 0.325 / 0.10)."""
        if settings is None:
            return cls(is_default=True)
        return cls(
            commit=settings.default_commit_probability,
            best_case=settings.default_best_case_probability,
            pipeline=settings.default_pipeline_probability,
            is_default=True,
        )

    @classmethod
    def from_rows(
        cls,
        rows: Iterable[Tuple[Any, Any]],
        base: Optional["StageProbabilities"] = None,
    ) -> "StageProbabilities":
        """
        Overlay stored (stage_key, probability) rows onto ``base``.

        Unknown keys and values outside 0..1 are skipped one by one.
        """
        values = (base or cls.defaults()).model_dump(exclude={"is_default"})
        for stage_key, probability in rows:
            key = str(stage_key or "").strip()
            if key not in values:
                logger.debug(f"Ignoring unknown stage key {stage_key!r}")
                continue
            try:
                n = float(probability)
            except (TypeError, ValueError):
                logger.debug(f"Ignoring unparsable probability for {key}: {probability!r}")
                continue
            if not 0.0 <= n <= 1.0:
                logger.debug(f"Ignoring out-of-range probability for {key}: {n}")
                continue
            values[key] = n
        return cls(**values)


class HealthScoreRule(BaseModel):
    """A health-score band rule for one bucket."""
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    org_id: int
    mapped_bucket: ForecastBucket
    min_score: float
    max_score: float
    suppression: bool = False
    probability_modifier: float = Field(default=1.0, ge=0.0)

    @field_validator("mapped_bucket", mode="before")
    @classmethod
    def parse_bucket(cls, v: Any) -> ForecastBucket:
        return ForecastBucket.from_label(v)

    @field_validator("probability_modifier", mode="before")
    @classmethod
    def default_modifier(cls, v: Any) -> Any:
        return 1.0 if v is None else v

    @field_validator("suppression", mode="before")
    @classmethod
    def default_suppression(cls, v: Any) -> Any:
        return False if v is None else v

    @model_validator(mode="after")
    def validate_band(self) -> "HealthScoreRule":
        if self.max_score < self.min_score:
            raise ValueError("max_score must be >= min_score")
        return self

    @property
    def effective_modifier(self) -> float:
        """Suppression always wins over the stored modifier."""
        return 0.0 if self.suppression else self.probability_modifier

    def matches(self, bucket: ForecastBucket, score: float) -> bool:
        return self.mapped_bucket == bucket and self.min_score <= score <= self.max_score


class QuotaPeriod(BaseModel):
    """A fiscal quarter (inclusive date range)."""
    model_config = ConfigDict(frozen=True)

    id: int
    org_id: int
    period_start: date
    period_end: date
    fiscal_year: Optional[str] = None
    fiscal_quarter: Optional[str] = None
    period_name: Optional[str] = None

    @model_validator(mode="after")
    def validate_range(self) -> "QuotaPeriod":
        if self.period_end < self.period_start:
            raise ValueError("period_end must be on or after period_start")
        return self

    def contains(self, d: Optional[date]) -> bool:
        return d is not None and self.period_start <= d <= self.period_end

    @property
    def label(self) -> str:
        if self.period_name:
            return self.period_name
        if self.fiscal_year and self.fiscal_quarter:
            return f"FY{self.fiscal_year} Q{self.fiscal_quarter}"
        return f"{self.period_start.isoformat()} → {self.period_end.isoformat()}"
