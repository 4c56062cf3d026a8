"""
Pipeline momentum: coverage, quarter-over-quarter change and the
created-in-quarter cohort.
"""

import enum
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional

from forecast_engine.core.schemas import BUCKETS, ForecastBucket, QuotaPeriod
from forecast_engine.engine.classifier import age_days, closes_in, created_in
from forecast_engine.engine.forecast import BucketTotals, safe_div
from forecast_engine.engine.rules import ScoredDeal

logger = logging.getLogger(__name__)

# (label, lower bound inclusive, upper bound inclusive or None)
AGE_BANDS = (("0-30", 0, 30), ("31-60", 31, 60), ("61+", 61, None))

# Pipeline QoQ at or below this (with Commit growing) reads as a funnel slowdown.
FUNNEL_SLOWDOWN_PCT01 = -0.10


class CoverageTier(str, enum.Enum):
    AT_RISK = "at_risk"
    WATCH = "watch"
    HEALTHY = "healthy"
    UNKNOWN = "unknown"


# =============================================================================
# Ratios
# =============================================================================


def coverage_ratio(
    total_open_pipeline: float, quota: float, won_amount: float = 0.0
) -> Optional[float]:
    """Open pipeline over remaining quota; None when nothing remains to cover."""
    remaining = max(0.0, (quota or 0.0) - (won_amount or 0.0))
    if remaining <= 0:
        return None
    return (total_open_pipeline or 0.0) / remaining


def coverage_tier(
    ratio: Optional[float], at_risk_below: float = 3.0, healthy_at: float = 3.5
) -> CoverageTier:
    if ratio is None:
        return CoverageTier.UNKNOWN
    if ratio < at_risk_below:
        return CoverageTier.AT_RISK
    if ratio < healthy_at:
        return CoverageTier.WATCH
    return CoverageTier.HEALTHY


def qoq_change(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    """Fractional change (−0.08 = −8%); None without a positive baseline."""
    if current is None or previous is None or previous <= 0:
        return None
    return (current - previous) / previous


def health_pct(avg_score: Optional[float], max_score: float = 30.0) -> Optional[int]:
    """Raw average health score as a 0..100 percentage."""
    if avg_score is None or avg_score <= 0 or max_score <= 0:
        return None
    return max(0, min(100, round(avg_score / max_score * 100)))


def _mean(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


# =============================================================================
# Data classes
# =============================================================================


@dataclass
class MixEntry:
    value: float = 0.0
    opps: int = 0
    qoq_change_pct: Optional[float] = None  # fraction, −0.08 = −8%


@dataclass
class PipelineMomentum:
    """Open pipeline snapshot for the quarter vs its predecessor."""

    quota: float = 0.0
    won_amount: float = 0.0
    total_pipeline: float = 0.0
    total_opps: int = 0
    mix: Dict[ForecastBucket, MixEntry] = field(
        default_factory=lambda: {b: MixEntry() for b in BUCKETS}
    )
    previous_total_pipeline: Optional[float] = None
    qoq_total_pct: Optional[float] = None
    coverage_ratio: Optional[float] = None
    coverage_tier: CoverageTier = CoverageTier.UNKNOWN

    def mix_share(self, bucket: ForecastBucket) -> float:
        if self.total_pipeline <= 0:
            return 0.0
        return max(0.0, min(1.0, self.mix[bucket].value / self.total_pipeline))


@dataclass
class CohortBucket:
    amount: float = 0.0
    opps: int = 0
    health_pct: Optional[int] = None


@dataclass
class AgeBand:
    band: str
    opps: int = 0
    amount: float = 0.0


@dataclass
class CreatedCohort:
    """Deals created in the quarter, split active vs closed-in-quarter."""

    period_id: Optional[int] = None
    buckets: Dict[ForecastBucket, CohortBucket] = field(
        default_factory=lambda: {b: CohortBucket() for b in BUCKETS}
    )
    active_amount: float = 0.0
    active_opps: int = 0
    active_health_pct: Optional[int] = None
    closed_won_amount: float = 0.0
    closed_won_opps: int = 0
    closed_lost_amount: float = 0.0
    closed_lost_opps: int = 0
    closed_amount: float = 0.0  # won + lost + closed without outcome
    closed_opps: int = 0
    avg_age_days: Optional[float] = None
    age_bands: List[AgeBand] = field(
        default_factory=lambda: [AgeBand(band=label) for label, _, _ in AGE_BANDS]
    )
    products: Dict[str, "ProductCohort"] = field(default_factory=dict)

    @property
    def all_amount(self) -> float:
        return self.active_amount + self.closed_amount

    @property
    def all_opps(self) -> int:
        return self.active_opps + self.closed_opps

    def mix(self, bucket: ForecastBucket) -> Optional[float]:
        """Bucket share of the open created pipeline; fractions sum to 1."""
        total = sum(b.amount for b in self.buckets.values())
        return safe_div(self.buckets[bucket].amount, total) if total > 0 else None


@dataclass
class ProductCohort:
    product: str
    amount: float = 0.0
    opps: int = 0
    avg_health_pct: Optional[int] = None
    qoq_amount_pct: Optional[float] = None


@dataclass
class CreatedCohortComparison:
    """Current vs previous created cohort, with independent QoQ figures."""

    current: CreatedCohort = field(default_factory=CreatedCohort)
    previous: Optional[CreatedCohort] = None
    qoq_active_amount_pct: Optional[float] = None
    qoq_active_opps_pct: Optional[float] = None
    qoq_all_amount_pct: Optional[float] = None
    qoq_all_opps_pct: Optional[float] = None
    top_products: List[ProductCohort] = field(default_factory=list)


# =============================================================================
# Computation
# =============================================================================


def compute_pipeline_momentum(
    current: BucketTotals,
    previous: Optional[BucketTotals],
    quota: float = 0.0,
    at_risk_below: float = 3.0,
    healthy_at: float = 3.5,
) -> PipelineMomentum:
    """Coverage and QoQ mix shifts from two quarters of bucket totals."""
    m = PipelineMomentum(
        quota=quota,
        won_amount=current.won_amount,
        total_pipeline=current.total_open_amount,
        total_opps=current.total_open_count,
    )
    for b in BUCKETS:
        prev_value = previous.amounts[b] if previous is not None else None
        m.mix[b] = MixEntry(
            value=current.amounts[b],
            opps=current.counts[b],
            qoq_change_pct=qoq_change(current.amounts[b], prev_value),
        )

    if previous is not None:
        m.previous_total_pipeline = previous.total_open_amount
        m.qoq_total_pct = qoq_change(m.total_pipeline, m.previous_total_pipeline)

    m.coverage_ratio = coverage_ratio(m.total_pipeline, quota, current.won_amount)
    m.coverage_tier = coverage_tier(m.coverage_ratio, at_risk_below, healthy_at)
    return m


def compute_created_cohort(
    deals: Iterable[ScoredDeal],
    period: QuotaPeriod,
    today: date,
    health_max: float = 30.0,
) -> CreatedCohort:
    """
    Cohort of deals created in ``period``.

    Closed-in-quarter means a closed status with a close date inside the
    quarter; everything else created in the quarter is active.
    """
    cohort = CreatedCohort(period_id=period.id)
    bucket_health: Dict[ForecastBucket, List[float]] = defaultdict(list)
    active_health: List[float] = []
    ages: List[int] = []
    product_health: Dict[str, List[float]] = defaultdict(list)

    for sd in deals:
        deal = sd.deal
        if not created_in(deal, period):
            continue
        c = sd.classification

        if c.is_closed and closes_in(deal, period):
            cohort.closed_amount += deal.amount
            cohort.closed_opps += 1
            if c.is_won:
                cohort.closed_won_amount += deal.amount
                cohort.closed_won_opps += 1
            elif c.is_lost:
                cohort.closed_lost_amount += deal.amount
                cohort.closed_lost_opps += 1
            continue

        cohort.active_amount += deal.amount
        cohort.active_opps += 1
        if deal.health_score is not None:
            active_health.append(deal.health_score)

        if c.is_open:
            cb = cohort.buckets[c.bucket]
            cb.amount += deal.amount
            cb.opps += 1
            if deal.health_score is not None:
                bucket_health[c.bucket].append(deal.health_score)

        product = cohort.products.get(deal.product)
        if product is None:
            product = cohort.products[deal.product] = ProductCohort(product=deal.product)
        product.amount += deal.amount
        product.opps += 1
        if deal.health_score is not None:
            product_health[deal.product].append(deal.health_score)

        age = age_days(deal, period, today)
        if age is not None:
            ages.append(age)
            for band, (label, low, high) in zip(cohort.age_bands, AGE_BANDS):
                if age >= low and (high is None or age <= high):
                    band.opps += 1
                    band.amount += deal.amount
                    break

    for b in BUCKETS:
        cohort.buckets[b].health_pct = health_pct(_mean(bucket_health[b]), health_max)
    cohort.active_health_pct = health_pct(_mean(active_health), health_max)
    for name, product in cohort.products.items():
        product.avg_health_pct = health_pct(_mean(product_health[name]), health_max)
    cohort.avg_age_days = _mean(ages)
    return cohort


def compare_created_cohorts(
    current: CreatedCohort,
    previous: Optional[CreatedCohort],
    top_n: int = 5,
) -> CreatedCohortComparison:
    """QoQ for active-only and all-created totals, plus the top products."""
    cmp = CreatedCohortComparison(current=current, previous=previous)
    if previous is not None:
        cmp.qoq_active_amount_pct = qoq_change(current.active_amount, previous.active_amount)
        cmp.qoq_active_opps_pct = qoq_change(current.active_opps, previous.active_opps)
        cmp.qoq_all_amount_pct = qoq_change(current.all_amount, previous.all_amount)
        cmp.qoq_all_opps_pct = qoq_change(current.all_opps, previous.all_opps)

    ranked = sorted(
        current.products.values(), key=lambda p: (-p.amount, -p.opps, p.product)
    )[:top_n]
    for product in ranked:
        prev = previous.products.get(product.product) if previous is not None else None
        product.qoq_amount_pct = qoq_change(product.amount, prev.amount if prev else None)
    cmp.top_products = ranked
    return cmp


# =============================================================================
# Insight text
# =============================================================================


def _signed_pct(p01: Optional[float]) -> str:
    if p01 is None:
        return "n/a"
    v = round(p01 * 100)
    sign = "+" if v > 0 else "-" if v < 0 else ""
    return f"{sign}{abs(v)}%"


def _coverage_text(ratio: Optional[float]) -> str:
    return "n/a" if ratio is None else f"{ratio:.1f}x"


def momentum_insight(m: PipelineMomentum, at_risk_below: float = 3.0) -> str:
    """One-sentence takeaway from QoQ mix shifts and coverage."""
    commit = m.mix[ForecastBucket.COMMIT].qoq_change_pct
    pipeline = m.mix[ForecastBucket.PIPELINE].qoq_change_pct
    total_text = _signed_pct(m.qoq_total_pct)
    cov_text = _coverage_text(m.coverage_ratio)
    below_safe = m.coverage_ratio is not None and m.coverage_ratio < at_risk_below

    if (
        commit is not None and commit > 0
        and pipeline is not None and pipeline <= FUNNEL_SLOWDOWN_PCT01
    ):
        text = (
            f"Top-of-funnel momentum is slowing. While Commit is stable, early-stage "
            f"Pipeline generation is down {abs(round(pipeline * 100))}%, threatening next "
            f"quarter's coverage. Total pipeline is {total_text} QoQ at {cov_text} coverage."
        )
        if below_safe:
            text += f" Coverage is already below the {at_risk_below:.1f}x safe zone."
        return text

    moves = [
        (m.mix[b].qoq_change_pct, b) for b in reversed(BUCKETS)
        if m.mix[b].qoq_change_pct is not None
    ]
    if m.qoq_total_pct is not None and m.qoq_total_pct < 0:
        text = f"Total pipeline is {total_text} QoQ"
        if moves:
            worst_pct, worst = min(moves, key=lambda x: x[0])
            text += f", with the largest slowdown in {worst.label} ({_signed_pct(worst_pct)})"
        text += f". Current coverage is {cov_text}"
        if below_safe:
            text += f" (below the {at_risk_below:.1f}x safe zone)"
        return text + "."

    if m.qoq_total_pct is not None and m.qoq_total_pct > 0:
        return (
            f"Total pipeline is {total_text} QoQ and coverage is {cov_text}. "
            f"Momentum is improving: protect Commit quality and keep Pipeline creation pacing."
        )

    shifts = ", ".join(
        f"{b.label} {_signed_pct(m.mix[b].qoq_change_pct)}" for b in BUCKETS
    )
    return f"Pipeline coverage is {cov_text}. Mix shifts are: {shifts} QoQ."


# =============================================================================
# Report
# =============================================================================


@dataclass
class MomentumReport:
    """Pipeline momentum plus created-cohort comparison for one scope."""

    org_id: int
    period_id: Optional[int] = None
    previous_period_id: Optional[int] = None
    signal: Optional[str] = None
    pipeline: PipelineMomentum = field(default_factory=PipelineMomentum)
    created: CreatedCohortComparison = field(default_factory=CreatedCohortComparison)
    insight: Optional[str] = None
