"""
Bucket totals and the CRM vs health-adjusted ("AI") weighted forecast.

Definitions:
- CRM weighted = won + Σ bucket_amount × probability
- AI weighted  = won + Σ bucket_amount × agg_modifier × probability
- Gap          = AI weighted − CRM weighted, attributed per bucket

The bucket modifier is value-weighted: Σ(amount × modifier) / Σ(amount),
or 1.0 for an empty bucket.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from forecast_engine.core.schemas import BUCKETS, ForecastBucket, QuotaPeriod, StageProbabilities
from forecast_engine.engine.classifier import closes_in
from forecast_engine.engine.rules import ScoredDeal

logger = logging.getLogger(__name__)


def safe_div(numerator: Optional[float], denominator: Optional[float]) -> Optional[float]:
    """Division that yields None instead of raising or returning inf/nan."""
    if numerator is None or denominator is None or denominator == 0:
        return None
    return numerator / denominator


def _zero_by_bucket() -> Dict[ForecastBucket, float]:
    return {b: 0.0 for b in BUCKETS}


# =============================================================================
# Data classes
# =============================================================================


@dataclass
class BucketTotals:
    """Open-bucket sums plus won/lost outcomes for one quarter."""

    amounts: Dict[ForecastBucket, float] = field(default_factory=_zero_by_bucket)
    counts: Dict[ForecastBucket, int] = field(
        default_factory=lambda: {b: 0 for b in BUCKETS}
    )
    won_amount: float = 0.0
    won_count: int = 0
    lost_amount: float = 0.0
    lost_count: int = 0
    closed_other_amount: float = 0.0  # "closed" with no won/lost outcome
    closed_other_count: int = 0

    @property
    def total_open_amount(self) -> float:
        return sum(self.amounts.values())

    @property
    def total_open_count(self) -> int:
        return sum(self.counts.values())


@dataclass
class WeightedForecast:
    """CRM vs AI weighted forecast with per-bucket gap attribution."""

    quota: float = 0.0
    probabilities: Dict[ForecastBucket, float] = field(default_factory=_zero_by_bucket)
    agg_modifiers: Dict[ForecastBucket, float] = field(
        default_factory=lambda: {b: 1.0 for b in BUCKETS}
    )
    crm_weighted_by_bucket: Dict[ForecastBucket, float] = field(default_factory=_zero_by_bucket)
    ai_weighted_by_bucket: Dict[ForecastBucket, float] = field(default_factory=_zero_by_bucket)
    ai_amounts: Dict[ForecastBucket, float] = field(default_factory=_zero_by_bucket)
    bucket_delta: Dict[ForecastBucket, float] = field(default_factory=_zero_by_bucket)
    crm_weighted: float = 0.0
    ai_weighted: float = 0.0
    gap: float = 0.0
    pct_to_goal: Optional[float] = None
    left_to_go: float = 0.0


@dataclass
class ForecastSummary:
    """Full forecast view for one org, scope and quarter."""

    org_id: int
    period_id: Optional[int] = None
    period_label: Optional[str] = None
    scope_label: str = "Team"
    signal: Optional[str] = None  # scope_empty, period_not_found
    stage_probabilities_default: bool = True
    totals: BucketTotals = field(default_factory=BucketTotals)
    forecast: WeightedForecast = field(default_factory=WeightedForecast)


# =============================================================================
# Computation
# =============================================================================


def compute_bucket_totals(deals: Iterable[ScoredDeal]) -> BucketTotals:
    """Sum amounts and counts. Callers pass deals already scoped to the quarter."""
    totals = BucketTotals()
    for sd in deals:
        c = sd.classification
        amount = sd.deal.amount
        if c.is_open:
            totals.amounts[c.bucket] += amount
            totals.counts[c.bucket] += 1
        elif c.is_won:
            totals.won_amount += amount
            totals.won_count += 1
        elif c.is_lost:
            totals.lost_amount += amount
            totals.lost_count += 1
        else:
            totals.closed_other_amount += amount
            totals.closed_other_count += 1
    return totals


def aggregate_modifiers(deals: Iterable[ScoredDeal]) -> Dict[ForecastBucket, float]:
    """Value-weighted modifier per bucket over open deals."""
    amount = _zero_by_bucket()
    adjusted = _zero_by_bucket()
    for sd in deals:
        if not sd.classification.is_open:
            continue
        b = sd.bucket
        amount[b] += sd.deal.amount
        adjusted[b] += sd.deal.amount * max(0.0, sd.modifier.modifier)

    return {
        b: (adjusted[b] / amount[b]) if amount[b] > 0 else 1.0
        for b in BUCKETS
    }


def compute_weighted_forecast(
    totals: BucketTotals,
    modifiers: Dict[ForecastBucket, float],
    probabilities: StageProbabilities,
    quota: float = 0.0,
) -> WeightedForecast:
    """Apply org probabilities and bucket modifiers to the bucket sums."""
    quota = max(0.0, quota or 0.0)
    wf = WeightedForecast(quota=quota)

    crm = totals.won_amount
    ai = totals.won_amount
    for b in BUCKETS:
        prob = probabilities.for_bucket(b)
        mod = max(0.0, modifiers.get(b, 1.0))
        amount = totals.amounts[b]

        wf.probabilities[b] = prob
        wf.agg_modifiers[b] = mod
        wf.ai_amounts[b] = amount * mod
        wf.crm_weighted_by_bucket[b] = amount * prob
        wf.ai_weighted_by_bucket[b] = amount * mod * prob
        wf.bucket_delta[b] = wf.ai_weighted_by_bucket[b] - wf.crm_weighted_by_bucket[b]

        crm += wf.crm_weighted_by_bucket[b]
        ai += wf.ai_weighted_by_bucket[b]

    wf.crm_weighted = crm
    wf.ai_weighted = ai
    wf.gap = ai - crm
    wf.pct_to_goal = safe_div(ai, quota) if quota > 0 else None
    wf.left_to_go = quota - ai
    return wf


def in_quarter(deals: Iterable[ScoredDeal], period: QuotaPeriod) -> List[ScoredDeal]:
    return [sd for sd in deals if closes_in(sd.deal, period)]


def summarize_forecast(
    deals: Iterable[ScoredDeal],
    period: QuotaPeriod,
    probabilities: StageProbabilities,
    quota: float = 0.0,
    scope_label: str = "Team",
) -> ForecastSummary:
    """Bucket totals + weighted forecast for deals closing in ``period``."""
    quarter_deals = in_quarter(deals, period)
    totals = compute_bucket_totals(quarter_deals)
    modifiers = aggregate_modifiers(quarter_deals)
    forecast = compute_weighted_forecast(totals, modifiers, probabilities, quota)

    logger.debug(
        f"Forecast org={period.org_id} period={period.id}: "
        f"{len(quarter_deals)} deals, crm={forecast.crm_weighted:.2f}, "
        f"ai={forecast.ai_weighted:.2f}"
    )

    return ForecastSummary(
        org_id=period.org_id,
        period_id=period.id,
        period_label=period.label,
        scope_label=scope_label,
        stage_probabilities_default=probabilities.is_default,
        totals=totals,
        forecast=forecast,
    )


def empty_forecast_summary(
    org_id: int,
    signal: Optional[str],
    probabilities: Optional[StageProbabilities] = None,
    period: Optional[QuotaPeriod] = None,
    scope_label: str = "Team",
) -> ForecastSummary:
    """Zeroed summary used for fail-closed scope and unknown periods."""
    probabilities = probabilities or StageProbabilities.defaults()
    return ForecastSummary(
        org_id=org_id,
        period_id=period.id if period else None,
        period_label=period.label if period else None,
        scope_label=scope_label,
        signal=signal,
        stage_probabilities_default=probabilities.is_default,
        forecast=compute_weighted_forecast(BucketTotals(), {}, probabilities, 0.0),
    )
