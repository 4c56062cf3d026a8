"""
Direct vs partner channel scoring and the Channel Efficiency Index (CEI).

CEI (direct baseline = 100):
- RV(m)      = won_amount / avg_cycle_days      (0 if cycle unknown or <= 0)
- QM(m)      = win_rate × avg_health / max      (win_rate alone without health)
- CEI_raw(m) = RV × QM
- CEI(p)     = CEI_raw(p) / CEI_raw(direct) × 100 (None if baseline <= 0)
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from forecast_engine.core.parsing import normalize_name_key
from forecast_engine.core.schemas import QuotaPeriod
from forecast_engine.engine.classifier import closes_in
from forecast_engine.engine.deal import Motion
from forecast_engine.engine.forecast import safe_div
from forecast_engine.engine.rules import ScoredDeal

logger = logging.getLogger(__name__)


# =============================================================================
# Data classes
# =============================================================================


@dataclass
class MotionStats:
    """Closed-deal performance for one motion or one partner."""

    name: str
    opps: int = 0
    won_opps: int = 0
    lost_opps: int = 0
    won_amount: float = 0.0
    closed_amount: float = 0.0
    win_rate: Optional[float] = None
    aov: Optional[float] = None
    avg_cycle_days: Optional[float] = None
    avg_health_score: Optional[float] = None
    cei_raw: Optional[float] = None
    cei_index: Optional[float] = None

    # running sums, not part of the reported shape
    _cycle_total: int = field(default=0, repr=False)
    _cycle_n: int = field(default=0, repr=False)
    _health_total: float = field(default=0.0, repr=False)
    _health_n: int = field(default=0, repr=False)

    def add(self, sd: ScoredDeal) -> None:
        deal = sd.deal
        self.opps += 1
        self.closed_amount += deal.amount
        if sd.classification.is_won:
            self.won_opps += 1
            self.won_amount += deal.amount
        else:
            self.lost_opps += 1

        cycle = deal.cycle_days
        if cycle is not None:
            self._cycle_total += cycle
            self._cycle_n += 1
        if deal.health_score is not None:
            self._health_total += deal.health_score
            self._health_n += 1

    def finalize(self) -> "MotionStats":
        self.win_rate = safe_div(self.won_opps, self.opps)
        self.aov = safe_div(self.won_amount, self.won_opps)
        self.avg_cycle_days = safe_div(self._cycle_total, self._cycle_n)
        self.avg_health_score = safe_div(self._health_total, self._health_n)
        return self


@dataclass
class PartnerPromise:
    partner: str
    closed_opps: int
    won_amount: float
    avg_cycle_days: Optional[float]
    cycle_delta_days: Optional[float]  # partner minus direct; negative = faster
    cei_index: Optional[float] = None


@dataclass
class ChannelScorecard:
    org_id: int
    period_id: Optional[int] = None
    signal: Optional[str] = None
    direct: MotionStats = field(default_factory=lambda: MotionStats(name=Motion.DIRECT.value))
    partner: MotionStats = field(default_factory=lambda: MotionStats(name=Motion.PARTNER.value))
    partners: List[MotionStats] = field(default_factory=list)
    revenue_mix_partner: Optional[float] = None
    partner_cei_index: Optional[float] = None
    promising_partners: List[PartnerPromise] = field(default_factory=list)


# =============================================================================
# CEI
# =============================================================================


def revenue_velocity(stats: MotionStats) -> float:
    if stats.avg_cycle_days is None or stats.avg_cycle_days <= 0:
        return 0.0
    return stats.won_amount / stats.avg_cycle_days


def quality_multiplier(stats: MotionStats, health_max: float = 30.0) -> float:
    if stats.win_rate is None:
        return 0.0
    if stats.avg_health_score is None or health_max <= 0:
        return stats.win_rate
    return stats.win_rate * (stats.avg_health_score / health_max)


def cei_raw(stats: MotionStats, health_max: float = 30.0) -> float:
    return revenue_velocity(stats) * quality_multiplier(stats, health_max)


def cei_index(raw: Optional[float], direct_raw: Optional[float]) -> Optional[float]:
    if raw is None or direct_raw is None or direct_raw <= 0:
        return None
    return raw / direct_raw * 100


def revenue_mix(partner_won: float, direct_won: float) -> Optional[float]:
    """Partner share of won revenue."""
    return safe_div(partner_won, partner_won + direct_won)


# =============================================================================
# Scorecard
# =============================================================================


def compute_channel_scorecard(
    deals: Iterable[ScoredDeal],
    period: QuotaPeriod,
    health_max: float = 30.0,
    promise_min_closed: int = 3,
) -> ChannelScorecard:
    """Score won + lost deals closing in ``period`` by motion and by partner."""
    card = ChannelScorecard(org_id=period.org_id, period_id=period.id)
    by_partner: Dict[str, MotionStats] = {}

    for sd in deals:
        c = sd.classification
        if not (c.is_won or c.is_lost) or not closes_in(sd.deal, period):
            continue
        deal = sd.deal
        if deal.motion == Motion.PARTNER:
            card.partner.add(sd)
            key = normalize_name_key(deal.partner_name)
            stats = by_partner.get(key)
            if stats is None:
                stats = by_partner[key] = MotionStats(name=deal.partner_name)
            stats.add(sd)
        else:
            card.direct.add(sd)

    card.direct.finalize()
    card.partner.finalize()

    direct_raw = cei_raw(card.direct, health_max) if card.direct.opps else None
    card.direct.cei_raw = direct_raw
    card.direct.cei_index = 100.0 if direct_raw and direct_raw > 0 else None
    if card.partner.opps:
        card.partner.cei_raw = cei_raw(card.partner, health_max)
        card.partner.cei_index = cei_index(card.partner.cei_raw, direct_raw)
    card.partner_cei_index = card.partner.cei_index

    for stats in by_partner.values():
        stats.finalize()
        stats.cei_raw = cei_raw(stats, health_max)
        stats.cei_index = cei_index(stats.cei_raw, direct_raw)
    card.partners = sorted(by_partner.values(), key=lambda s: (-s.won_amount, s.name.lower()))

    card.revenue_mix_partner = revenue_mix(card.partner.won_amount, card.direct.won_amount)
    card.promising_partners = partners_showing_promise(
        card.partners, card.direct, promise_min_closed
    )

    if direct_raw is None or direct_raw <= 0:
        logger.debug(f"No usable direct CEI baseline for org {period.org_id} period {period.id}")
    return card


def partners_showing_promise(
    partners: Iterable[MotionStats], direct: MotionStats, min_closed: int = 3
) -> List[PartnerPromise]:
    """Partners with enough closed deals, fastest relative to direct first."""
    rows = []
    for p in partners:
        if p.opps < min_closed:
            continue
        delta = None
        if p.avg_cycle_days is not None and direct.avg_cycle_days is not None:
            delta = p.avg_cycle_days - direct.avg_cycle_days
        rows.append(PartnerPromise(
            partner=p.name,
            closed_opps=p.opps,
            won_amount=p.won_amount,
            avg_cycle_days=p.avg_cycle_days,
            cycle_delta_days=delta,
            cei_index=p.cei_index,
        ))
    rows.sort(key=lambda r: (
        r.cycle_delta_days is None,
        r.cycle_delta_days if r.cycle_delta_days is not None else 0.0,
        -r.won_amount,
    ))
    return rows


def empty_channel_scorecard(org_id: int, signal: Optional[str], period_id: Optional[int] = None) -> ChannelScorecard:
    return ChannelScorecard(org_id=org_id, period_id=period_id, signal=signal)
