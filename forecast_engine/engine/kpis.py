"""Quarter KPI snapshot over deals closing in the quarter."""

from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional

from forecast_engine.core.schemas import QuotaPeriod
from forecast_engine.engine.classifier import age_days, closes_in
from forecast_engine.engine.deal import Motion
from forecast_engine.engine.forecast import safe_div
from forecast_engine.engine.momentum import health_pct
from forecast_engine.engine.rules import ScoredDeal


@dataclass
class QuarterKpis:
    period_id: Optional[int] = None
    won_count: int = 0
    won_amount: float = 0.0
    lost_count: int = 0
    lost_amount: float = 0.0
    open_count: int = 0
    win_rate: Optional[float] = None
    aov: Optional[float] = None
    opp_to_win: Optional[float] = None  # total opps per won opp
    avg_days_won: Optional[float] = None
    avg_days_lost: Optional[float] = None
    avg_days_active: Optional[float] = None
    avg_health_won_pct: Optional[int] = None
    avg_health_lost_pct: Optional[int] = None
    partner_contribution: Optional[float] = None
    partner_win_rate: Optional[float] = None


def _avg(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def compute_quarter_kpis(
    deals: Iterable[ScoredDeal],
    period: QuotaPeriod,
    today: date,
    health_max: float = 30.0,
) -> QuarterKpis:
    k = QuarterKpis(period_id=period.id)
    days_won, days_lost, days_active = [], [], []
    health_won, health_lost = [], []
    closed_amount = partner_closed_amount = 0.0
    partner_won = partner_closed = 0

    for sd in deals:
        deal, c = sd.deal, sd.classification
        if not closes_in(deal, period):
            continue

        if c.is_open:
            k.open_count += 1
            age = age_days(deal, period, today)
            if age is not None:
                days_active.append(age)
            continue
        if not (c.is_won or c.is_lost):
            continue

        closed_amount += deal.amount
        is_partner = deal.motion == Motion.PARTNER
        if is_partner:
            partner_closed += 1
            partner_closed_amount += deal.amount

        if c.is_won:
            k.won_count += 1
            k.won_amount += deal.amount
            partner_won += is_partner
            if deal.cycle_days is not None:
                days_won.append(deal.cycle_days)
            if deal.health_score is not None:
                health_won.append(deal.health_score)
        else:
            k.lost_count += 1
            k.lost_amount += deal.amount
            if deal.cycle_days is not None:
                days_lost.append(deal.cycle_days)
            if deal.health_score is not None:
                health_lost.append(deal.health_score)

    k.win_rate = safe_div(k.won_count, k.won_count + k.lost_count)
    k.aov = safe_div(k.won_amount, k.won_count)
    k.opp_to_win = safe_div(k.won_count + k.lost_count + k.open_count, k.won_count)
    k.avg_days_won = _avg(days_won)
    k.avg_days_lost = _avg(days_lost)
    k.avg_days_active = _avg(days_active)
    k.avg_health_won_pct = health_pct(_avg(health_won), health_max)
    k.avg_health_lost_pct = health_pct(_avg(health_lost), health_max)
    k.partner_contribution = safe_div(partner_closed_amount, closed_amount)
    k.partner_win_rate = safe_div(partner_won, partner_closed)
    return k
