"""
Forecast orchestration: scope -> snapshot -> classify/annotate -> aggregate.

Every public method degrades instead of raising for the recoverable cases:
- no stage probabilities / rules: documented defaults
- unknown quota period: zeroed result tagged ``period_not_found``
- restricted scope with nobody in it: zeroed result tagged ``scope_empty``
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from forecast_engine.core.config import Settings, get_settings
from forecast_engine.core.database import get_session_factory
from forecast_engine.core.errors import (
    ConfigMissingError,
    ForecastEngineError,
    PeriodNotFoundError,
    ScopeEmptyError,
)
from forecast_engine.core.schemas import QuotaPeriod, StageProbabilities
from forecast_engine.engine.channel import (
    ChannelScorecard,
    compute_channel_scorecard,
    empty_channel_scorecard,
)
from forecast_engine.engine.forecast import (
    ForecastSummary,
    compute_bucket_totals,
    empty_forecast_summary,
    in_quarter,
    summarize_forecast,
)
from forecast_engine.engine.kpis import QuarterKpis, compute_quarter_kpis
from forecast_engine.engine.momentum import (
    MomentumReport,
    compare_created_cohorts,
    compute_created_cohort,
    compute_pipeline_momentum,
    momentum_insight,
)
from forecast_engine.engine.rules import RuleSet, ScoredDeal, annotate_deals
from forecast_engine.engine.scope import Caller, RepDirectoryEntry, Scope, ScopeResolver
from forecast_engine.services.repository import ForecastRepository

logger = logging.getLogger(__name__)


@dataclass
class Snapshot:
    """Everything one computation needs, loaded once."""

    scope: Scope
    period: QuotaPeriod
    previous_period: Optional[QuotaPeriod]
    probabilities: StageProbabilities
    rules: RuleSet
    deals: List[ScoredDeal]
    quota: float = 0.0


@dataclass
class RepRollup:
    rep_id: int
    rep_name: Optional[str]
    quota: float = 0.0
    won_amount: float = 0.0
    crm_weighted: float = 0.0
    ai_weighted: float = 0.0
    gap: float = 0.0
    pct_to_goal: Optional[float] = None


@dataclass
class ExecutiveSnapshot:
    org_id: int
    period_id: Optional[int] = None
    signal: Optional[str] = None
    forecast: Optional[ForecastSummary] = None
    momentum: Optional[MomentumReport] = None
    channel: Optional[ChannelScorecard] = None
    kpis: Optional[QuarterKpis] = None


class ForecastService:
    """
    Forecast computations for one caller.

    Args:
        db: Session used for the caller's own reads
        settings: Engine settings (defaults to the process settings)
        today: Reference date for default period and deal age
        session_factory: Factory for per-task sessions in rep rollups
    """

    def __init__(
        self,
        db: Session,
        settings: Optional[Settings] = None,
        today: Optional[date] = None,
        session_factory=None,
    ):
        self.db = db
        self.repo = ForecastRepository(db)
        self.settings = settings or get_settings()
        self.today = today or date.today()
        self._session_factory = session_factory

    # =========================================================================
    # Building blocks
    # =========================================================================

    def resolve_scope(self, caller: Caller) -> Scope:
        resolver = ScopeResolver(caller.org_id, self.repo.list_reps(caller.org_id))
        return resolver.resolve(caller)

    def load_config(self, org_id: int) -> Tuple[StageProbabilities, RuleSet]:
        """Stage probabilities (defaults when unset) and the org rule set."""
        defaults = StageProbabilities.defaults(self.settings)
        try:
            probabilities = self.repo.get_stage_probabilities(org_id, base=defaults)
        except ConfigMissingError as e:
            logger.info(f"{e}; using default stage probabilities")
            probabilities = defaults
        rules = self.repo.get_rules(org_id)
        if not len(rules):
            logger.info(f"[org {org_id}] No health score rules; modifiers pass through")
        return probabilities, rules

    def resolve_period(self, org_id: int, period_id: Optional[int] = None) -> QuotaPeriod:
        if period_id is not None:
            return self.repo.get_period(org_id, period_id)
        period = self.repo.default_period(org_id, self.today)
        if period is None:
            raise PeriodNotFoundError(message="No quota periods configured", org_id=org_id)
        return period

    def load_snapshot(self, caller: Caller, period_id: Optional[int] = None) -> Snapshot:
        """
        Load scope, period, config and scored deals.

        Raises:
            ScopeEmptyError: restricted caller with no visible owners
            PeriodNotFoundError: period id does not resolve for the org
        """
        org_id = caller.org_id
        scope = self.resolve_scope(caller).ensure_visible()
        period = self.resolve_period(org_id, period_id)
        previous = self.repo.get_previous_period(org_id, period)
        probabilities, rules = self.load_config(org_id)
        deals = annotate_deals(self.repo.iter_deals(org_id, scope), rules)
        quota = self.repo.get_quota(org_id, period.id, scope)

        logger.info(
            f"Loaded snapshot org={org_id} period={period.id} scope={scope.label} "
            f"key={scope.cache_key()}: {len(deals)} deals, quota={quota:.2f}"
        )
        return Snapshot(
            scope=scope,
            period=period,
            previous_period=previous,
            probabilities=probabilities,
            rules=rules,
            deals=deals,
            quota=quota,
        )

    def _degrade(self, e: ForecastEngineError) -> None:
        if isinstance(e, ScopeEmptyError):
            logger.warning(f"Failing closed: {e}")
        else:
            logger.info(f"Returning zeroed result: {e}")

    # =========================================================================
    # Per-snapshot computations
    # =========================================================================

    def _forecast(self, snap: Snapshot) -> ForecastSummary:
        return summarize_forecast(
            snap.deals,
            snap.period,
            snap.probabilities,
            quota=snap.quota,
            scope_label=snap.scope.label,
        )

    def _momentum(self, snap: Snapshot) -> MomentumReport:
        s = self.settings
        current = compute_bucket_totals(in_quarter(snap.deals, snap.period))
        previous = None
        prev_cohort = None
        if snap.previous_period is not None:
            previous = compute_bucket_totals(in_quarter(snap.deals, snap.previous_period))
            prev_cohort = compute_created_cohort(
                snap.deals, snap.previous_period, self.today, s.health_score_max
            )

        pipeline = compute_pipeline_momentum(
            current,
            previous,
            quota=snap.quota,
            at_risk_below=s.coverage_at_risk_below,
            healthy_at=s.coverage_healthy_at,
        )
        cohort = compute_created_cohort(snap.deals, snap.period, self.today, s.health_score_max)
        return MomentumReport(
            org_id=snap.period.org_id,
            period_id=snap.period.id,
            previous_period_id=snap.previous_period.id if snap.previous_period else None,
            pipeline=pipeline,
            created=compare_created_cohorts(cohort, prev_cohort, s.top_products_limit),
            insight=momentum_insight(pipeline, s.coverage_at_risk_below),
        )

    def _channel(self, snap: Snapshot) -> ChannelScorecard:
        return compute_channel_scorecard(
            snap.deals,
            snap.period,
            health_max=self.settings.health_score_max,
            promise_min_closed=self.settings.partner_promise_min_closed,
        )

    def _kpis(self, snap: Snapshot) -> QuarterKpis:
        return compute_quarter_kpis(
            snap.deals, snap.period, self.today, self.settings.health_score_max
        )

    # =========================================================================
    # Public API
    # =========================================================================

    def get_forecast_summary(self, caller: Caller, period_id: Optional[int] = None) -> ForecastSummary:
        try:
            snap = self.load_snapshot(caller, period_id)
        except (ScopeEmptyError, PeriodNotFoundError) as e:
            self._degrade(e)
            probabilities, _ = self.load_config(caller.org_id)
            return empty_forecast_summary(caller.org_id, e.signal, probabilities)
        return self._forecast(snap)

    def get_pipeline_momentum(self, caller: Caller, period_id: Optional[int] = None) -> MomentumReport:
        try:
            snap = self.load_snapshot(caller, period_id)
        except (ScopeEmptyError, PeriodNotFoundError) as e:
            self._degrade(e)
            return MomentumReport(org_id=caller.org_id, period_id=period_id, signal=e.signal)
        return self._momentum(snap)

    def get_channel_scorecard(self, caller: Caller, period_id: Optional[int] = None) -> ChannelScorecard:
        try:
            snap = self.load_snapshot(caller, period_id)
        except (ScopeEmptyError, PeriodNotFoundError) as e:
            self._degrade(e)
            return empty_channel_scorecard(caller.org_id, e.signal, period_id)
        return self._channel(snap)

    def get_quarter_kpis(self, caller: Caller, period_id: Optional[int] = None) -> QuarterKpis:
        try:
            snap = self.load_snapshot(caller, period_id)
        except (ScopeEmptyError, PeriodNotFoundError) as e:
            self._degrade(e)
            return QuarterKpis(period_id=period_id)
        return self._kpis(snap)

    def get_executive_snapshot(self, caller: Caller, period_id: Optional[int] = None) -> ExecutiveSnapshot:
        """Forecast, momentum, channel and KPIs from a single snapshot load."""
        try:
            snap = self.load_snapshot(caller, period_id)
        except (ScopeEmptyError, PeriodNotFoundError) as e:
            self._degrade(e)
            probabilities, _ = self.load_config(caller.org_id)
            return ExecutiveSnapshot(
                org_id=caller.org_id,
                period_id=period_id,
                signal=e.signal,
                forecast=empty_forecast_summary(caller.org_id, e.signal, probabilities),
                momentum=MomentumReport(org_id=caller.org_id, period_id=period_id, signal=e.signal),
                channel=empty_channel_scorecard(caller.org_id, e.signal, period_id),
                kpis=QuarterKpis(period_id=period_id),
            )
        return ExecutiveSnapshot(
            org_id=caller.org_id,
            period_id=snap.period.id,
            forecast=self._forecast(snap),
            momentum=self._momentum(snap),
            channel=self._channel(snap),
            kpis=self._kpis(snap),
        )

    # =========================================================================
    # Rep rollups (bounded fan-out)
    # =========================================================================

    def _visible_reps(self, caller: Caller, scope: Scope) -> List[RepDirectoryEntry]:
        reps = [r for r in self.repo.list_reps(caller.org_id) if r.active]
        if scope.unrestricted:
            return reps
        return [r for r in reps if r.id in scope.owner_ids]

    def _rollup_for_rep(
        self,
        rep: RepDirectoryEntry,
        period: QuotaPeriod,
        probabilities: StageProbabilities,
        rules: RuleSet,
    ) -> RepRollup:
        """One rep's forecast on its own session (runs in a worker thread)."""
        factory = self._session_factory
        if factory is None:
            factory = get_session_factory()

        db = factory()
        try:
            repo = ForecastRepository(db)
            scope = Scope(
                org_id=rep.org_id,
                owner_ids=frozenset({rep.id}),
                name_keys=frozenset(rep.name_keys),
            )
            deals = annotate_deals(repo.iter_deals(rep.org_id, scope), rules)
            quota = repo.get_quota(rep.org_id, period.id, scope)
        finally:
            db.close()

        summary = summarize_forecast(deals, period, probabilities, quota=quota)
        return RepRollup(
            rep_id=rep.id,
            rep_name=rep.display_name or rep.rep_name,
            quota=quota,
            won_amount=summary.totals.won_amount,
            crm_weighted=summary.forecast.crm_weighted,
            ai_weighted=summary.forecast.ai_weighted,
            gap=summary.forecast.gap,
            pct_to_goal=summary.forecast.pct_to_goal,
        )

    async def get_rep_rollups(self, caller: Caller, period_id: Optional[int] = None) -> List[RepRollup]:
        """
        One forecast row per visible rep.

        Store reads fan out with at most ``max_concurrency`` in flight,
        each on its own session.
        """
        try:
            scope = self.resolve_scope(caller).ensure_visible()
            period = self.resolve_period(caller.org_id, period_id)
        except (ScopeEmptyError, PeriodNotFoundError) as e:
            self._degrade(e)
            return []

        probabilities, rules = self.load_config(caller.org_id)
        reps = self._visible_reps(caller, scope)
        semaphore = asyncio.Semaphore(self.settings.max_concurrency)
        loop = asyncio.get_running_loop()

        async def rollup_with_limit(rep: RepDirectoryEntry) -> RepRollup:
            async with semaphore:
                return await loop.run_in_executor(
                    None, self._rollup_for_rep, rep, period, probabilities, rules
                )

        rows = await asyncio.gather(*(rollup_with_limit(r) for r in reps))
        logger.info(
            f"Computed {len(rows)} rep rollups for org {caller.org_id} period {period.id}"
        )
        return sorted(rows, key=lambda r: (-r.ai_weighted, r.rep_id))
