"""
Read-only data access for the forecast engine.

Implements the deal snapshot, configuration and quota providers over the
CRM tables. Every query filters by org_id.
"""

import logging
from datetime import date
from typing import Iterator, List, Optional

from pydantic import ValidationError
from sqlalchemy import or_
from sqlalchemy.orm import Session

from forecast_engine.core.errors import ConfigMissingError, PeriodNotFoundError
from forecast_engine.core.models import (
    ForecastStageProbability,
    HealthScoreRuleRow,
    Opportunity,
    QuotaPeriodRow,
    QuotaRow,
    Rep,
)
from forecast_engine.core.parsing import coerce_amount
from forecast_engine.core.schemas import HealthScoreRule, QuotaPeriod, StageProbabilities
from forecast_engine.engine.deal import Deal
from forecast_engine.engine.rules import RuleSet
from forecast_engine.engine.scope import RepDirectoryEntry, Scope

logger = logging.getLogger(__name__)

ROLE_LEVEL_COMPANY = 0
ROLE_LEVEL_EXEC = 1
ROLE_LEVEL_MANAGER = 2
ROLE_LEVEL_REP = 3

YIELD_PER = 500


class ForecastRepository:
    """
    Store reads for one org-scoped computation.

    The session is owned by the caller; nothing here commits or writes.
    """

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # Periods
    # =========================================================================

    def list_periods(self, org_id: int) -> List[QuotaPeriod]:
        """Valid periods, most recent start first."""
        rows = (
            self.db.query(QuotaPeriodRow)
            .filter(QuotaPeriodRow.org_id == org_id)
            .order_by(QuotaPeriodRow.period_start.desc(), QuotaPeriodRow.id.desc())
            .all()
        )
        periods = []
        for row in rows:
            period = self._to_period(row)
            if period is not None:
                periods.append(period)
        return periods

    def get_period(self, org_id: int, period_id: int) -> QuotaPeriod:
        """
        Resolve a quota period for the org.

        Raises:
            PeriodNotFoundError: unknown id, another org's id, or unusable range
        """
        row = (
            self.db.query(QuotaPeriodRow)
            .filter(QuotaPeriodRow.org_id == org_id, QuotaPeriodRow.id == period_id)
            .first()
        )
        period = self._to_period(row) if row is not None else None
        if period is None:
            raise PeriodNotFoundError(org_id=org_id, period_id=period_id)
        return period

    def get_previous_period(self, org_id: int, period: QuotaPeriod) -> Optional[QuotaPeriod]:
        """The next row after ``period`` in start-descending order."""
        periods = self.list_periods(org_id)
        for i, p in enumerate(periods):
            if p.id == period.id:
                return periods[i + 1] if i + 1 < len(periods) else None
        return None

    def default_period(self, org_id: int, today: date) -> Optional[QuotaPeriod]:
        """The period containing ``today``, else the most recent one."""
        periods = self.list_periods(org_id)
        for p in periods:
            if p.contains(today):
                return p
        return periods[0] if periods else None

    def _to_period(self, row: QuotaPeriodRow) -> Optional[QuotaPeriod]:
        try:
            return QuotaPeriod(
                id=row.id,
                org_id=row.org_id,
                period_start=row.period_start,
                period_end=row.period_end,
                fiscal_year=row.fiscal_year,
                fiscal_quarter=row.fiscal_quarter,
                period_name=row.period_name,
            )
        except ValidationError as e:
            logger.warning(f"Skipping quota period {row.id} for org {row.org_id}: {e.error_count()} errors")
            return None

    # =========================================================================
    # Configuration
    # =========================================================================

    def get_stage_probabilities(
        self, org_id: int, base: Optional[StageProbabilities] = None
    ) -> StageProbabilities:
        """
        Stored probabilities overlaid on ``base``.

        Raises:
            ConfigMissingError: the org has no probability rows at all
        """
        rows = (
            self.db.query(ForecastStageProbability.stage_key, ForecastStageProbability.probability)
            .filter(ForecastStageProbability.org_id == org_id)
            .all()
        )
        if not rows:
            raise ConfigMissingError(org_id=org_id, config_name="stage_probabilities")
        return StageProbabilities.from_rows(rows, base=base)

    def get_rules(self, org_id: int) -> RuleSet:
        """All valid health-score rules; an empty set is a pass-through."""
        rows = (
            self.db.query(HealthScoreRuleRow)
            .filter(HealthScoreRuleRow.org_id == org_id)
            .order_by(HealthScoreRuleRow.id)
            .all()
        )
        rules = []
        for row in rows:
            try:
                rules.append(HealthScoreRule(
                    id=row.id,
                    org_id=row.org_id,
                    mapped_bucket=row.mapped_category,
                    min_score=row.min_score,
                    max_score=row.max_score,
                    suppression=row.suppression,
                    probability_modifier=row.probability_modifier,
                ))
            except (ValidationError, ValueError) as e:
                logger.debug(f"Skipping health rule {row.id} for org {org_id}: {e}")
        return RuleSet(org_id, rules)

    # =========================================================================
    # Directory & deals
    # =========================================================================

    def list_reps(self, org_id: int) -> List[RepDirectoryEntry]:
        rows = self.db.query(Rep).filter(Rep.org_id == org_id).order_by(Rep.id).all()
        return [
            RepDirectoryEntry(
                id=r.id,
                org_id=r.org_id,
                user_id=r.user_id,
                manager_rep_id=r.manager_rep_id,
                role=r.role,
                rep_name=r.rep_name,
                display_name=r.display_name,
                crm_owner_name=r.crm_owner_name,
                active=r.active is not False,
            )
            for r in rows
        ]

    def iter_deals(self, org_id: int, scope: Scope) -> Iterator[Deal]:
        """
        Stream coerced deals visible to ``scope``.

        Rows are pre-filtered in SQL by rep id or presence of an owner name;
        name-key matching happens on the coerced record.
        """
        if scope.org_id != org_id:
            raise ValueError(f"Scope org {scope.org_id} does not match org {org_id}")
        if scope.is_empty:
            return

        query = self.db.query(Opportunity).filter(Opportunity.org_id == org_id)
        if not scope.unrestricted:
            conditions = []
            if scope.owner_ids:
                conditions.append(Opportunity.rep_id.in_(sorted(scope.owner_ids)))
            if scope.name_keys:
                conditions.append(Opportunity.rep_name.isnot(None))
            query = query.filter(or_(*conditions))

        for row in query.order_by(Opportunity.id).yield_per(YIELD_PER):
            deal = self._to_deal(row)
            if scope.includes(deal):
                yield deal

    def load_deals(self, org_id: int, scope: Scope) -> List[Deal]:
        return list(self.iter_deals(org_id, scope))

    @staticmethod
    def _to_deal(row: Opportunity) -> Deal:
        return Deal.from_mapping({
            "id": row.id,
            "org_id": row.org_id,
            "amount": row.amount,
            "forecast_stage": row.forecast_stage,
            "health_score": row.health_score,
            "rep_id": row.rep_id,
            "rep_name": row.rep_name,
            "partner_name": row.partner_name,
            "product": row.product,
            "create_date": row.create_date,
            "close_date": row.close_date,
        })

    # =========================================================================
    # Quotas
    # =========================================================================

    def sum_quota(
        self,
        org_id: int,
        period_id: int,
        role_level: int,
        rep_ids: Optional[List[int]] = None,
    ) -> float:
        """Summed quota for one (period, role level[, owners]) cell."""
        query = self.db.query(QuotaRow.quota_amount).filter(
            QuotaRow.org_id == org_id,
            QuotaRow.quota_period_id == period_id,
            QuotaRow.role_level == role_level,
        )
        if rep_ids is not None:
            if not rep_ids:
                return 0.0
            query = query.filter(QuotaRow.rep_id.in_(rep_ids))
        return sum(coerce_amount(amount, field="quota_amount") for (amount,) in query.all())

    def get_quota(self, org_id: int, period_id: int, scope: Scope) -> float:
        """
        Quota for the scope.

        Unrestricted: the company quota, else the sum of rep quotas.
        Restricted: rep quotas of the visible owners only.
        """
        if scope.unrestricted:
            company = self.sum_quota(org_id, period_id, ROLE_LEVEL_COMPANY)
            if company > 0:
                return company
            return self.sum_quota(org_id, period_id, ROLE_LEVEL_REP)
        return self.sum_quota(org_id, period_id, ROLE_LEVEL_REP, sorted(scope.owner_ids))

