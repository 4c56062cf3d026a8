"""
SQLAlchemy models for the deal and forecast configuration tables.

The engine only ever reads these tables. They are written by CRM ingestion
and the admin configuration editors, which live outside this package.
"""
from datetime import datetime
from sqlalchemy import (
    Boolean, Column, Date, DateTime, Float, Integer, String, Text,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Rep(Base):
    """
    Rep directory row (reps, managers and executives).

    ``manager_rep_id`` builds the reporting tree used for scope resolution.
    """
    __tablename__ = "reps"

    id = Column(Integer, primary_key=True, autoincrement=True)
    org_id = Column(Integer, nullable=False, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    manager_rep_id = Column(Integer, nullable=True, index=True)
    role = Column(String(20), nullable=True)  # EXEC_MANAGER, MANAGER, REP

    rep_name = Column(String(255), nullable=True)
    display_name = Column(String(255), nullable=True)
    crm_owner_name = Column(String(255), nullable=True)

    active = Column(Boolean, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Rep(id={self.id}, org_id={self.org_id}, role={self.role}, "
            f"manager_rep_id={self.manager_rep_id})>"
        )


class Opportunity(Base):
    """
    A CRM deal as ingested.

    ``close_date`` keeps the raw CRM text; it is parsed defensively on read.
    """
    __tablename__ = "opportunities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    org_id = Column(Integer, nullable=False, index=True)

    # Owner linkage: stable id when known, free-text name otherwise
    rep_id = Column(Integer, nullable=True, index=True)
    rep_name = Column(String(255), nullable=True)

    amount = Column(Float, nullable=True)
    forecast_stage = Column(String(255), nullable=True)
    health_score = Column(Float, nullable=True)
    partner_name = Column(String(255), nullable=True)
    product = Column(String(255), nullable=True)

    create_date = Column(DateTime, nullable=True)
    close_date = Column(String(32), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Opportunity(id={self.id}, org_id={self.org_id}, "
            f"stage={self.forecast_stage}, amount={self.amount})>"
        )


class QuotaPeriodRow(Base):
    """Fiscal quarter definition (inclusive date range)."""
    __tablename__ = "quota_periods"

    id = Column(Integer, primary_key=True, autoincrement=True)
    org_id = Column(Integer, nullable=False, index=True)
    period_name = Column(String(100), nullable=True)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    fiscal_year = Column(String(10), nullable=True)
    fiscal_quarter = Column(String(10), nullable=True)

    __table_args__ = (
        Index("idx_quota_periods_org_start", "org_id", "period_start"),
    )

    def __repr__(self) -> str:
        return (
            f"<QuotaPeriodRow(id={self.id}, org_id={self.org_id}, "
            f"start={self.period_start}, end={self.period_end})>"
        )


class QuotaRow(Base):
    """
    Quota amount for one (period, role level, owner) cell.

    role_level: 0 = company, 1 = exec, 2 = manager, 3 = rep.
    """
    __tablename__ = "quotas"

    id = Column(Integer, primary_key=True, autoincrement=True)
    org_id = Column(Integer, nullable=False, index=True)
    quota_period_id = Column(Integer, nullable=False, index=True)
    role_level = Column(Integer, nullable=False)
    rep_id = Column(Integer, nullable=True, index=True)
    quota_amount = Column(Float, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<QuotaRow(id={self.id}, period={self.quota_period_id}, "
            f"role_level={self.role_level}, rep_id={self.rep_id})>"
        )


class ForecastStageProbability(Base):
    """Per-org probability (0..1) for one forecast bucket."""
    __tablename__ = "forecast_stage_probabilities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    org_id = Column(Integer, nullable=False, index=True)
    stage_key = Column(String(20), nullable=False)  # commit, best_case, pipeline
    probability = Column(Float, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("org_id", "stage_key", name="uq_stage_probability_org_key"),
    )


class HealthScoreRuleRow(Base):
    """
    Health-score band rule for one forecast category.

    ``mapped_category`` holds the display label (Commit, Best Case, Pipeline).
    """
    __tablename__ = "health_score_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    org_id = Column(Integer, nullable=False, index=True)
    mapped_category = Column(String(50), nullable=False)
    min_score = Column(Float, nullable=False)
    max_score = Column(Float, nullable=False)
    suppression = Column(Boolean, nullable=True, default=False)
    probability_modifier = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<HealthScoreRuleRow(id={self.id}, org_id={self.org_id}, "
            f"category={self.mapped_category}, band={self.min_score}-{self.max_score})>"
        )
