"""
Pure forecast computations.

Nothing in this package touches the store: every function takes coerced
deals and value structs and returns plain result dataclasses.
"""

from forecast_engine.engine.channel import ChannelScorecard, compute_channel_scorecard
from forecast_engine.engine.classifier import Classification, classify, classify_stage
from forecast_engine.engine.deal import Deal, Motion
from forecast_engine.engine.forecast import ForecastSummary, summarize_forecast
from forecast_engine.engine.kpis import QuarterKpis, compute_quarter_kpis
from forecast_engine.engine.results import to_plain
from forecast_engine.engine.rules import HealthModifier, RuleSet, annotate_deals, resolve_modifier
from forecast_engine.engine.scope import Caller, Role, Scope, ScopeResolver

__all__ = [
    "Caller",
    "ChannelScorecard",
    "Classification",
    "Deal",
    "ForecastSummary",
    "HealthModifier",
    "Motion",
    "QuarterKpis",
    "Role",
    "RuleSet",
    "Scope",
    "ScopeResolver",
    "annotate_deals",
    "classify",
    "classify_stage",
    "compute_channel_scorecard",
    "compute_quarter_kpis",
    "resolve_modifier",
    "summarize_forecast",
    "to_plain",
]
