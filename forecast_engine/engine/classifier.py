"""
Deal classification from free-text forecast stage.

Precedence: won > lost/loss > closed > commit > best > pipeline (catch-all).
Matching is whole-word: the normalized text is padded with spaces so that
" commit " never matches inside "recommitment".
"""

import re
from dataclasses import dataclass
from datetime import date
from functools import lru_cache
from typing import Optional

from forecast_engine.core.schemas import DealStatus, ForecastBucket, QuotaPeriod
from forecast_engine.engine.deal import Deal

_NON_LETTERS = re.compile(r"[^a-z]+")


@dataclass(frozen=True)
class Classification:
    """Status plus bucket (bucket is set for open deals only)."""

    status: DealStatus
    bucket: Optional[ForecastBucket] = None

    @property
    def is_open(self) -> bool:
        return self.status == DealStatus.OPEN

    @property
    def is_won(self) -> bool:
        return self.status == DealStatus.WON

    @property
    def is_lost(self) -> bool:
        return self.status == DealStatus.LOST

    @property
    def is_closed(self) -> bool:
        return self.status != DealStatus.OPEN


def normalize_stage(raw_stage_text: Optional[str]) -> str:
    """Lowercase, letters only, single-spaced, padded: "Best Case - Upside" -> " best case upside "."""
    words = _NON_LETTERS.sub(" ", str(raw_stage_text or "").lower()).split()
    return " " + " ".join(words) + " "


def _has_word(normalized: str, word: str) -> bool:
    return f" {word} " in normalized


@lru_cache(maxsize=2048)
def classify_stage(raw_stage_text: Optional[str]) -> Classification:
    """Classify a raw stage string. Pure and cached."""
    fs = normalize_stage(raw_stage_text)

    if _has_word(fs, "won"):
        return Classification(DealStatus.WON)
    if _has_word(fs, "lost") or _has_word(fs, "loss"):
        return Classification(DealStatus.LOST)
    if _has_word(fs, "closed"):
        return Classification(DealStatus.CLOSED)

    if _has_word(fs, "commit"):
        return Classification(DealStatus.OPEN, ForecastBucket.COMMIT)
    if _has_word(fs, "best"):
        return Classification(DealStatus.OPEN, ForecastBucket.BEST_CASE)
    return Classification(DealStatus.OPEN, ForecastBucket.PIPELINE)


def classify(deal: Deal) -> Classification:
    """Classify a deal; depends only on its raw stage text."""
    return classify_stage(deal.raw_stage_text)


def closes_in(deal: Deal, period: QuotaPeriod) -> bool:
    """In-quarter test for quarter-scoped aggregates; undated deals never qualify."""
    return period.contains(deal.close_date)


def created_in(deal: Deal, period: QuotaPeriod) -> bool:
    """Created-in-quarter test, independent of close date."""
    return period.contains(deal.create_date)


def age_days(deal: Deal, period: QuotaPeriod, today: date) -> Optional[int]:
    """Age of an active deal, capped at the quarter end."""
    if deal.create_date is None:
        return None
    as_of = min(today, period.period_end)
    return max(0, (as_of - deal.create_date).days)
