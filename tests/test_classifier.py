"""
Unit tests for free-text stage classification.
"""
import pytest
from datetime import date, datetime
from forecast_engine.core.schemas import DealStatus, ForecastBucket
from forecast_engine.engine.classifier import (
    classify,
    classify_stage,
    normalize_stage,
    closes_in,
    created_in,
    age_days,
)
from factories import make_deal, make_period


@pytest.mark.unit
def test_normalize_stage_pads_words():
    assert normalize_stage("Best Case - Upside") == " best case upside "
    assert normalize_stage(None) == "  "
    assert normalize_stage("3. Commit!!") == " commit "


@pytest.mark.unit
@pytest.mark.parametrize("stage,status,bucket", [
    ("Closed Won", DealStatus.WON, None),
    ("won", DealStatus.WON, None),
    ("Closed Lost", DealStatus.LOST, None),
    ("Closed - Loss", DealStatus.LOST, None),
    ("Closed", DealStatus.CLOSED, None),
    ("Commit", DealStatus.OPEN, ForecastBucket.COMMIT),
    ("Forecast: COMMIT", DealStatus.OPEN, ForecastBucket.COMMIT),
    ("Best Case - Upside", DealStatus.OPEN, ForecastBucket.BEST_CASE),
    ("Pipeline", DealStatus.OPEN, ForecastBucket.PIPELINE),
    ("Omitted", DealStatus.OPEN, ForecastBucket.PIPELINE),
    ("", DealStatus.OPEN, ForecastBucket.PIPELINE),
    (None, DealStatus.OPEN, ForecastBucket.PIPELINE),
])
def test_classify_stage(stage, status, bucket):
    c = classify_stage(stage)
    assert c.status == status
    assert c.bucket == bucket


@pytest.mark.unit
def test_precedence_won_over_lost_and_commit():
    assert classify_stage("Commit - Won").status == DealStatus.WON
    assert classify_stage("Lost commit").status == DealStatus.LOST
    assert classify_stage("Closed commit").status == DealStatus.CLOSED


@pytest.mark.unit
@pytest.mark.parametrize("stage", ["recommitment", "Uncommitted", "bestow", "wonder", "glossy"])
def test_whole_word_matching(stage):
    """Keywords embedded in longer words never match."""
    c = classify_stage(stage)
    assert c.status == DealStatus.OPEN
    assert c.bucket == ForecastBucket.PIPELINE


@pytest.mark.unit
def test_classify_depends_only_on_stage_text():
    a = make_deal(1, amount=10, raw_stage_text="Commit", health_score=5)
    b = make_deal(2, amount=99, raw_stage_text="Commit", partner_name="P")
    assert classify(a) == classify(b)
    assert classify(a) == classify(a)


@pytest.mark.unit
def test_classification_flags():
    won = classify_stage("Closed Won")
    closed = classify_stage("Closed")
    open_ = classify_stage("Commit")

    assert won.is_won and won.is_closed and not won.is_open
    assert closed.is_closed and not closed.is_won and not closed.is_lost
    assert open_.is_open and not open_.is_closed


@pytest.mark.unit
def test_quarter_windows_inclusive():
    period = make_period()

    assert closes_in(make_deal(close_date=date(2025, 4, 1)), period)
    assert closes_in(make_deal(close_date=date(2025, 6, 30)), period)
    assert not closes_in(make_deal(close_date=date(2025, 7, 1)), period)
    assert not closes_in(make_deal(close_date=None), period)

    created = make_deal(create_ts=datetime(2025, 4, 10, 12), close_date=None)
    assert created_in(created, period)
    assert not created_in(make_deal(create_ts=None), period)


@pytest.mark.unit
def test_age_capped_at_period_end():
    period = make_period()
    deal = make_deal(create_ts=datetime(2025, 6, 1))

    assert age_days(deal, period, today=date(2025, 6, 11)) == 10
    assert age_days(deal, period, today=date(2025, 12, 31)) == 29
    assert age_days(make_deal(create_ts=None), period, today=date(2025, 6, 11)) is None
