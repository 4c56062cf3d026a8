"""
Unit tests for direct vs partner scoring and the Channel Efficiency Index.
"""
import pytest
from datetime import date, datetime
from forecast_engine.engine.channel import (
    MotionStats,
    cei_index,
    cei_raw,
    compute_channel_scorecard,
    quality_multiplier,
    revenue_mix,
    revenue_velocity,
)
from forecast_engine.engine.deal import Motion
from forecast_engine.engine.rules import RuleSet, annotate_deals
from factories import ORG_ID, make_deal, make_period

CLOSE = date(2025, 5, 1)
DIRECT_CREATE = datetime(2025, 1, 21)   # 100 days before CLOSE
PARTNER_CREATE = datetime(2025, 2, 10)  # 80 days before CLOSE


def scored(deals):
    return annotate_deals(deals, RuleSet(ORG_ID))


def closed(deal_id, stage, amount, create_ts, partner=None, **kwargs):
    return make_deal(
        deal_id, raw_stage_text=stage, amount=amount, create_ts=create_ts,
        close_date=CLOSE, partner_name=partner, **kwargs
    )


@pytest.fixture
def baseline_deals():
    """Direct: won 200k, 50% win rate, 100d. Partner: won 150k, 60% win rate, 80d."""
    return scored([
        closed(1, "Closed Won", 200000, DIRECT_CREATE),
        closed(2, "Closed Lost", 50000, DIRECT_CREATE),
        closed(3, "Closed Won", 50000, PARTNER_CREATE, partner="Acme"),
        closed(4, "Closed Won", 50000, PARTNER_CREATE, partner="ACME "),
        closed(5, "Closed Lost", 20000, PARTNER_CREATE, partner="acme"),
        closed(6, "Closed Won", 50000, PARTNER_CREATE, partner="Beta"),
        closed(7, "Closed Lost", 10000, PARTNER_CREATE, partner="Beta"),
        # ignored: open, closed without outcome, outside the quarter
        closed(8, "Commit", 70000, DIRECT_CREATE),
        closed(9, "Closed", 70000, DIRECT_CREATE),
        make_deal(10, raw_stage_text="Closed Won", amount=90000, close_date=date(2025, 7, 2)),
    ])


class TestScorecard:

    @pytest.mark.unit
    def test_motion_stats(self, baseline_deals):
        card = compute_channel_scorecard(baseline_deals, make_period())

        assert card.direct.opps == 2
        assert card.direct.won_amount == 200000
        assert card.direct.win_rate == pytest.approx(0.5)
        assert card.direct.avg_cycle_days == pytest.approx(100)
        assert card.direct.aov == pytest.approx(200000)
        assert card.direct.avg_health_score is None

        assert card.partner.opps == 5
        assert card.partner.won_amount == 150000
        assert card.partner.win_rate == pytest.approx(0.6)
        assert card.partner.avg_cycle_days == pytest.approx(80)
        assert card.partner.aov == pytest.approx(50000)
        assert card.partner.closed_amount == 180000

    @pytest.mark.unit
    def test_cei_baseline(self, baseline_deals):
        card = compute_channel_scorecard(baseline_deals, make_period())

        assert revenue_velocity(card.direct) == pytest.approx(2000)
        assert quality_multiplier(card.direct) == pytest.approx(0.5)
        assert card.direct.cei_raw == pytest.approx(1000)
        assert card.direct.cei_index == pytest.approx(100)
        assert revenue_velocity(card.partner) == pytest.approx(1875)
        assert card.partner.cei_raw == pytest.approx(1125)
        assert card.partner_cei_index == pytest.approx(112.5)

    @pytest.mark.unit
    def test_revenue_mix(self, baseline_deals):
        card = compute_channel_scorecard(baseline_deals, make_period())
        assert card.revenue_mix_partner == pytest.approx(150000 / 350000)

    @pytest.mark.unit
    def test_partners_grouped_by_name_key(self, baseline_deals):
        card = compute_channel_scorecard(baseline_deals, make_period())

        assert [p.name for p in card.partners] == ["Acme", "Beta"]
        acme = card.partners[0]
        assert acme.opps == 3
        assert acme.won_amount == 100000
        assert acme.cei_index == pytest.approx((100000 / 80) * (2 / 3) / 1000 * 100)

    @pytest.mark.unit
    def test_partners_showing_promise(self, baseline_deals):
        card = compute_channel_scorecard(baseline_deals, make_period())

        assert [p.partner for p in card.promising_partners] == ["Acme"]
        assert card.promising_partners[0].cycle_delta_days == pytest.approx(-20)

    @pytest.mark.unit
    def test_promise_ranking_fastest_first(self, baseline_deals):
        slow = scored([
            closed(20, "Closed Won", 900000, datetime(2025, 1, 1), partner="Slowpoke"),
            closed(21, "Closed Won", 900000, datetime(2025, 1, 1), partner="Slowpoke"),
        ])
        card = compute_channel_scorecard(baseline_deals + slow, make_period(), promise_min_closed=2)
        names = [p.partner for p in card.promising_partners]
        assert names[-1] == "Slowpoke"
        # equal 80-day cycles: larger won amount first
        assert names[:2] == ["Acme", "Beta"]

    @pytest.mark.unit
    def test_missing_direct_motion_degrades(self):
        deals = scored([closed(1, "Closed Won", 1000, PARTNER_CREATE, partner="Acme")])
        card = compute_channel_scorecard(deals, make_period())

        assert card.direct.opps == 0
        assert card.direct.win_rate is None
        assert card.direct.cei_raw is None
        assert card.partner.win_rate == 1.0
        assert card.partner_cei_index is None
        assert card.revenue_mix_partner == 1.0

    @pytest.mark.unit
    def test_no_deals(self):
        card = compute_channel_scorecard([], make_period())
        assert card.revenue_mix_partner is None
        assert card.partners == []
        assert card.promising_partners == []

    @pytest.mark.unit
    def test_zero_health_is_unscored(self):
        deals = scored([
            closed(1, "Closed Won", 1000, DIRECT_CREATE, health_score=20),
            closed(2, "Closed Won", 1000, DIRECT_CREATE, health_score=0),
        ])
        card = compute_channel_scorecard(deals, make_period())

        assert card.direct.avg_health_score == pytest.approx(20)

    @pytest.mark.unit
    def test_negative_amount_counts_as_zero(self):
        deals = scored([
            closed(1, "Closed Won", -500, DIRECT_CREATE),
            closed(2, "Closed Won", 1000, DIRECT_CREATE),
        ])
        card = compute_channel_scorecard(deals, make_period())

        assert card.direct.won_amount == 1000


class TestCeiMath:

    @pytest.mark.unit
    def test_quality_uses_health_when_present(self):
        stats = MotionStats(name=Motion.DIRECT.value, win_rate=0.5, avg_health_score=15)
        assert quality_multiplier(stats, health_max=30) == pytest.approx(0.25)

    @pytest.mark.unit
    def test_velocity_zero_without_cycle(self):
        stats = MotionStats(name="direct", won_amount=1000, avg_cycle_days=None)
        assert revenue_velocity(stats) == 0.0
        stats.avg_cycle_days = 0
        assert revenue_velocity(stats) == 0.0

    @pytest.mark.unit
    def test_index_null_without_baseline(self):
        assert cei_index(500, 0) is None
        assert cei_index(500, None) is None
        assert cei_index(500, 250) == pytest.approx(200)

    @pytest.mark.unit
    def test_cei_raw_no_win_rate(self):
        assert cei_raw(MotionStats(name="partner")) == 0.0

    @pytest.mark.unit
    def test_revenue_mix_null_when_nothing_won(self):
        assert revenue_mix(0, 0) is None
