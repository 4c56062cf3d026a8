"""
Unit tests for coverage, QoQ and created-pipeline cohorts.
"""
import pytest
from datetime import date, datetime
from forecast_engine.core.schemas import ForecastBucket
from forecast_engine.engine.forecast import compute_bucket_totals, in_quarter
from forecast_engine.engine.momentum import (
    CoverageTier,
    compare_created_cohorts,
    compute_created_cohort,
    compute_pipeline_momentum,
    coverage_ratio,
    coverage_tier,
    health_pct,
    momentum_insight,
    qoq_change,
)
from forecast_engine.engine.rules import RuleSet, annotate_deals
from factories import ORG_ID, Q1, make_deal, make_period

C, B, P = ForecastBucket.COMMIT, ForecastBucket.BEST_CASE, ForecastBucket.PIPELINE

TODAY = date(2025, 5, 31)


def scored(deals):
    return annotate_deals(deals, RuleSet(ORG_ID))


class TestRatios:

    @pytest.mark.unit
    def test_coverage_ratio(self):
        assert coverage_ratio(300, 200, 100) == pytest.approx(3.0)
        assert coverage_ratio(100, 0, 0) is None
        assert coverage_ratio(100, 50, 80) is None

    @pytest.mark.unit
    @pytest.mark.parametrize("ratio,tier", [
        (None, CoverageTier.UNKNOWN),
        (0.0, CoverageTier.AT_RISK),
        (2.99, CoverageTier.AT_RISK),
        (3.0, CoverageTier.WATCH),
        (3.49, CoverageTier.WATCH),
        (3.5, CoverageTier.HEALTHY),
        (10.0, CoverageTier.HEALTHY),
    ])
    def test_coverage_tier(self, ratio, tier):
        assert coverage_tier(ratio) == tier

    @pytest.mark.unit
    def test_coverage_tier_configurable(self):
        assert coverage_tier(3.55, at_risk_below=3.0, healthy_at=3.6) == CoverageTier.WATCH

    @pytest.mark.unit
    def test_qoq_change(self):
        assert qoq_change(110, 100) == pytest.approx(0.10)
        assert qoq_change(92, 100) == pytest.approx(-0.08)
        assert qoq_change(50, 0) is None
        assert qoq_change(50, None) is None

    @pytest.mark.unit
    def test_health_pct(self):
        assert health_pct(15, 30) == 50
        assert health_pct(45, 30) == 100
        assert health_pct(None) is None
        assert health_pct(0) is None


class TestPipelineMomentum:

    def _totals(self, commit, best, pipeline, won=0):
        deals = [
            make_deal(1, amount=commit, raw_stage_text="Commit"),
            make_deal(2, amount=best, raw_stage_text="Best Case"),
            make_deal(3, amount=pipeline, raw_stage_text="Pipeline"),
            make_deal(4, amount=won, raw_stage_text="Closed Won"),
        ]
        return compute_bucket_totals(scored(deals))

    @pytest.mark.unit
    def test_mix_and_qoq(self):
        current = self._totals(120, 50, 80, won=100)
        previous = self._totals(100, 50, 100)

        m = compute_pipeline_momentum(current, previous, quota=200)
        assert m.total_pipeline == 250
        assert m.previous_total_pipeline == 250
        assert m.qoq_total_pct == pytest.approx(0.0)
        assert m.mix[C].qoq_change_pct == pytest.approx(0.20)
        assert m.mix[B].qoq_change_pct == pytest.approx(0.0)
        assert m.mix[P].qoq_change_pct == pytest.approx(-0.20)
        assert m.mix_share(C) == pytest.approx(120 / 250)
        assert m.coverage_ratio == pytest.approx(2.5)
        assert m.coverage_tier == CoverageTier.AT_RISK

    @pytest.mark.unit
    def test_without_previous_quarter(self):
        m = compute_pipeline_momentum(self._totals(100, 0, 0), None, quota=0)
        assert m.qoq_total_pct is None
        assert m.mix[C].qoq_change_pct is None
        assert m.coverage_ratio is None
        assert m.coverage_tier == CoverageTier.UNKNOWN

    @pytest.mark.unit
    def test_insight_funnel_slowdown(self):
        m = compute_pipeline_momentum(
            self._totals(120, 50, 80), self._totals(100, 50, 100), quota=200
        )
        text = momentum_insight(m)
        assert "Top-of-funnel momentum is slowing" in text
        assert "down 20%" in text
        assert "below the 3.0x safe zone" in text

    @pytest.mark.unit
    def test_insight_decline_names_worst_tier(self):
        m = compute_pipeline_momentum(
            self._totals(90, 20, 100), self._totals(100, 50, 100), quota=50
        )
        text = momentum_insight(m)
        assert text.startswith("Total pipeline is -16% QoQ")
        assert "largest slowdown in Best Case (-60%)" in text

    @pytest.mark.unit
    def test_insight_growth(self):
        m = compute_pipeline_momentum(
            self._totals(150, 50, 100), self._totals(100, 50, 100), quota=50
        )
        assert "Momentum is improving" in momentum_insight(m)

    @pytest.mark.unit
    def test_insight_without_history(self):
        m = compute_pipeline_momentum(self._totals(100, 0, 0), None, quota=10)
        text = momentum_insight(m)
        assert text.startswith("Pipeline coverage is 10.0x")
        assert "Commit n/a" in text


class TestCreatedCohort:

    @pytest.fixture
    def deals(self):
        return scored([
            # active, created in Q2
            make_deal(1, amount=100, raw_stage_text="Commit", health_score=15,
                      create_ts=datetime(2025, 5, 21), close_date=date(2025, 6, 30), product="Core"),
            make_deal(2, amount=50, raw_stage_text="Pipeline", health_score=30,
                      create_ts=datetime(2025, 4, 1), close_date=date(2025, 9, 30), product="Add-on"),
            make_deal(3, amount=25, raw_stage_text="Best Case",
                      create_ts=datetime(2025, 4, 20), close_date=None),
            # closed in Q2, created in Q2
            make_deal(4, amount=80, raw_stage_text="Closed Won",
                      create_ts=datetime(2025, 4, 5), close_date=date(2025, 5, 1), product="Core"),
            make_deal(5, amount=40, raw_stage_text="Closed Lost",
                      create_ts=datetime(2025, 4, 6), close_date=date(2025, 5, 2)),
            # won after the quarter: still active within Q2
            make_deal(6, amount=10, raw_stage_text="Closed Won",
                      create_ts=datetime(2025, 6, 1), close_date=date(2025, 7, 15), product="Core"),
            # created in Q1
            make_deal(7, amount=999, raw_stage_text="Commit",
                      create_ts=datetime(2025, 2, 1), close_date=date(2025, 5, 1)),
        ])

    @pytest.mark.unit
    def test_active_vs_closed(self, deals):
        cohort = compute_created_cohort(deals, make_period(), TODAY)

        assert cohort.active_amount == 185
        assert cohort.active_opps == 4
        assert cohort.closed_won_amount == 80
        assert cohort.closed_lost_amount == 40
        assert cohort.closed_amount == 120
        assert cohort.all_amount == 305
        assert cohort.all_opps == 6

    @pytest.mark.unit
    def test_bucket_detail(self, deals):
        cohort = compute_created_cohort(deals, make_period(), TODAY)

        assert cohort.buckets[C].amount == 100
        assert cohort.buckets[C].health_pct == 50
        assert cohort.buckets[P].health_pct == 100
        assert cohort.buckets[B].health_pct is None
        # deal 6 is active but outside the open buckets
        assert cohort.mix(C) == pytest.approx(100 / 175)
        assert sum(cohort.mix(b) for b in (C, B, P)) == pytest.approx(1.0)

    @pytest.mark.unit
    def test_age_bands_capped(self, deals):
        cohort = compute_created_cohort(deals, make_period(), TODAY)
        bands = {b.band: b.opps for b in cohort.age_bands}

        # ages as of 5/31: deal 1 = 10, deal 2 = 60, deal 3 = 41, deal 6 = 0
        assert bands == {"0-30": 2, "31-60": 2, "61+": 0}
        assert cohort.avg_age_days == pytest.approx((10 + 60 + 41 + 0) / 4)

    @pytest.mark.unit
    def test_comparison_and_top_products(self, deals):
        current = compute_created_cohort(deals, make_period(), TODAY)
        previous = compute_created_cohort(deals, make_period(1, Q1), TODAY)

        cmp = compare_created_cohorts(current, previous, top_n=2)
        assert previous.active_amount == 999
        assert cmp.qoq_active_amount_pct == pytest.approx((185 - 999) / 999)
        assert cmp.qoq_all_amount_pct == pytest.approx((305 - 999) / 999)
        assert [p.product for p in cmp.top_products] == ["Core", "Add-on"]
        assert cmp.top_products[0].amount == 110
        assert cmp.top_products[0].qoq_amount_pct is None

    @pytest.mark.unit
    def test_comparison_without_previous(self, deals):
        cmp = compare_created_cohorts(compute_created_cohort(deals, make_period(), TODAY), None)
        assert cmp.previous is None
        assert cmp.qoq_active_amount_pct is None
        assert cmp.qoq_all_opps_pct is None

    @pytest.mark.unit
    def test_in_quarter_excludes_created_only(self, deals):
        ids = {sd.deal.id for sd in in_quarter(deals, make_period())}
        assert ids == {1, 4, 5, 7}
