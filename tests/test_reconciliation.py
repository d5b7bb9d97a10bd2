"""
Reconciliation engine: weighting, confidence and the comps-based value.
"""

from datetime import timedelta

import pytest

from arv_engine.core.config import Settings
from arv_engine.data.base import Condition, Estimate, LocationData, PropertyDetail
from arv_engine.services.reconciliation import (
    ReconciliationEngine, confidence_from_dispersion, location_adjustment,
)

from conftest import make_comp, six_comps


@pytest.fixture
def engine():
    cfg = Settings()
    return ReconciliationEngine(cfg.RECONCILIATION_WEIGHTS, default_estimate_weight=cfg.DEFAULT_ESTIMATE_WEIGHT)


class TestConfidence:
    def test_low_dispersion_is_full_confidence(self):
        assert confidence_from_dispersion(0.0) == 100
        assert confidence_from_dispersion(0.05) == 100

    def test_floor_at_fifty(self):
        assert confidence_from_dispersion(0.20) == 50
        assert confidence_from_dispersion(0.9) == 50

    def test_strictly_decreasing_between_bounds(self):
        scores = [confidence_from_dispersion(cv) for cv in (0.06, 0.10, 0.14, 0.18)]
        assert scores == sorted(scores, reverse=True)
        assert len(set(scores)) == len(scores)

    def test_monotonic_over_source_sets(self, engine):
        mean = 800_000
        sets = [
            [mean, mean, mean],
            [mean - 60_000, mean, mean + 60_000],
            [mean - 200_000, mean, mean + 200_000],
        ]
        scores = []
        for values in sets:
            estimates = [Estimate(pid, v) for pid, v in zip(("premium", "search", "listing"), values)]
            scores.append(engine.reconcile([], estimates).confidence_score)
        assert scores[0] == 100
        assert scores[0] >= scores[1] >= scores[2]
        assert scores[2] < scores[0]


class TestWeights:
    def test_missing_estimate_weight_is_redistributed(self, engine):
        comps = [make_comp(500_000)] * 3
        full = engine.reconcile(comps, [Estimate("premium", 600_000), Estimate("search", 600_000)])
        partial = engine.reconcile(comps, [Estimate("premium", 600_000)])

        full_w = {s.source_provider_id: s.weight for s in full.sources}
        part_w = {s.source_provider_id: s.weight for s in partial.sources}
        assert full_w == {"comps": 0.5, "premium": 0.25, "search": 0.25}
        assert part_w["premium"] > full_w["premium"]
        assert sum(part_w.values()) == pytest.approx(1.0)
        assert part_w == {"comps": pytest.approx(0.6667, abs=1e-4), "premium": pytest.approx(0.3333, abs=1e-4)}

    def test_single_source_takes_all_weight(self, engine):
        result = engine.reconcile([], [Estimate("search", 710_000)])
        assert result.arv == 710_000
        assert result.sources[0].weight == 1.0
        assert result.confidence_score == 100

    def test_unconfigured_source_uses_default_weight(self, engine):
        result = engine.reconcile([], [Estimate("premium", 500_000), Estimate("county", 500_000)])
        weights = {s.source_provider_id: s.weight for s in result.sources}
        assert weights["county"] == pytest.approx(0.10 / 0.35, abs=1e-4)

    def test_duplicate_source_counts_once(self, engine):
        result = engine.reconcile([], [Estimate("premium", 500_000), Estimate("premium", 900_000)])
        assert len(result.sources) == 1
        assert result.arv == 500_000

    def test_no_sources_is_insufficient_data(self, engine):
        result = engine.reconcile([], [])
        assert result.arv is None
        assert result.insufficient_data
        assert result.confidence_score == 0
        assert "Insufficient data" in result.methodology


class TestCompsValue:
    def test_three_remodeled_comps_set_the_value(self, engine):
        comps = six_comps()
        result = engine.reconcile(comps, [])
        prices_u = [c.price for c in comps if c.condition is Condition.UNREMODELED]
        prices_r = [c.price for c in comps if c.condition is Condition.REMODELED]
        assert min(prices_u) <= result.arv <= max(prices_r)
        assert result.arv == 500_000
        assert "remodeled" in result.methodology

    def test_renovation_premium_is_capped(self, engine):
        comps = [
            make_comp(400_000, Condition.UNREMODELED),
            make_comp(400_000, Condition.UNREMODELED),
            make_comp(600_000, Condition.REMODELED),
        ]
        value, note, used = engine.comps_value(comps)
        assert value == pytest.approx(500_000)
        assert used == 3
        assert "capped at 25%" in note

    def test_mixed_pair_below_cap_uses_observed_premium(self, engine):
        comps = [make_comp(400_000, Condition.UNREMODELED), make_comp(440_000, Condition.REMODELED)]
        value, _, _ = engine.comps_value(comps)
        assert value == pytest.approx(440_000)

    def test_unremodeled_only_gets_default_premium(self, engine):
        comps = [make_comp(400_000, Condition.UNREMODELED)] * 3
        value, _, _ = engine.comps_value(comps)
        assert value == pytest.approx(500_000)

    def test_unknown_condition_gets_smaller_premium(self, engine):
        comps = [make_comp(400_000)] * 3
        value, _, _ = engine.comps_value(comps)
        assert value == pytest.approx(480_000)

    def test_stale_comps_are_dropped(self, engine, today):
        comps = [
            make_comp(400_000, Condition.REMODELED, sale_date=today - timedelta(days=3 * 365)),
            make_comp(600_000, Condition.REMODELED, sale_date=today - timedelta(days=60)),
        ]
        value, _, used = engine.comps_value(comps, as_of=today)
        assert used == 1
        assert value == pytest.approx(600_000)

    def test_closer_and_fresher_comps_weigh_more(self, engine, today):
        near = make_comp(500_000, Condition.REMODELED, distance=0.1, sale_date=today - timedelta(days=20))
        far = make_comp(600_000, Condition.REMODELED, distance=3.0, sale_date=today - timedelta(days=500))
        mid = make_comp(550_000, Condition.REMODELED, distance=1.0, sale_date=today - timedelta(days=100))
        value, _, _ = engine.comps_value([near, far, mid], as_of=today)
        assert value < 550_000

    def test_similarity_filter_applies_when_three_remain(self, engine):
        subject = PropertyDetail("premium", beds=3, baths=2, sqft=1500)
        similar = [make_comp(500_000, Condition.REMODELED, sqft=1450 + i * 50) for i in range(3)]
        mansion = make_comp(2_000_000, Condition.REMODELED, sqft=5000, beds=6)
        value, _, used = engine.comps_value(similar + [mansion], subject=subject)
        assert used == 3
        assert value == pytest.approx(500_000)

    def test_similarity_filter_skipped_when_too_few_remain(self, engine):
        subject = PropertyDetail("premium", beds=3, baths=2, sqft=1500)
        comps = [make_comp(500_000, sqft=1500), make_comp(500_000, sqft=4000)]
        _, _, used = engine.comps_value(comps, subject=subject)
        assert used == 2


class TestLocation:
    def test_adjustment_table(self):
        assert location_adjustment(LocationData("search", school_rating=8.5, walk_score=75, noise_score=40)) \
            == pytest.approx(0.23)
        assert location_adjustment(LocationData("search", school_rating=3, walk_score=20, noise_score=80)) \
            == pytest.approx(-0.11)
        assert location_adjustment(LocationData("search")) == 0.0

    def test_adjusted_arv_is_reported_beside_the_reconciled_one(self, engine):
        result = engine.reconcile([], [Estimate("premium", 500_000)])
        adjusted = engine.apply_location(result, LocationData("search", school_rating=6.5))
        assert adjusted.arv == 500_000
        assert adjusted.location_adjusted_arv == 525_000
        assert adjusted.location_adjustment_pct == 5.0

    def test_no_adjustment_without_arv(self, engine):
        empty = engine.reconcile([], [])
        assert engine.apply_location(empty, LocationData("search", school_rating=9)) is empty


def test_range_brackets_the_arv(engine):
    result = engine.reconcile([], [Estimate("premium", 700_000), Estimate("search", 900_000)])
    assert result.arv == 800_000
    assert result.range_low == 700_000
    assert result.range_high == 900_000
