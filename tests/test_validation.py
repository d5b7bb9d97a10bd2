"""
Historical validator: projection, deviation threshold, sale pattern, trend.
"""

from datetime import date

import pytest

from arv_engine.data.base import AreaTrend, PriceEvent
from arv_engine.services.reconciliation import ReconciledValuation
from arv_engine.services.validation import (
    HistoricalValidator, MarketTrend, classify_sales, classify_trend, sales_of, skipped,
)


def valuation(arv):
    return ReconciledValuation(arv=arv, confidence_score=90 if arv else 0)


def trend(one_year=0.0, median=None, five_year=None):
    return AreaTrend("premium", one_year_change=one_year, five_year_change=five_year, median_value=median)


@pytest.fixture
def validator():
    return HistoricalValidator(threshold=0.15)


class TestDeviation:
    def test_fifteen_percent_over_projection_is_invalid(self, validator):
        sold = date(2026, 2, 1)
        result = validator.validate(valuation(920_000), [PriceEvent(sold, 800_000)], trend(0.0), as_of=sold)

        assert result.is_valid is False
        assert result.historical_arv == 800_000
        assert result.deviation == pytest.approx(0.15)
        assert len(result.warnings) == 1
        assert "15%" in result.warnings[0]
        assert not result.skipped

    def test_within_band_is_valid(self, validator):
        sold = date(2026, 2, 1)
        result = validator.validate(valuation(880_000), [PriceEvent(sold, 800_000)], trend(1.0), as_of=sold)
        assert result.is_valid
        assert result.deviation == pytest.approx(0.10)
        assert result.market_trend is MarketTrend.STABLE
        assert result.warnings == []

    def test_negative_deviation_is_flagged_too(self, validator):
        sold = date(2026, 2, 1)
        result = validator.validate(valuation(600_000), [PriceEvent(sold, 800_000)], trend(0.0), as_of=sold)
        assert not result.is_valid
        assert result.deviation == pytest.approx(-0.25)

    def test_projection_compounds_area_appreciation(self, validator):
        history = [PriceEvent(date(2020, 1, 1), 400_000), PriceEvent(date(2024, 1, 1), 500_000)]
        result = validator.validate(valuation(550_000), history, trend(5.0), as_of=date(2026, 1, 1))
        years = (date(2026, 1, 1) - date(2024, 1, 1)).days / 365.25
        assert result.historical_arv == round(500_000 * 1.05 ** years)
        assert result.appreciation_rate == 0.05
        assert result.market_trend is MarketTrend.RISING
        assert result.is_valid

    def test_five_year_change_is_annualized_when_one_year_is_missing(self, validator):
        sold = date(2025, 1, 1)
        result = validator.validate(valuation(500_000), [PriceEvent(sold, 500_000)],
                                    AreaTrend("premium", five_year_change=27.6), as_of=sold)
        assert result.appreciation_rate == pytest.approx(0.05, abs=1e-3)


class TestSalePattern:
    def test_quick_resale_with_big_gain_is_a_flip(self, validator):
        history = [
            PriceEvent(date(2022, 1, 15), 400_000),
            PriceEvent(date(2023, 3, 15), 520_000),  # 14 months later, +30%
        ]
        result = validator.validate(valuation(540_000), history, trend(1.0), as_of=date(2023, 6, 1))

        assert result.sale_pattern.classification == "flip"
        assert result.sale_pattern.short_holds == 1
        assert result.sale_pattern.max_flip_gain == pytest.approx(0.30)
        flip_warnings = [w for w in result.warnings if w.startswith("Flip pattern")]
        assert len(flip_warnings) == 1
        assert all("threshold" not in w for w in flip_warnings)

    def test_flip_pattern_is_reported_alongside_deviation_warning(self, validator):
        history = [PriceEvent(date(2022, 1, 15), 400_000), PriceEvent(date(2023, 3, 15), 520_000)]
        result = validator.validate(valuation(800_000), history, trend(0.0), as_of=date(2023, 3, 15))
        assert not result.is_valid
        assert any("threshold 15%" in w for w in result.warnings)
        assert any(w.startswith("Flip pattern") for w in result.warnings)
        assert len(result.warnings) == 2

    def test_long_hold_is_long_term(self):
        pattern = classify_sales([PriceEvent(date(2010, 5, 1), 300_000), PriceEvent(date(2018, 5, 1), 500_000)])
        assert pattern.classification == "long-term"
        assert pattern.short_holds == 0
        assert pattern.max_flip_gain is None

    def test_single_sale_is_insufficient_history(self):
        assert classify_sales([PriceEvent(date(2010, 5, 1), 300_000)]).classification == "insufficient-history"

    def test_repeated_flips_warn(self, validator):
        history = [
            PriceEvent(date(2019, 1, 1), 300_000),
            PriceEvent(date(2020, 1, 1), 310_000),
            PriceEvent(date(2021, 1, 1), 320_000),
            PriceEvent(date(2022, 1, 1), 330_000),
        ]
        result = validator.validate(valuation(330_000), history, trend(0.0), as_of=date(2022, 1, 1))
        assert result.sale_pattern.short_holds == 3
        assert any(w.startswith("Repeated flips") for w in result.warnings)
        assert not any(w.startswith("Flip pattern") for w in result.warnings)

    def test_listing_events_do_not_count_as_sales(self):
        sales = sales_of([
            PriceEvent(date(2024, 1, 1), 400_000, "Sold"),
            PriceEvent(date(2020, 6, 1), 450_000, "Listed for sale"),
            PriceEvent(date(2020, 1, 1), 300_000, "Sold"),
        ])
        assert [s.price for s in sales] == [300_000, 400_000]
        assert classify_sales(sales).classification == "long-term"


class TestTrend:
    @pytest.mark.parametrize("change,expected", [
        (8.0, MarketTrend.HOT),
        (3.5, MarketTrend.RISING),
        (0.0, MarketTrend.STABLE),
        (-2.0, MarketTrend.STABLE),
        (-4.0, MarketTrend.DECLINING),
    ])
    def test_classification(self, change, expected):
        assert classify_trend(change) is expected

    def test_declining_market_warns_inside_the_band(self, validator):
        sold = date(2026, 2, 1)
        result = validator.validate(valuation(810_000), [PriceEvent(sold, 800_000)], trend(-4.0), as_of=sold)
        assert result.is_valid
        assert len(result.warnings) == 1
        assert result.warnings[0].startswith("Declining market")

    def test_hot_market_warns_above_half_the_threshold(self, validator):
        sold = date(2026, 2, 1)
        result = validator.validate(valuation(880_000), [PriceEvent(sold, 800_000)], trend(9.0), as_of=sold)
        assert result.is_valid
        assert any(w.startswith("Hot market") for w in result.warnings)

    def test_arv_far_above_area_median_warns(self, validator):
        sold = date(2026, 2, 1)
        result = validator.validate(valuation(800_000), [PriceEvent(sold, 800_000)],
                                    trend(0.0, median=500_000), as_of=sold)
        assert result.is_valid
        assert any("area median" in w for w in result.warnings)


class TestSkipped:
    def test_missing_history_is_skipped_not_valid(self, validator):
        result = validator.validate(valuation(800_000), [], trend(3.0))
        assert result.skipped
        assert result.is_valid is False
        assert result.skip_reason == "no price history for this property"
        assert result.market_trend is MarketTrend.RISING
        assert any("skipped" in w for w in result.warnings)

    def test_missing_trend_still_classifies_sales(self, validator):
        history = [PriceEvent(date(2022, 1, 15), 400_000), PriceEvent(date(2023, 3, 15), 520_000)]
        result = validator.validate(valuation(800_000), history, None)
        assert result.skipped
        assert result.skip_reason == "no area trend data"
        assert result.sale_pattern.classification == "flip"
        assert result.deviation is None

    def test_no_arv_is_skipped(self, validator):
        result = validator.validate(valuation(None), [PriceEvent(date(2022, 1, 1), 1)], trend())
        assert result.skipped
        assert result.skip_reason == "no reconciled ARV to validate"

    def test_explicit_skip(self):
        result = skipped("user-supplied override")
        assert result.skipped and not result.is_valid
        assert result.warnings == ["Historical validation skipped: user-supplied override"]
