"""
Sanity check of a reconciled ARV against the property's own sales and the
area's appreciation. Every finding is a warning on the result; nothing here
raises.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import List, Optional, Sequence

from ..core.utils import years_between
from ..data.base import AreaTrend, PriceEvent
from .reconciliation import ReconciledValuation

logger = logging.getLogger(__name__)

FLIP_HOLDING_YEARS = 2.0
FLIP_GAIN = 0.20
MEDIAN_MULTIPLE = 1.5


class MarketTrend(str, Enum):
    HOT = "hot"
    RISING = "rising"
    STABLE = "stable"
    DECLINING = "declining"


@dataclass
class SalePattern:
    classification: str                 # flip | long-term | insufficient-history
    sale_count: int = 0
    average_holding_years: Optional[float] = None
    short_holds: int = 0
    max_flip_gain: Optional[float] = None


@dataclass
class ValidationResult:
    is_valid: bool
    deviation: Optional[float] = None
    historical_arv: Optional[float] = None
    market_trend: Optional[MarketTrend] = None
    appreciation_rate: Optional[float] = None
    warnings: List[str] = field(default_factory=list)
    skipped: bool = False
    skip_reason: Optional[str] = None
    sale_pattern: Optional[SalePattern] = None


def classify_trend(one_year_change: float) -> MarketTrend:
    if one_year_change > 5:
        return MarketTrend.HOT
    if one_year_change > 2:
        return MarketTrend.RISING
    if one_year_change < -2:
        return MarketTrend.DECLINING
    return MarketTrend.STABLE


def annual_change(trend: AreaTrend) -> Optional[float]:
    """Yearly percent change, annualizing the five-year window when that is all we have."""
    if trend.one_year_change is not None:
        return trend.one_year_change
    if trend.five_year_change is not None:
        return ((1 + trend.five_year_change / 100) ** (1 / 5) - 1) * 100
    return None


def sales_of(history: Sequence[PriceEvent]) -> List[PriceEvent]:
    events = sorted((e for e in history if e.price > 0), key=lambda e: e.date)
    sales = [e for e in events if e.is_sale]
    return sales or events


def classify_sales(sales: Sequence[PriceEvent]) -> SalePattern:
    if len(sales) < 2:
        return SalePattern("insufficient-history", sale_count=len(sales))
    holds = []
    short = 0
    max_gain = None
    for prev, curr in zip(sales, sales[1:]):
        years = years_between(prev.date, curr.date)
        holds.append(years)
        if years < FLIP_HOLDING_YEARS:
            short += 1
            gain = (curr.price - prev.price) / prev.price
            max_gain = gain if max_gain is None else max(max_gain, gain)
    avg = sum(holds) / len(holds)
    return SalePattern(
        classification="flip" if avg < FLIP_HOLDING_YEARS else "long-term",
        sale_count=len(sales),
        average_holding_years=round(avg, 2),
        short_holds=short,
        max_flip_gain=round(max_gain, 4) if max_gain is not None else None,
    )


def skipped(reason: str) -> ValidationResult:
    """Result for a valuation that was never checked (override, minimal depth)."""
    return HistoricalValidator._skip(ValidationResult(is_valid=False), reason)


class HistoricalValidator:
    def __init__(self, threshold: float = 0.15):
        self.threshold = threshold

    def validate(
        self,
        valuation: ReconciledValuation,
        price_history: Optional[Sequence[PriceEvent]],
        area_trend: Optional[AreaTrend],
        as_of: Optional[date] = None,
    ) -> ValidationResult:
        as_of = as_of or date.today()
        result = ValidationResult(is_valid=False)
        sales = sales_of(price_history or [])

        if sales:
            result.sale_pattern = classify_sales(sales)
            self._sale_pattern_warnings(result)

        change = annual_change(area_trend) if area_trend is not None else None
        if change is not None:
            result.market_trend = classify_trend(change)
            result.appreciation_rate = round(change / 100, 4)
            if result.market_trend is MarketTrend.DECLINING:
                result.warnings.append(
                    f"Declining market ({change:.1f}%/yr): the ARV assumes values hold through the resale"
                )

        if valuation.arv is None:
            return self._skip(result, "no reconciled ARV to validate")
        if area_trend is not None and area_trend.median_value and valuation.arv > MEDIAN_MULTIPLE * area_trend.median_value:
            result.warnings.append(
                f"ARV ${valuation.arv:,.0f} is more than {MEDIAN_MULTIPLE}x the area median "
                f"(${area_trend.median_value:,.0f})"
            )
        if not sales:
            return self._skip(result, "no price history for this property")
        if change is None:
            return self._skip(result, "no area trend data")

        last = sales[-1]
        held = max(years_between(last.date, as_of), 0.0)
        projected = last.price * (1 + change / 100) ** held
        deviation = (valuation.arv - projected) / projected
        result.historical_arv = round(projected)
        result.deviation = round(deviation, 4)
        result.is_valid = abs(deviation) < self.threshold

        if not result.is_valid:
            result.warnings.append(
                f"ARV deviates {deviation * 100:+.1f}% from the historical projection of ${projected:,.0f} "
                f"(threshold {self.threshold * 100:.0f}%)"
            )
        elif result.market_trend is MarketTrend.HOT and deviation > self.threshold / 2:
            result.warnings.append(
                f"Hot market: ARV is {deviation * 100:.1f}% above the historical projection; "
                "verify comps are not peak-of-market outliers"
            )
        logger.debug("Validated ARV %s against projection %.0f (deviation %.4f)", valuation.arv, projected, deviation)
        return result

    @staticmethod
    def _sale_pattern_warnings(result: ValidationResult) -> None:
        pattern = result.sale_pattern
        if pattern.max_flip_gain is not None and pattern.max_flip_gain > FLIP_GAIN:
            result.warnings.append(
                f"Flip pattern: resold within {FLIP_HOLDING_YEARS:.0f} years at a "
                f"{pattern.max_flip_gain * 100:.0f}% gain"
            )
        if pattern.short_holds > 2:
            result.warnings.append(f"Repeated flips: {pattern.short_holds} short holding periods in the sale history")

    @staticmethod
    def _skip(result: ValidationResult, reason: str) -> ValidationResult:
        result.skipped = True
        result.is_valid = False
        result.skip_reason = reason
        result.warnings.append(f"Historical validation skipped: {reason}")
        return result
