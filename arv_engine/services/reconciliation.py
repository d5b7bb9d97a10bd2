"""
Reconciliation: one ARV out of a comp list and any number of independent
point estimates.

Each contributing value gets a configured weight by source category
("comps" or the provider id of the estimate). Weights of missing sources are
not left unallocated: the present ones are rescaled to sum to 1. Confidence
falls with the coefficient of variation across the contributing values.
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..data.base import Comp, Condition, Estimate, LocationData, PropertyDetail

logger = logging.getLogger(__name__)

COMPS_SOURCE = "comps"


@dataclass
class SourceContribution:
    source_provider_id: str
    value: float
    weight: float


@dataclass
class ReconciledValuation:
    arv: Optional[float]
    confidence_score: int
    sources: List[SourceContribution] = field(default_factory=list)
    methodology: str = ""
    range_low: Optional[float] = None
    range_high: Optional[float] = None
    comps_value: Optional[float] = None
    comps_used: int = 0
    location_adjusted_arv: Optional[float] = None
    location_adjustment_pct: Optional[float] = None

    @property
    def insufficient_data(self) -> bool:
        return self.arv is None


def confidence_from_dispersion(cv: float, low: float = 0.05, high: float = 0.20, floor: int = 50) -> int:
    """100 up to ``low`` CV, then linear down to ``floor`` at ``high`` and flat after."""
    if cv <= low:
        return 100
    score = 100 - (cv - low) / (high - low) * (100 - floor)
    return int(round(max(floor, score)))


def _recency_factor(sale_date: Optional[date], as_of: date) -> float:
    if sale_date is None:
        return 1.0
    months = (as_of - sale_date).days / 30.0
    if months <= 3:
        return 1.0
    if months <= 6:
        return 0.85
    if months <= 12:
        return 0.7
    if months <= 24:
        return 0.5
    return 0.3


def comp_weight(comp: Comp, as_of: date) -> float:
    """Closer, fresher, better-sourced sales count more. Missing signals are neutral."""
    w = _recency_factor(comp.sale_date, as_of)
    if comp.distance is not None and comp.distance >= 0:
        w *= 1.0 / (1.0 + comp.distance)
    w *= max(comp.quality_score, 25) / 100.0
    return w


def weighted_average(comps: Sequence[Comp], as_of: date) -> float:
    prices = np.array([c.price for c in comps], dtype=float)
    weights = np.array([comp_weight(c, as_of) for c in comps], dtype=float)
    if weights.sum() <= 0:
        return float(prices.mean())
    return float(np.average(prices, weights=weights))


def location_adjustment(location: LocationData) -> float:
    """Fractional premium for schools, walkability and noise."""
    adj = 0.0
    if location.school_rating:
        if location.school_rating >= 8:
            adj += 0.15
        elif location.school_rating >= 6:
            adj += 0.05
        elif location.school_rating < 4:
            adj -= 0.05
    if location.walk_score:
        if location.walk_score > 70:
            adj += 0.05
        elif location.walk_score < 30:
            adj -= 0.03
    if location.noise_score:
        if location.noise_score < 50:
            adj += 0.03
        elif location.noise_score > 70:
            adj -= 0.03
    return adj


class ReconciliationEngine:
    def __init__(
        self,
        weights: Dict[str, float],
        default_estimate_weight: float = 0.10,
        premium_cap: float = 0.25,
        default_premium: float = 0.25,
        unknown_condition_premium: float = 0.20,
        max_comp_age_years: float = 2.0,
    ):
        self.weights = dict(weights)
        self.default_estimate_weight = default_estimate_weight
        self.premium_cap = premium_cap
        self.default_premium = default_premium
        self.unknown_condition_premium = unknown_condition_premium
        self.max_comp_age_years = max_comp_age_years

    # ----- comps -----

    def select_comps(self, comps: Sequence[Comp], subject: Optional[PropertyDetail], as_of: date) -> List[Comp]:
        usable = [c for c in comps if c.price > 0]
        cutoff_days = self.max_comp_age_years * 365.25
        recent = [c for c in usable if c.sale_date is None or (as_of - c.sale_date).days <= cutoff_days]
        pool = recent or usable
        if subject is None:
            return pool
        similar = [c for c in pool if self._is_similar(c, subject)]
        return similar if len(similar) >= 3 else pool

    @staticmethod
    def _is_similar(comp: Comp, subject: PropertyDetail) -> bool:
        if subject.sqft and comp.sqft and abs(comp.sqft - subject.sqft) / subject.sqft > 0.2:
            return False
        if subject.beds and comp.beds and abs(comp.beds - subject.beds) > 1:
            return False
        if subject.baths and comp.baths and abs(comp.baths - subject.baths) > 1:
            return False
        return True

    def comps_value(
        self, comps: Sequence[Comp], subject: Optional[PropertyDetail] = None, as_of: Optional[date] = None
    ) -> Tuple[Optional[float], str, int]:
        """After-repair value implied by the comps, with a note on how it was derived."""
        as_of = as_of or date.today()
        pool = self.select_comps(comps, subject, as_of)
        if not pool:
            return None, "no usable comps", 0
        remodeled = [c for c in pool if c.condition is Condition.REMODELED]
        unremodeled = [c for c in pool if c.condition is Condition.UNREMODELED]

        if len(remodeled) >= 3 or (remodeled and len(remodeled) == len(pool)):
            value = weighted_average(remodeled, as_of)
            note = f"weighted average of {len(remodeled)} remodeled comps"
        elif remodeled and unremodeled:
            avg_r = weighted_average(remodeled, as_of)
            avg_u = weighted_average(unremodeled, as_of)
            premium = min(max(avg_r / avg_u - 1, 0.0), self.premium_cap)
            value = avg_u * (1 + premium)
            note = (f"{len(remodeled)} remodeled + {len(unremodeled)} unremodeled comps "
                    f"({premium * 100:.1f}% renovation premium, capped at {self.premium_cap * 100:.0f}%)")
        elif len(unremodeled) >= 1 and len(unremodeled) == len(pool):
            value = weighted_average(unremodeled, as_of) * (1 + self.default_premium)
            note = (f"weighted average of {len(unremodeled)} unremodeled comps "
                    f"+ {self.default_premium * 100:.0f}% renovation premium")
        else:
            value = weighted_average(pool, as_of) * (1 + self.unknown_condition_premium)
            note = (f"weighted average of {len(pool)} comps of mixed/unknown condition "
                    f"+ {self.unknown_condition_premium * 100:.0f}% premium")
        return value, note, len(pool)

    # ----- blend -----

    def weight_for(self, source: str, estimate: Optional[Estimate] = None) -> float:
        if source in self.weights:
            return self.weights[source]
        if estimate is not None and estimate.weight > 0:
            return estimate.weight
        return self.default_estimate_weight

    def reconcile(
        self,
        comps: Sequence[Comp] = (),
        estimates: Sequence[Estimate] = (),
        subject: Optional[PropertyDetail] = None,
        as_of: Optional[date] = None,
    ) -> ReconciledValuation:
        comps_value, comps_note, comps_used = self.comps_value(comps, subject, as_of) if comps else (None, "", 0)

        raw: List[Tuple[str, float, float]] = []
        if comps_value:
            raw.append((COMPS_SOURCE, comps_value, self.weight_for(COMPS_SOURCE)))
        seen = set()
        for est in estimates:
            if est is None or est.value <= 0 or est.source_provider_id in seen:
                continue
            seen.add(est.source_provider_id)
            raw.append((est.source_provider_id, est.value, self.weight_for(est.source_provider_id, est)))

        if not raw:
            logger.info("Reconciliation has no sources; manual ARV input required")
            return ReconciledValuation(
                arv=None,
                confidence_score=0,
                methodology="Insufficient data: no comparable sales or independent estimates available",
            )

        values = np.array([v for _, v, _ in raw], dtype=float)
        weights = np.array([w for _, _, w in raw], dtype=float)
        if weights.sum() <= 0:
            weights = np.ones_like(values)
        weights = weights / weights.sum()

        arv = float(np.average(values, weights=weights))
        std = float(np.sqrt(np.average((values - arv) ** 2, weights=weights)))
        cv = std / arv if arv else 0.0
        confidence = confidence_from_dispersion(cv)

        sources = [
            SourceContribution(source_provider_id=src, value=round(v), weight=round(float(w), 4))
            for (src, v, _), w in zip(raw, weights)
        ]
        parts = [f"{s.source_provider_id} {s.weight * 100:.1f}%" for s in sources]
        methodology = f"Multi-source weighted average ({', '.join(parts)})"
        if comps_value:
            methodology += f"; comps: {comps_note}"

        return ReconciledValuation(
            arv=round(arv),
            confidence_score=confidence,
            sources=sources,
            methodology=methodology,
            range_low=round(arv - std),
            range_high=round(arv + std),
            comps_value=round(comps_value) if comps_value else None,
            comps_used=comps_used,
        )

    def apply_location(self, valuation: ReconciledValuation, location: Optional[LocationData]) -> ReconciledValuation:
        """Report a location-adjusted ARV beside the reconciled one."""
        if valuation.arv is None or location is None:
            return valuation
        adj = location_adjustment(location)
        return replace(
            valuation,
            location_adjusted_arv=round(valuation.arv * (1 + adj)),
            location_adjustment_pct=round(adj * 100, 1),
        )
