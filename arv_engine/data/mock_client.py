from datetime import date, timedelta
from typing import Any, FrozenSet, List, Optional

from .base import (
    AreaTrend, Comp, Condition, Estimate, LocationData, PriceEvent, PropertyDetail,
    ProviderAdapter, ProviderRequest, RawResponse, RequestType,
)
from ..core.utils import fnv1a_32, seeded_rand


class MockProvider(ProviderAdapter):
    """
    Synthetic provider for local dev. Outputs are plausible but fake and fully
    deterministic per (provider, property), so repeated runs agree.
    """

    def __init__(self, provider_id: str, handles: FrozenSet[RequestType], quality_score: int = 60,
                 today: Optional[date] = None):
        self.provider_id = provider_id
        self.handles = frozenset(handles)
        self.quality_score = quality_score
        self.today = today

    async def fetch(self, request: ProviderRequest) -> RawResponse:
        # No wire format to speak of: the request itself is the payload
        return RawResponse(body=request)

    def normalize(self, request_type: RequestType, raw: RawResponse) -> Any:
        request: ProviderRequest = raw.body
        seed = fnv1a_32(f"{self.provider_id}|{request.identity.full_address}")
        base_seed = fnv1a_32(request.identity.full_address)
        # Property-level base price shared by every mock provider
        base = 350_000 + int(seeded_rand(base_seed, 1)[0] * 850_000)
        today = self.today or date.today()
        if request_type is RequestType.COMPS:
            return self._comps(seed, base, today)
        if request_type is RequestType.ESTIMATE:
            drift = (seeded_rand(seed + 3, 1)[0] - 0.5) * 0.12  # +/- 6%
            return Estimate(source_provider_id=self.provider_id, value=round(base * 1.2 * (1 + drift)))
        if request_type is RequestType.PROPERTY_DETAIL:
            return PropertyDetail(
                source_provider_id=self.provider_id,
                beds=2 + int(seeded_rand(base_seed + 13, 1)[0] * 4),
                baths=1 + round(seeded_rand(base_seed + 17, 1)[0] * 2, 1),
                sqft=900 + int(seeded_rand(base_seed + 19, 1)[0] * 2000),
                year_built=1940 + int(seeded_rand(base_seed + 23, 1)[0] * 80),
            )
        if request_type is RequestType.PRICE_HISTORY:
            years_ago = 3 + int(seeded_rand(base_seed + 29, 1)[0] * 12)
            first = today - timedelta(days=int(years_ago * 365.25))
            return [
                PriceEvent(date=first, price=round(base * 0.75)),
                PriceEvent(date=today - timedelta(days=400), price=round(base * 0.95)),
            ]
        if request_type is RequestType.AREA_TREND:
            one_year = round((seeded_rand(base_seed + 31, 1)[0] - 0.35) * 12, 1)  # about -4%..+8%
            return AreaTrend(
                source_provider_id=self.provider_id,
                one_year_change=one_year,
                thirty_day_change=round(one_year / 12, 2),
                median_value=round(base * 1.05),
            )
        if request_type is RequestType.LOCATION:
            return LocationData(
                source_provider_id=self.provider_id,
                school_rating=round(3 + seeded_rand(base_seed + 37, 1)[0] * 7, 1),
                walk_score=round(seeded_rand(base_seed + 41, 1)[0] * 100),
                transit_score=round(seeded_rand(base_seed + 43, 1)[0] * 100),
                noise_score=round(seeded_rand(base_seed + 47, 1)[0] * 100),
            )
        return None

    def _comps(self, seed: int, base: int, today: date) -> List[Comp]:
        out: List[Comp] = []
        for i in range(6):
            remodeled = i >= 3  # Last 3 are remodeled
            age_days = int(seeded_rand(seed + i, 1)[0] * 180)
            spread = 1.0 + (seeded_rand(seed + i * 31, 1)[0] - 0.5) * 0.1
            price = base * (1.25 if remodeled else 1.0) * spread
            out.append(Comp(
                address=f"{100 + int(seeded_rand(seed + 11 * i, 1)[0] * 900)} Mock St",
                price=round(price),
                sqft=1200 + int(seeded_rand(seed + 19 * i, 1)[0] * 1400),
                beds=2 + int(seeded_rand(seed + 13 * i, 1)[0] * 4),
                baths=1 + round(seeded_rand(seed + 17 * i, 1)[0] * 2, 1),
                sale_date=today - timedelta(days=age_days),
                distance=round(seeded_rand(seed + 7 * i, 1)[0] * 2.0, 2),
                condition=Condition.REMODELED if remodeled else Condition.UNREMODELED,
                source_provider_id=self.provider_id,
                quality_score=self.quality_score,
                is_real=False,
            ))
        # Sort by proximity (closer first)
        out.sort(key=lambda c: (c.distance, -c.sale_date.toordinal()))
        return out
