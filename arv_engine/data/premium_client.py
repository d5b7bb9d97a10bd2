from typing import Any, List, Optional

from .base import (
    AreaTrend, Comp, PriceEvent, PropertyDetail, ProviderRequest, RawResponse, RequestType,
)
from .http_base import HttpProviderAdapter
from .normalize import DEFAULT_BATHS, DEFAULT_BEDS, as_list, estimate_from, make_comp, price_events_from
from ..core.utils import dig, first_present, first_set, to_float


class PremiumProvider(HttpProviderAdapter):
    """
    High-quality source: AI-matched comps, its own point estimate, property
    details, sale history and local market trend. Small monthly quota, so it
    sits first in the default order but runs dry first too.
    """

    provider_id = "premium"
    endpoints = {
        RequestType.COMPS: "/propertyComps",
        RequestType.ESTIMATE: "/zestimate",
        RequestType.PROPERTY_DETAIL: "/property",
        RequestType.PRICE_HISTORY: "/priceAndTaxHistory",
        RequestType.AREA_TREND: "/valueHistory/localHomeValues",
    }

    def build_params(self, request: ProviderRequest):
        ident = request.identity
        if request.request_type is RequestType.AREA_TREND:
            return {"location": f"{ident.location} {ident.zip}"}
        return {"address": ident.full_address}

    def normalize(self, request_type: RequestType, raw: RawResponse) -> Any:
        body = raw.body if isinstance(raw.body, dict) else {}
        if request_type is RequestType.COMPS:
            return self._comps(body)
        if request_type is RequestType.ESTIMATE:
            return estimate_from(self.provider_id, body, "zestimate", "price", "value")
        if request_type is RequestType.PROPERTY_DETAIL:
            return self._detail(body)
        if request_type is RequestType.PRICE_HISTORY:
            return self._history(body)
        if request_type is RequestType.AREA_TREND:
            return self._trend(body)
        return None

    def _comps(self, body) -> List[Comp]:
        comps = []
        for c in as_list(first_present(body, "comps", "comparables")):
            if not isinstance(c, dict):
                continue
            comps.append(make_comp(
                provider_id=self.provider_id,
                quality_score=100,
                address=first_present(c, "address", "streetAddress"),
                price=first_present(c, "price", "soldPrice"),
                sqft=first_present(c, "livingArea", "sqft"),
                beds=first_present(c, "bedrooms", "beds"),
                baths=first_present(c, "bathrooms", "baths"),
                sale_date=first_present(c, "dateSold", "soldDate"),
                distance=c.get("distance"),
                condition=c.get("condition"),
                link=first_present(c, "detailUrl", "hdpUrl"),
                lat=first_present(c, "latitude", "lat"),
                lon=first_present(c, "longitude", "lng"),
            ))
        return comps

    def _detail(self, body) -> Optional[PropertyDetail]:
        if not body:
            return None
        zpid = body.get("zpid")
        return PropertyDetail(
            source_provider_id=self.provider_id,
            beds=to_float(first_present(body, "bedrooms", "beds"), DEFAULT_BEDS),
            baths=to_float(first_present(body, "bathrooms", "baths"), DEFAULT_BATHS),
            sqft=to_float(first_present(body, "livingArea", "sqft")),
            year_built=int(body["yearBuilt"]) if body.get("yearBuilt") else None,
            lot_size=to_float(first_present(body, "lotSize", "lotAreaValue")),
            property_type=str(first_present(body, "propertyType", "homeType", default="Single Family")),
            external_id=str(zpid) if zpid else None,
        )

    def _history(self, body) -> List[PriceEvent]:
        return price_events_from(as_list(body.get("priceHistory")))

    def _trend(self, body) -> Optional[AreaTrend]:
        one_year = to_float(first_set(body, "oneYearChange", "1YearChange", "valueChange", "value_change"))
        median = to_float(first_present(body, "medianHomeValue", "median_home_value"))
        if one_year is None and median is None:
            return None
        return AreaTrend(
            source_provider_id=self.provider_id,
            one_year_change=one_year,
            thirty_day_change=to_float(first_set(body, "thirtyDayChange", "30DayChange")),
            five_year_change=to_float(first_set(body, "fiveYearChange", "5YearChange")),
            median_value=median or to_float(dig(body, "market", "medianValue")),
        )
