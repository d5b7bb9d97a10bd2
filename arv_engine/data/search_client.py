from statistics import mean
from typing import Any, List, Optional

from .base import Comp, LocationData, PropertyDetail, ProviderRequest, RawResponse, RequestType
from .http_base import HttpProviderAdapter
from .normalize import DEFAULT_BATHS, DEFAULT_BEDS, as_list, estimate_from, make_comp
from ..core.utils import dig, first_present, to_float


class SearchProvider(HttpProviderAdapter):
    """
    Bulk listing-search source. Similar-homes results are matched by the
    provider; the plain sold-homes search sits behind it in the same payload
    and is scored lower.
    """

    provider_id = "search"
    endpoints = {
        RequestType.COMPS: "/properties/v2/similar-homes",
        RequestType.ESTIMATE: "/for-sale/home-estimate",
        RequestType.PROPERTY_DETAIL: "/v3/property-detail",
        RequestType.LOCATION: "/location/schools-and-noise",
    }

    def build_params(self, request: ProviderRequest):
        ident = request.identity
        return {
            "address": ident.address,
            "city": ident.city,
            "state_code": ident.state,
            "zip_code": ident.zip,
        }

    def normalize(self, request_type: RequestType, raw: RawResponse) -> Any:
        body = raw.body if isinstance(raw.body, dict) else {}
        if request_type is RequestType.COMPS:
            return self._comps(body)
        if request_type is RequestType.ESTIMATE:
            return estimate_from(self.provider_id, body, "estimate", "estimatedValue")
        if request_type is RequestType.PROPERTY_DETAIL:
            return self._detail(body)
        if request_type is RequestType.LOCATION:
            return self._location(body)
        return None

    def _comps(self, body) -> List[Comp]:
        comps = []
        for home in as_list(first_present(body, "homes", "properties")):
            if isinstance(home, dict):
                comps.append(self._comp(home, quality_score=100))
        for home in as_list(dig(body, "data", "home_search", "results")):
            if isinstance(home, dict):
                comps.append(self._comp(home, quality_score=85))
        return comps

    def _comp(self, home, quality_score: int) -> Comp:
        desc = home.get("description") or {}
        coord = dig(home, "location", "address", "coordinate") or {}
        return make_comp(
            provider_id=self.provider_id,
            quality_score=quality_score,
            address=home.get("address") or dig(home, "location", "address", "line"),
            price=first_present(home, "price", "sold_price", "list_price"),
            sqft=home.get("sqft") or desc.get("sqft"),
            beds=home.get("beds") or desc.get("beds"),
            baths=home.get("baths") or desc.get("baths"),
            sale_date=first_present(home, "sold_date", "list_date"),
            distance=home.get("distance"),
            condition=home.get("condition"),
            link=first_present(home, "href", "permalink"),
            lat=home.get("lat") or coord.get("lat"),
            lon=home.get("lon") or coord.get("lon"),
        )

    def _detail(self, body) -> Optional[PropertyDetail]:
        data = body.get("data") if isinstance(body.get("data"), dict) else body
        desc = data.get("description") or {}
        if not data:
            return None
        return PropertyDetail(
            source_provider_id=self.provider_id,
            beds=to_float(desc.get("beds") or data.get("beds"), DEFAULT_BEDS),
            baths=to_float(desc.get("baths") or data.get("baths"), DEFAULT_BATHS),
            sqft=to_float(desc.get("sqft") or data.get("sqft")),
            year_built=int(desc["year_built"]) if desc.get("year_built") else None,
            lot_size=to_float(desc.get("lot_sqft")),
            property_type=str(desc.get("type") or data.get("property_type") or "Single Family"),
            external_id=str(data["property_id"]) if data.get("property_id") else None,
        )

    def _location(self, body) -> Optional[LocationData]:
        ratings = [
            to_float(s.get("rating"))
            for s in as_list(body.get("schools"))
            if isinstance(s, dict) and to_float(s.get("rating"))
        ]
        noise = to_float(first_present(body, "noise_score", "noiseScore") or dig(body, "noise", "score"))
        walk = to_float(first_present(body, "walk_score", "walkScore"))
        transit = to_float(first_present(body, "transit_score", "transitScore"))
        if not ratings and noise is None and walk is None:
            return None
        return LocationData(
            source_provider_id=self.provider_id,
            school_rating=round(mean(ratings), 1) if ratings else None,
            walk_score=walk,
            transit_score=transit,
            noise_score=noise,
        )
