from typing import Any, List, Optional

from .base import Comp, PriceEvent, PropertyDetail, RawResponse, RequestType
from .http_base import HttpProviderAdapter
from .normalize import DEFAULT_BATHS, DEFAULT_BEDS, as_list, estimate_from, make_comp, price_events_from
from ..core.utils import first_present, to_float


class ListingProvider(HttpProviderAdapter):
    """Listing-portal source: verified sold comps, portal estimate, details."""

    provider_id = "listing"
    endpoints = {
        RequestType.COMPS: "/properties/comps",
        RequestType.ESTIMATE: "/properties/estimate",
        RequestType.PROPERTY_DETAIL: "/properties/details",
        # Sale history is embedded in the details payload
        RequestType.PRICE_HISTORY: "/properties/details",
    }

    def normalize(self, request_type: RequestType, raw: RawResponse) -> Any:
        body = raw.body if isinstance(raw.body, dict) else {}
        if request_type is RequestType.COMPS:
            return self._comps(body)
        if request_type is RequestType.ESTIMATE:
            return estimate_from(self.provider_id, body, "estimate", "predictedValue", "avmValue")
        if request_type is RequestType.PROPERTY_DETAIL:
            return self._detail(body)
        if request_type is RequestType.PRICE_HISTORY:
            return self._history(body)
        return None

    def _comps(self, body) -> List[Comp]:
        return [
            make_comp(
                provider_id=self.provider_id,
                quality_score=90,
                address=first_present(c, "address", "streetAddress"),
                price=first_present(c, "price", "soldPrice"),
                sqft=first_present(c, "sqft", "livingArea"),
                beds=first_present(c, "beds", "bedrooms"),
                baths=first_present(c, "baths", "bathrooms"),
                sale_date=first_present(c, "saleDate", "soldDate"),
                distance=c.get("distance"),
                condition=c.get("condition"),
                link=first_present(c, "url", "link"),
                lat=first_present(c, "latitude", "lat"),
                lon=first_present(c, "longitude", "lng"),
            )
            for c in as_list(first_present(body, "comps", "comparables"))
            if isinstance(c, dict)
        ]

    def _detail(self, body) -> Optional[PropertyDetail]:
        if not body:
            return None
        return PropertyDetail(
            source_provider_id=self.provider_id,
            beds=to_float(first_present(body, "beds", "bedrooms"), DEFAULT_BEDS),
            baths=to_float(first_present(body, "baths", "bathrooms"), DEFAULT_BATHS),
            sqft=to_float(first_present(body, "sqft", "livingArea")),
            year_built=int(body["yearBuilt"]) if body.get("yearBuilt") else None,
            lot_size=to_float(body.get("lotSize")),
            property_type=str(first_present(body, "propertyType", "homeType", default="Single Family")),
            external_id=str(body["propertyId"]) if body.get("propertyId") else None,
        )

    def _history(self, body) -> List[PriceEvent]:
        return price_events_from(as_list(body.get("priceHistory")))
