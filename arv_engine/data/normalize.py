"""Helpers shared by the adapters when mapping provider payloads to records."""
from typing import Any, Iterable, List, Mapping, Optional

from .base import Comp, Condition, Estimate, PriceEvent
from ..core.utils import first_present, parse_date, to_float

# Substituted when a provider omits room counts
DEFAULT_BEDS = 3.0
DEFAULT_BATHS = 2.0


def make_comp(
    *,
    provider_id: str,
    quality_score: int,
    address: Any,
    price: Any,
    sqft: Any,
    beds: Any = None,
    baths: Any = None,
    sale_date: Any = None,
    distance: Any = None,
    condition: Any = None,
    link: Any = None,
    lat: Any = None,
    lon: Any = None,
    is_real: bool = True,
) -> Comp:
    return Comp(
        address=str(address or "Unknown"),
        price=to_float(price, 0.0),
        sqft=to_float(sqft, 0.0),
        beds=to_float(beds, DEFAULT_BEDS),
        baths=to_float(baths, DEFAULT_BATHS),
        sale_date=parse_date(sale_date),
        distance=to_float(distance),
        condition=Condition.parse(condition),
        source_provider_id=provider_id,
        quality_score=quality_score,
        is_real=is_real,
        link=str(link or ""),
        lat=to_float(lat),
        lon=to_float(lon),
    )


def as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def estimate_from(provider_id: str, body: Mapping[str, Any], *keys: str) -> Optional[Estimate]:
    value = to_float(first_present(body, *keys))
    if not value or value <= 0:
        return None
    return Estimate(source_provider_id=provider_id, value=value)


def price_events_from(items: Iterable[Any]) -> List[PriceEvent]:
    events = []
    for item in items:
        if not isinstance(item, Mapping):
            continue
        when = parse_date(first_present(item, "date", "time", "eventDate"))
        price = to_float(first_present(item, "price", "value", "amount"))
        if when is None or not price:
            continue
        event = str(first_present(item, "event", "eventType", default="Sold"))
        events.append(PriceEvent(date=when, price=price, event=event))
    events.sort(key=lambda e: e.date)
    return events
