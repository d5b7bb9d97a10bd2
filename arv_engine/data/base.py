import hashlib
import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from ..core.errors import InvalidPropertyIdentityError

# ----- Enumerations -----

class TtlClass(str, Enum):
    PROPERTY_DETAIL = "property-detail"
    LOCATION = "location"
    COMPS = "comps"
    ESTIMATE = "estimate"
    MARKET_RATE = "market-rate"


class RequestType(str, Enum):
    COMPS = "comps"
    ESTIMATE = "estimate"
    PROPERTY_DETAIL = "property_detail"
    PRICE_HISTORY = "price_history"
    AREA_TREND = "area_trend"
    LOCATION = "location"


TTL_CLASS_FOR: Dict[RequestType, TtlClass] = {
    RequestType.COMPS: TtlClass.COMPS,
    RequestType.ESTIMATE: TtlClass.ESTIMATE,
    RequestType.PROPERTY_DETAIL: TtlClass.PROPERTY_DETAIL,
    RequestType.PRICE_HISTORY: TtlClass.PROPERTY_DETAIL,
    RequestType.AREA_TREND: TtlClass.MARKET_RATE,
    RequestType.LOCATION: TtlClass.LOCATION,
}


class Condition(str, Enum):
    REMODELED = "remodeled"
    UNREMODELED = "unremodeled"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "Condition":
        text = str(value or "").strip().lower().replace("-", "").replace(" ", "")
        if text in ("remodeled", "renovated", "updated"):
            return cls.REMODELED
        if text in ("unremodeled", "asis", "original", "dated"):
            return cls.UNREMODELED
        return cls.UNKNOWN


# ----- Data shapes (thin & explicit) -----

_ZIP_RE = re.compile(r"^\d{5}(-\d{4})?$")


@dataclass(frozen=True)
class PropertyIdentity:
    """
    Key for everything fetched about one property. Equality is exact on all
    four fields; there is no fuzzy or partial-zip matching anywhere.
    """
    address: str
    city: str
    state: str
    zip: str

    def __post_init__(self):
        errors = []
        for name in ("address", "city", "state", "zip"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                errors.append(f"{name} is required")
        if not errors and not _ZIP_RE.match(self.zip.strip()):
            errors.append("zip must be 5 digits (e.g. 92101) or ZIP+4 (e.g. 92101-1234)")
        if errors:
            raise InvalidPropertyIdentityError(errors)

    @property
    def full_address(self) -> str:
        return f"{self.address}, {self.city}, {self.state} {self.zip}"

    @property
    def location(self) -> str:
        return f"{self.city}, {self.state}"


def cache_key(identity: PropertyIdentity, data_tag: str) -> str:
    """
    Cache key for one data type of one property. Every identity field goes
    into the digest verbatim, so two properties never share an entry.
    """
    raw = json.dumps([identity.address, identity.city, identity.state, identity.zip])
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]
    return f"arv:{data_tag}:{digest}"


def data_tag(request_type: RequestType, qualifier: Optional[str] = None) -> str:
    return f"{request_type.value}:{qualifier}" if qualifier else request_type.value


@dataclass
class Comp:
    address: str
    price: float
    sqft: float
    beds: float
    baths: float
    sale_date: Optional[date]
    distance: Optional[float]
    condition: Condition
    source_provider_id: str
    quality_score: int           # 0-100, weighting signal only
    is_real: bool = True
    link: str = ""
    lat: Optional[float] = None
    lon: Optional[float] = None


@dataclass
class Estimate:
    source_provider_id: str
    value: float
    weight: float = 0.0


@dataclass
class PropertyDetail:
    source_provider_id: str
    beds: float
    baths: float
    sqft: Optional[float] = None
    year_built: Optional[int] = None
    lot_size: Optional[float] = None
    property_type: str = "Single Family"
    external_id: Optional[str] = None


@dataclass
class PriceEvent:
    date: date
    price: float
    event: str = "Sold"

    @property
    def is_sale(self) -> bool:
        return self.event.strip().lower() in ("sold", "sale", "closed")


@dataclass
class AreaTrend:
    source_provider_id: str
    one_year_change: Optional[float] = None   # percent, e.g. 4.2
    thirty_day_change: Optional[float] = None
    five_year_change: Optional[float] = None
    median_value: Optional[float] = None


@dataclass
class LocationData:
    source_provider_id: str
    school_rating: Optional[float] = None   # 0-10
    walk_score: Optional[float] = None      # 0-100
    transit_score: Optional[float] = None
    noise_score: Optional[float] = None     # 0-100, higher is noisier


# Shape cached for each request type; cache reads are validated back into it.
PAYLOAD_TYPES: Dict[RequestType, Any] = {
    RequestType.COMPS: List[Comp],
    RequestType.ESTIMATE: Estimate,
    RequestType.PROPERTY_DETAIL: PropertyDetail,
    RequestType.PRICE_HISTORY: List[PriceEvent],
    RequestType.AREA_TREND: AreaTrend,
    RequestType.LOCATION: LocationData,
}


@dataclass
class ProviderRequest:
    identity: PropertyIdentity
    request_type: RequestType


@dataclass
class RawResponse:
    body: Any
    status_code: int = 200
    headers: Dict[str, str] = field(default_factory=dict)


# ----- Adapter interface -----

class ProviderAdapter(ABC):
    """
    Translation layer for one data source. Adapters only speak the wire
    format: fallback order, caching and quota accounting belong to the
    orchestrator.
    """

    provider_id: str = ""
    handles: FrozenSet[RequestType] = frozenset()

    def can_handle(self, request_type: RequestType) -> bool:
        return request_type in self.handles

    @abstractmethod
    async def fetch(self, request: ProviderRequest) -> RawResponse:
        """Perform one outbound call. Raises a ``ProviderError`` on failure."""

    @abstractmethod
    def normalize(self, request_type: RequestType, raw: RawResponse) -> Any:
        """
        Map a raw response to the canonical shape for ``request_type``:
        ``List[Comp]`` for comps, ``List[PriceEvent]`` for price history,
        a single record otherwise. Empty results come back as ``[]`` or ``None``.
        """

    async def aclose(self) -> None:
        return None
