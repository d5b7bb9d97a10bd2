from datetime import date

from pydantic import BaseModel, Field

from .services.valuation_service import AnalysisDepth


class CompIn(BaseModel):
    address: str
    price: float = Field(gt=0)
    sqft: float = Field(default=0, ge=0)
    beds: float | None = None
    baths: float | None = None
    sale_date: date | None = None
    distance: float | None = None
    condition: str = "unknown"


class OverrideIn(BaseModel):
    arv: float | None = Field(default=None, gt=0)
    comps: list[CompIn] = []


class ValuationRequest(BaseModel):
    # Emptiness and zip shape are checked by PropertyIdentity so every caller gets the same errors
    address: str
    city: str
    state: str
    zip: str
    depth: AnalysisDepth = AnalysisDepth.STANDARD
    primary_provider: str | None = None
    override: OverrideIn | None = None


class CompOut(BaseModel):
    address: str
    price: float
    sqft: float
    beds: float
    baths: float
    sale_date: date | None = None
    distance: float | None = None
    condition: str
    source_provider_id: str
    quality_score: int
    is_real: bool
    link: str = ""


class SourceOut(BaseModel):
    source_provider_id: str
    value: float
    weight: float


class Range(BaseModel):
    low: float | None = None
    high: float | None = None


class ReconciledOut(BaseModel):
    arv: float | None
    confidence_score: int = Field(ge=0, le=100)
    sources: list[SourceOut]
    methodology: str
    range: Range
    insufficient_data: bool
    comps_value: float | None = None
    comps_used: int = 0
    location_adjusted_arv: float | None = None
    location_adjustment_pct: float | None = None


class SalePatternOut(BaseModel):
    classification: str
    sale_count: int
    average_holding_years: float | None = None
    short_holds: int = 0
    max_flip_gain: float | None = None


class ValidationOut(BaseModel):
    is_valid: bool
    skipped: bool
    skip_reason: str | None = None
    deviation: float | None = None
    historical_arv: float | None = None
    market_trend: str | None = None
    appreciation_rate: float | None = None
    sale_pattern: SalePatternOut | None = None
    warnings: list[str]


class ValuationResponse(BaseModel):
    address: str
    currency: str = "USD"
    comps: list[CompOut]
    reconciled_valuation: ReconciledOut
    validation_result: ValidationOut
    providers_used: list[str]
    cache_hits: int
    warnings: list[str]
    disclaimer: str
    etag: str | None = None


class QuotaOut(BaseModel):
    provider_id: str
    period_key: str
    used: int
    limit: int | None = None
    threshold: int | None = None
    remaining: int | None = None
    percent_used: int
    status: str
