import json
from dataclasses import asdict

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response
from pydantic_core import to_jsonable_python

from ..core.config import settings
from ..core.errors import InvalidPropertyIdentityError
from ..core.security import require_api_key
from ..core.utils import weak_etag
from ..data.base import PropertyIdentity
from ..data.normalize import make_comp
from ..schemas import OverrideIn, ValuationRequest, ValuationResponse
from ..services.valuation_service import (
    ValuationOptions, ValuationOutcome, ValuationOverride, ValuationService,
)

router = APIRouter()

DISCLAIMER = "This ARV is an estimate from third-party data and not a financial appraisal."


def service_dep(request: Request) -> ValuationService:
    # Built once in create_app; the ledger and cache must outlive the request
    return request.app.state.valuation_service


def override_from(body: OverrideIn | None) -> ValuationOverride | None:
    if body is None:
        return None
    comps = [
        make_comp(
            provider_id="user",
            quality_score=100,
            address=c.address,
            price=c.price,
            sqft=c.sqft,
            beds=c.beds,
            baths=c.baths,
            sale_date=c.sale_date,
            distance=c.distance,
            condition=c.condition,
        )
        for c in body.comps
    ]
    return ValuationOverride(arv=body.arv, comps=comps)


def outcome_payload(outcome: ValuationOutcome) -> dict:
    valuation = outcome.reconciled_valuation
    validation = outcome.validation_result
    return to_jsonable_python({
        "address": outcome.identity.full_address,
        "currency": settings.DEFAULT_CURRENCY,
        "comps": [asdict(c) for c in outcome.comps],
        "reconciled_valuation": {
            "arv": valuation.arv,
            "confidence_score": valuation.confidence_score,
            "sources": [asdict(s) for s in valuation.sources],
            "methodology": valuation.methodology,
            "range": {"low": valuation.range_low, "high": valuation.range_high},
            "insufficient_data": valuation.insufficient_data,
            "comps_value": valuation.comps_value,
            "comps_used": valuation.comps_used,
            "location_adjusted_arv": valuation.location_adjusted_arv,
            "location_adjustment_pct": valuation.location_adjustment_pct,
        },
        "validation_result": asdict(validation),
        "providers_used": outcome.providers_used,
        "cache_hits": outcome.cache_hits,
        "warnings": outcome.warnings,
        "disclaimer": DISCLAIMER,
    })


@router.post("/valuation", response_model=ValuationResponse)
async def post_valuation(
    body: ValuationRequest,
    response: Response,
    if_none_match: str | None = Header(default=None, alias="If-None-Match"),
    _auth=Depends(require_api_key),     # API key guard
    svc: ValuationService = Depends(service_dep),
):
    try:
        identity = PropertyIdentity(body.address, body.city, body.state, body.zip)
    except InvalidPropertyIdentityError as exc:
        raise HTTPException(status_code=422, detail=exc.errors)

    options = ValuationOptions(
        depth=body.depth,
        primary_provider=body.primary_provider,
        override=override_from(body.override),
    )
    outcome = await svc.resolve_valuation(identity, options)
    payload = outcome_payload(outcome)
    # Provenance differs between a cold and a cached run of the same valuation
    content = {k: v for k, v in payload.items() if k not in ("providers_used", "cache_hits")}
    etag = weak_etag(json.dumps(content, separators=(",", ":"), sort_keys=True).encode("utf-8"))
    if if_none_match and if_none_match == etag:
        return Response(status_code=304, headers={"ETag": etag})
    payload["etag"] = etag
    response.headers["ETag"] = etag
    return payload
