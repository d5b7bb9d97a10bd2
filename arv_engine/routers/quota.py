from fastapi import APIRouter, Depends

from ..core.security import require_api_key
from ..schemas import QuotaOut
from ..services.valuation_service import ValuationService
from .valuation import service_dep

router = APIRouter()


@router.get("/quota", response_model=list[QuotaOut])
def get_quota(
    _auth=Depends(require_api_key),
    svc: ValuationService = Depends(service_dep),
):
    """Current-period usage per provider."""
    return [
        QuotaOut(
            provider_id=r.provider_id,
            period_key=r.period_key,
            used=r.used,
            limit=r.limit,
            threshold=r.threshold,
            remaining=r.remaining,
            percent_used=r.percent_used,
            status=r.status,
        )
        for r in svc.quota_snapshot()
    ]
