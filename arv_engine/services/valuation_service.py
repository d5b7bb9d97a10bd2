import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Awaitable, Dict, List, Optional, Tuple

import redis

from ..core.cache import CacheStore
from ..core.config import Settings, settings as default_settings
from ..core.quota import QuotaLedger, QuotaRecord
from ..data.base import Comp, LocationData, PropertyDetail, PropertyIdentity, RequestType
from ..data.registry import build_providers
from .orchestrator import FetchOrchestrator, FetchResult
from .reconciliation import ReconciledValuation, ReconciliationEngine, SourceContribution
from .validation import HistoricalValidator, ValidationResult, skipped

logger = logging.getLogger(__name__)


class AnalysisDepth(str, Enum):
    MINIMAL = "minimal"
    STANDARD = "standard"
    DEEP = "deep"


# Independent estimate sources requested per depth
ESTIMATE_SOURCES = {
    AnalysisDepth.MINIMAL: (),
    AnalysisDepth.STANDARD: ("premium", "search"),
    AnalysisDepth.DEEP: ("premium", "search", "listing"),
}


@dataclass
class ValuationOverride:
    arv: Optional[float] = None
    comps: List[Comp] = field(default_factory=list)

    @property
    def is_set(self) -> bool:
        return bool(self.arv) or bool(self.comps)


@dataclass
class ValuationOptions:
    depth: AnalysisDepth = AnalysisDepth.STANDARD
    primary_provider: Optional[str] = None
    override: Optional[ValuationOverride] = None
    as_of: Optional[date] = None


@dataclass
class ValuationOutcome:
    identity: PropertyIdentity
    comps: List[Comp] = field(default_factory=list)
    reconciled_valuation: Optional[ReconciledValuation] = None
    validation_result: Optional[ValidationResult] = None
    providers_used: List[str] = field(default_factory=list)
    cache_hits: int = 0
    warnings: List[str] = field(default_factory=list)
    property_detail: Optional[PropertyDetail] = None
    location: Optional[LocationData] = None


class ValuationService:
    """
    Orchestrates:
      identity → (comps, estimates, history, trend, detail, location) in parallel
      → reconciliation → historical validation
    Built once per process; the ledger and cache live as long as it does.
    """

    def __init__(
        self,
        orchestrator: FetchOrchestrator,
        reconciler: ReconciliationEngine,
        validator: HistoricalValidator,
        request_timeout: Optional[float] = None,
        primary_provider: Optional[str] = None,
    ):
        self.orchestrator = orchestrator
        self.reconciler = reconciler
        self.validator = validator
        self.request_timeout = request_timeout
        self.primary_provider = primary_provider

    @classmethod
    def from_settings(cls, cfg: Settings = default_settings) -> "ValuationService":
        redis_client = redis.Redis.from_url(cfg.REDIS_URL, decode_responses=True) if cfg.USE_REDIS else None
        ledger = QuotaLedger(cfg.PROVIDER_QUOTAS, redis_client=redis_client)
        cache = CacheStore(cfg.cache_ttl_seconds(), maxsize=cfg.CACHE_MAXSIZE, redis_client=redis_client)
        orchestrator = FetchOrchestrator(
            build_providers(cfg),
            ledger,
            cache,
            max_retries=cfg.MAX_RETRIES,
            backoff_base=cfg.BACKOFF_BASE_SECONDS,
            attempt_timeout=cfg.ATTEMPT_TIMEOUT_SECONDS,
        )
        reconciler = ReconciliationEngine(
            cfg.RECONCILIATION_WEIGHTS,
            default_estimate_weight=cfg.DEFAULT_ESTIMATE_WEIGHT,
            premium_cap=cfg.RENOVATION_PREMIUM_CAP,
            default_premium=cfg.DEFAULT_RENOVATION_PREMIUM,
            unknown_condition_premium=cfg.UNKNOWN_CONDITION_PREMIUM,
        )
        return cls(
            orchestrator,
            reconciler,
            HistoricalValidator(cfg.DEVIATION_THRESHOLD),
            request_timeout=cfg.REQUEST_TIMEOUT_SECONDS,
            primary_provider=cfg.PRIMARY_PROVIDER,
        )

    @property
    def ledger(self) -> QuotaLedger:
        return self.orchestrator.ledger

    def quota_snapshot(self) -> List[QuotaRecord]:
        return self.ledger.snapshot()

    async def aclose(self) -> None:
        await self.orchestrator.aclose()

    # ----- inbound contract -----

    async def resolve_valuation(
        self, identity: PropertyIdentity, options: Optional[ValuationOptions] = None
    ) -> ValuationOutcome:
        options = options or ValuationOptions()
        if options.override is not None and options.override.is_set:
            return self._from_override(identity, options)

        outcome = ValuationOutcome(identity=identity)
        results, timed_out = await self._gather(identity, options)
        if timed_out:
            logger.warning(
                "Valuation for %s timed out after %ss; abandoned %s",
                identity.full_address, self.request_timeout, ", ".join(timed_out),
            )
            outcome.warnings.append(f"Data gathering timed out after {self.request_timeout:g}s")

        self._collect(outcome, results)
        estimates = [r.data for name, r in results.items() if name.startswith("estimate:") and r.found]
        history = results.get("price_history")
        trend = results.get("area_trend")
        detail = results.get("property_detail")
        location = results.get("location")
        outcome.property_detail = detail.data if detail is not None and detail.found else None
        outcome.location = location.data if location is not None and location.found else None

        as_of = options.as_of or date.today()
        valuation = self.reconciler.reconcile(outcome.comps, estimates, subject=outcome.property_detail, as_of=as_of)
        if options.depth is AnalysisDepth.DEEP:
            valuation = self.reconciler.apply_location(valuation, outcome.location)
        outcome.reconciled_valuation = valuation
        if valuation.insufficient_data:
            outcome.warnings.append("Insufficient data: enter an ARV or comps manually")
        if outcome.comps and not any(c.is_real for c in outcome.comps):
            outcome.warnings.append("Comps are AI-generated estimates, not recorded sales; verify before relying on them")

        if options.depth is AnalysisDepth.MINIMAL:
            outcome.validation_result = skipped("minimal analysis depth")
        else:
            outcome.validation_result = self.validator.validate(
                valuation,
                history.data if history is not None and history.found else None,
                trend.data if trend is not None and trend.found else None,
                as_of=as_of,
            )
        logger.info(
            "Resolved %s: arv=%s confidence=%s providers=%s cache_hits=%d",
            identity.full_address, valuation.arv, valuation.confidence_score,
            outcome.providers_used, outcome.cache_hits,
        )
        return outcome

    async def _gather(
        self, identity: PropertyIdentity, options: ValuationOptions
    ) -> Tuple[Dict[str, FetchResult], List[str]]:
        """
        Run every fetch the depth calls for, bounded by ``request_timeout``.
        Returns what finished in time plus the names that did not; those are
        cancelled so they stop spending quota.
        """
        tasks = {name: asyncio.ensure_future(call) for name, call in self._fetches(identity, options).items()}
        try:
            done, pending = await asyncio.wait(tasks.values(), timeout=self.request_timeout)
        finally:
            for task in tasks.values():
                if not task.done():
                    task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        results: Dict[str, FetchResult] = {}
        for name, task in tasks.items():
            if task not in done:
                continue
            if task.exception() is not None:
                logger.error("Fetch of %s failed", name, exc_info=task.exception())
                continue
            results[name] = task.result()
        return results, [name for name, task in tasks.items() if task in pending]

    def _fetches(self, identity: PropertyIdentity, options: ValuationOptions) -> Dict[str, Awaitable[FetchResult]]:
        primary = options.primary_provider or self.primary_provider
        fetch = self.orchestrator.fetch
        calls: Dict[str, Awaitable[FetchResult]] = {"comps": fetch(identity, RequestType.COMPS, primary=primary)}
        for pid in ESTIMATE_SOURCES[options.depth]:
            if pid in self.orchestrator.providers:
                calls[f"estimate:{pid}"] = fetch(identity, RequestType.ESTIMATE, qualifier=pid, only=[pid])
        if options.depth is not AnalysisDepth.MINIMAL:
            calls["price_history"] = fetch(identity, RequestType.PRICE_HISTORY, primary=primary)
            calls["area_trend"] = fetch(identity, RequestType.AREA_TREND, primary=primary)
        if options.depth is AnalysisDepth.DEEP:
            calls["property_detail"] = fetch(identity, RequestType.PROPERTY_DETAIL, primary=primary)
            calls["location"] = fetch(identity, RequestType.LOCATION, primary=primary)
        return calls

    def _collect(self, outcome: ValuationOutcome, results: Dict[str, FetchResult]) -> None:
        skipped_for_quota: List[str] = []
        for name, result in results.items():
            if result.from_cache:
                outcome.cache_hits += 1
            elif result.provider_id and result.provider_id not in outcome.providers_used:
                outcome.providers_used.append(result.provider_id)
            for pid in result.quota_skipped:
                if pid not in skipped_for_quota:
                    skipped_for_quota.append(pid)
            if not result.found:
                label = name.replace("_", " ")
                if name.startswith("estimate:"):
                    label = f"{name.split(':', 1)[1]} estimate"
                outcome.warnings.append(f"No {label} data available from any provider")
        for pid in skipped_for_quota:
            record = self.ledger.record(pid)
            outcome.warnings.append(
                f"{pid} skipped: quota threshold reached ({record.used}/{record.limit} this period)"
            )
        comps = results.get("comps")
        if comps is not None and comps.found:
            outcome.comps = list(comps.data)

    def _from_override(self, identity: PropertyIdentity, options: ValuationOptions) -> ValuationOutcome:
        override = options.override
        outcome = ValuationOutcome(identity=identity, comps=list(override.comps))
        if override.arv:
            arv = round(override.arv)
            outcome.reconciled_valuation = ReconciledValuation(
                arv=arv,
                confidence_score=100,
                sources=[SourceContribution(source_provider_id="user", value=arv, weight=1.0)],
                methodology="User-supplied ARV",
                range_low=arv,
                range_high=arv,
            )
        else:
            outcome.reconciled_valuation = self.reconciler.reconcile(override.comps, [], as_of=options.as_of)
        outcome.validation_result = skipped("user-supplied override")
        return outcome
