"""
Fetch orchestration: which provider to call, how often, and what to do when
it fails.

For one logical request (a data type for one property) the orchestrator
    cache → quota filter → provider 1 (retry with backoff) → provider 2 → ...
and stops at the first provider that returns usable data. Running out of
providers is a normal outcome (``FetchState.EXHAUSTED``), not an error.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from pydantic import TypeAdapter, ValidationError

from ..core.cache import CacheStore
from ..core.errors import MalformedPayloadError, ProviderError, ProviderTimeoutError
from ..core.metrics import CACHE_LOOKUPS, PROVIDER_ATTEMPTS
from ..core.quota import QuotaLedger
from ..data.base import (
    PAYLOAD_TYPES, TTL_CLASS_FOR, Estimate, PropertyIdentity, ProviderAdapter, ProviderRequest,
    RequestType, cache_key, data_tag,
)

logger = logging.getLogger(__name__)

_PAYLOAD_ADAPTERS = {rt: TypeAdapter(tp) for rt, tp in PAYLOAD_TYPES.items()}


class FetchState(str, Enum):
    SELECTING_PROVIDER = "selecting_provider"
    ATTEMPTING = "attempting"
    SUCCESS = "success"
    RETRYING = "retrying"
    FALLING_BACK = "falling_back"
    DONE = "done"
    EXHAUSTED = "exhausted"


@dataclass
class AttemptRecord:
    provider_id: str
    attempt: int
    outcome: str          # success | empty | transient_error | error | timeout
    error: Optional[str] = None


@dataclass
class FetchResult:
    request_type: RequestType
    cache_key: str
    state: FetchState = FetchState.SELECTING_PROVIDER
    data: Any = None
    provider_id: Optional[str] = None
    from_cache: bool = False
    attempts: List[AttemptRecord] = field(default_factory=list)
    quota_skipped: List[str] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.state is FetchState.DONE

    @property
    def network_attempts(self) -> int:
        return len(self.attempts)


def sanitize(request_type: RequestType, payload: Any) -> Any:
    """Drop records that cannot be used for valuation (non-positive price or area)."""
    if request_type is RequestType.COMPS:
        return [c for c in payload or [] if c.price > 0 and c.sqft > 0]
    if request_type is RequestType.ESTIMATE:
        return payload if isinstance(payload, Estimate) and payload.value > 0 else None
    if request_type is RequestType.PRICE_HISTORY:
        return [e for e in payload or [] if e.price > 0]
    return payload


def is_empty(payload: Any) -> bool:
    return payload is None or (isinstance(payload, list) and not payload)


class _InFlight:
    __slots__ = ("task", "waiters")

    def __init__(self, task: "asyncio.Future"):
        self.task = task
        self.waiters = 0


class FetchOrchestrator:
    """
    Owns the provider table, and uses the injected quota ledger and cache
    store. Concurrent identical requests share one in-flight fetch.
    """

    def __init__(
        self,
        providers: Sequence[ProviderAdapter],
        ledger: QuotaLedger,
        cache: CacheStore,
        *,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        attempt_timeout: Optional[float] = 15.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.providers: Dict[str, ProviderAdapter] = {p.provider_id: p for p in providers}
        self.priority: List[str] = [p.provider_id for p in providers]
        self.ledger = ledger
        self.cache = cache
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.attempt_timeout = attempt_timeout
        self._sleep = sleep
        self._inflight: Dict[str, _InFlight] = {}

    # ----- provider selection -----

    def provider_order(self, primary: Optional[str] = None) -> List[str]:
        """User-selected primary first, then the default priority; ``auto`` keeps the default."""
        if not primary or primary == "auto" or primary not in self.providers:
            return list(self.priority)
        return [primary] + [pid for pid in self.priority if pid != primary]

    # ----- public entry point -----

    async def fetch(
        self,
        identity: PropertyIdentity,
        request_type: RequestType,
        *,
        qualifier: Optional[str] = None,
        primary: Optional[str] = None,
        only: Optional[Iterable[str]] = None,
    ) -> FetchResult:
        """
        Resolve one logical request. ``only`` pins the candidate providers
        (used for per-source estimates); ``qualifier`` separates their cache
        entries from each other.
        """
        key = cache_key(identity, data_tag(request_type, qualifier))
        candidates = list(only) if only is not None else self.provider_order(primary)
        # Callers only share a fetch when they would have asked the same providers in the same order
        flight_key = f"{key}|{','.join(candidates)}"
        return await self._coalesce(flight_key, lambda: self._run(identity, request_type, key, candidates))

    async def _coalesce(self, key: str, factory: Callable[[], Awaitable[FetchResult]]) -> FetchResult:
        flight = self._inflight.get(key)
        if flight is None:
            flight = _InFlight(asyncio.ensure_future(factory()))
            self._inflight[key] = flight

            def _done(_task, key=key, flight=flight):
                if self._inflight.get(key) is flight:
                    del self._inflight[key]

            flight.task.add_done_callback(_done)
        else:
            logger.debug("Joining in-flight fetch for %s", key)
        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            # Last interested caller gone: stop spending quota on it
            if flight.waiters == 0 and not flight.task.done():
                flight.task.cancel()

    # ----- state machine -----

    def _transition(self, result: FetchResult, state: FetchState, provider_id: Optional[str] = None):
        logger.debug("%s %s -> %s (%s)", result.request_type.value, result.state.value, state.value,
                     provider_id or "-")
        result.state = state

    def _read_cache(self, key: str, request_type: RequestType) -> Any:
        payload = self.cache.get(key)
        if payload is None:
            CACHE_LOOKUPS.labels(data_type=request_type.value, result="miss").inc()
            return None
        try:
            data = _PAYLOAD_ADAPTERS[request_type].validate_python(payload)
        except ValidationError:
            logger.warning("Discarding cache entry %s with an outdated shape", key)
            self.cache.remove(key)
            CACHE_LOOKUPS.labels(data_type=request_type.value, result="miss").inc()
            return None
        CACHE_LOOKUPS.labels(data_type=request_type.value, result="hit").inc()
        return data

    async def _run(
        self, identity: PropertyIdentity, request_type: RequestType, key: str, candidates: List[str]
    ) -> FetchResult:
        result = FetchResult(request_type=request_type, cache_key=key)

        # Cache is provider-agnostic, so one lookup covers every candidate
        cached = self._read_cache(key, request_type)
        if cached is not None:
            result.data = cached
            result.from_cache = True
            self._transition(result, FetchState.DONE)
            return result

        eligible = []
        for pid in candidates:
            adapter = self.providers.get(pid)
            if adapter is None or not adapter.can_handle(request_type):
                continue
            period = self.ledger.period_key(pid)
            if not self.ledger.is_available(pid, period):
                logger.info("Skipping %s for %s: quota threshold reached", pid, request_type.value)
                result.quota_skipped.append(pid)
                continue
            eligible.append(pid)

        request = ProviderRequest(identity=identity, request_type=request_type)
        for index, pid in enumerate(eligible):
            payload = await self._attempt_provider(self.providers[pid], request, result)
            if payload is not None:
                self.cache.set(key, payload, TTL_CLASS_FOR[request_type])
                result.data = payload
                result.provider_id = pid
                self._transition(result, FetchState.DONE, pid)
                return result
            if index + 1 < len(eligible):
                self._transition(result, FetchState.FALLING_BACK, pid)
                logger.warning("Falling back from %s for %s", pid, request_type.value)

        self._transition(result, FetchState.EXHAUSTED)
        logger.warning(
            "No provider returned %s for %s (tried %s, quota-skipped %s)",
            request_type.value, identity.full_address, eligible or "none", result.quota_skipped or "none",
        )
        return result

    async def _attempt_provider(
        self, adapter: ProviderAdapter, request: ProviderRequest, result: FetchResult
    ) -> Any:
        """Try one provider up to ``max_retries + 1`` times. Returns usable payload or None."""
        pid = adapter.provider_id
        rtype = request.request_type
        for attempt in range(self.max_retries + 1):
            period = self.ledger.period_key(pid)
            # Concurrent fetches may have used up the quota since the candidates were filtered
            if not self.ledger.is_available(pid, period):
                if attempt == 0:
                    logger.info("Skipping %s for %s: quota threshold reached", pid, rtype.value)
                    result.quota_skipped.append(pid)
                else:
                    logger.info("Stopping retries on %s: quota threshold reached", pid)
                return None
            self._transition(result, FetchState.ATTEMPTING, pid)
            # Charged before the call: the provider bills attempts, not successes
            self.ledger.increment(pid, period)
            try:
                raw = await asyncio.wait_for(adapter.fetch(request), timeout=self.attempt_timeout)
                if raw.headers:
                    self.ledger.ingest_headers(pid, period, raw.headers)
                try:
                    payload = adapter.normalize(rtype, raw)
                except (KeyError, TypeError, ValueError, AttributeError) as exc:
                    raise MalformedPayloadError("could not normalize response", provider_id=pid,
                                                original_error=exc)
            except asyncio.TimeoutError as exc:
                error: ProviderError = ProviderTimeoutError(
                    f"no response within {self.attempt_timeout}s", provider_id=pid, original_error=exc
                )
            except ProviderError as exc:
                error = exc
            except Exception as exc:
                logger.error("Unexpected error from %s for %s", pid, rtype.value, exc_info=True)
                error = ProviderError(f"unexpected {type(exc).__name__}", provider_id=pid, original_error=exc)
            else:
                payload = sanitize(rtype, payload)
                if is_empty(payload):
                    self._record(result, pid, attempt, "empty")
                    return None
                self._record(result, pid, attempt, "success")
                self._transition(result, FetchState.SUCCESS, pid)
                return payload

            outcome = "transient_error" if error.transient else "error"
            self._record(result, pid, attempt, outcome, error)
            if not error.transient:
                logger.warning("%s failed for %s: %s", pid, rtype.value, error)
                return None
            if attempt < self.max_retries:
                delay = self.backoff_base * (2 ** attempt)
                self._transition(result, FetchState.RETRYING, pid)
                logger.warning(
                    "Attempt %d/%d on %s failed: %s. Retrying in %ss...",
                    attempt + 1, self.max_retries + 1, pid, error, delay,
                )
                await self._sleep(delay)
        logger.warning("%s exhausted its retries for %s", pid, rtype.value)
        return None

    def _record(self, result: FetchResult, pid: str, attempt: int, outcome: str,
                error: Optional[Exception] = None):
        result.attempts.append(AttemptRecord(pid, attempt + 1, outcome, str(error) if error else None))
        PROVIDER_ATTEMPTS.labels(provider=pid, request_type=result.request_type.value, outcome=outcome).inc()

    async def aclose(self) -> None:
        for adapter in self.providers.values():
            await adapter.aclose()
