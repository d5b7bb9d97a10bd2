"""
Shared fixtures: scripted providers, a controllable clock, and a ledger /
cache / orchestrator wired the way the service wires them.
"""

import asyncio
from datetime import date, datetime, timezone

import pytest

from arv_engine.core.cache import CacheStore
from arv_engine.core.config import ProviderQuota, Settings
from arv_engine.core.quota import QuotaLedger
from arv_engine.data.base import Comp, Condition, PropertyIdentity, ProviderAdapter, RawResponse
from arv_engine.services.orchestrator import FetchOrchestrator

DAY = 86400


class FakeClock:
    """Settable wall clock for the cache timer (epoch seconds)."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedProvider(ProviderAdapter):
    """
    Provider whose responses are scripted per request type. Each fetch pops
    the next step; the last step repeats. An exception step is raised, any
    other step is returned as the normalized payload.
    """

    def __init__(self, provider_id, handles, script=None, headers=None):
        self.provider_id = provider_id
        self.handles = frozenset(handles)
        self.script = {rt: list(steps) for rt, steps in (script or {}).items()}
        self.headers = headers or {}
        self.calls = []
        self.closed = False

    async def fetch(self, request):
        self.calls.append(request.request_type)
        steps = self.script.get(request.request_type) or [None]
        step = steps.pop(0) if len(steps) > 1 else steps[0]
        if isinstance(step, BaseException):
            raise step
        return RawResponse(body=step, headers=dict(self.headers))

    def normalize(self, request_type, raw):
        return raw.body

    async def aclose(self):
        self.closed = True


class BlockingProvider(ProviderAdapter):
    """Provider whose fetch waits on ``release``; records whether it was cancelled."""

    def __init__(self, provider_id, handles, payload=None):
        self.provider_id = provider_id
        self.handles = frozenset(handles)
        self.payload = payload
        self.release = asyncio.Event()
        self.started = asyncio.Event()
        self.calls = 0
        self.cancelled = False

    async def fetch(self, request):
        self.calls += 1
        self.started.set()
        try:
            await self.release.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return RawResponse(body=self.payload)

    def normalize(self, request_type, raw):
        return raw.body


def make_comp(price, condition=Condition.UNKNOWN, sqft=1500, provider="p1", sale_date=None,
              distance=None, beds=3, baths=2, quality=100):
    return Comp(
        address=f"{int(price)} Test St",
        price=price,
        sqft=sqft,
        beds=beds,
        baths=baths,
        sale_date=sale_date,
        distance=distance,
        condition=condition,
        source_provider_id=provider,
        quality_score=quality,
    )


def six_comps(provider="p1"):
    """3 unremodeled around 400k and 3 remodeled around 500k."""
    return [
        make_comp(395_000, Condition.UNREMODELED, provider=provider),
        make_comp(400_000, Condition.UNREMODELED, provider=provider),
        make_comp(405_000, Condition.UNREMODELED, provider=provider),
        make_comp(495_000, Condition.REMODELED, provider=provider),
        make_comp(500_000, Condition.REMODELED, provider=provider),
        make_comp(505_000, Condition.REMODELED, provider=provider),
    ]


@pytest.fixture
def identity():
    return PropertyIdentity("123 Main St", "San Diego", "CA", "92101")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return CacheStore(Settings().cache_ttl_seconds(), timer=clock)


@pytest.fixture
def quotas():
    return {
        "p1": ProviderQuota(limit=100, threshold=90, period="month"),
        "p2": ProviderQuota(limit=100, threshold=90, period="month"),
        "p3": ProviderQuota(limit=50, threshold=45, period="day"),
    }


@pytest.fixture
def ledger(quotas):
    return QuotaLedger(quotas, clock=lambda: datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_orchestrator(ledger, cache, sleeps):
    async def _sleep(delay):
        sleeps.append(delay)

    def _build(providers, **kwargs):
        kwargs.setdefault("max_retries", 3)
        kwargs.setdefault("backoff_base", 1.0)
        kwargs.setdefault("attempt_timeout", None)
        return FetchOrchestrator(providers, ledger, cache, sleep=_sleep, **kwargs)

    return _build


@pytest.fixture
def today():
    return date(2026, 3, 15)
