"""
HTTP surface: request validation, ETag handling, quota report.
"""

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from arv_engine.core.config import ProviderQuota, Settings, settings
from arv_engine.core.quota import QuotaLedger
from arv_engine.data.base import RequestType
from arv_engine.main import create_app
from arv_engine.services.orchestrator import FetchOrchestrator
from arv_engine.services.reconciliation import ReconciliationEngine
from arv_engine.services.validation import HistoricalValidator
from arv_engine.services.valuation_service import ValuationService

from conftest import ScriptedProvider, six_comps

BODY = {"address": "123 Main St", "city": "San Diego", "state": "CA", "zip": "92101", "depth": "minimal"}


@pytest.fixture
def premium():
    return ScriptedProvider("premium", {RequestType.COMPS}, {RequestType.COMPS: [six_comps("premium")]})


@pytest.fixture
def client(premium, cache):
    cfg = Settings()
    ledger = QuotaLedger(
        {"premium": ProviderQuota(limit=250, threshold=225)},
        clock=lambda: datetime(2026, 3, 15, tzinfo=timezone.utc),
    )
    service = ValuationService(
        FetchOrchestrator([premium], ledger, cache, attempt_timeout=None),
        ReconciliationEngine(cfg.RECONCILIATION_WEIGHTS),
        HistoricalValidator(cfg.DEVIATION_THRESHOLD),
    )
    return TestClient(create_app(service))


class TestMeta:
    def test_health_and_ping(self, client):
        assert client.get("/v1/health").json() == {"status": "ok"}
        assert client.get("/v1/ping").json() == {"pong": True}

    def test_request_id_is_echoed(self, client):
        r = client.get("/v1/ping", headers={"X-Request-Id": "abc-123"})
        assert r.headers["X-Request-Id"] == "abc-123"


class TestValuationEndpoint:
    def test_valuation_with_etag(self, client):
        r = client.post("/v1/valuation", json=BODY)
        assert r.status_code == 200
        data = r.json()
        assert data["reconciled_valuation"]["arv"] == 500_000
        assert data["reconciled_valuation"]["insufficient_data"] is False
        assert data["providers_used"] == ["premium"]
        assert data["validation_result"]["skipped"] is True
        assert data["comps"][0]["condition"] in ("remodeled", "unremodeled")
        assert r.headers["ETag"] == data["etag"]

    def test_matching_etag_returns_304(self, client, premium):
        first = client.post("/v1/valuation", json=BODY)
        etag = first.headers["ETag"]
        second = client.post("/v1/valuation", json=BODY, headers={"If-None-Match": etag})
        assert second.status_code == 304
        assert len(premium.calls) == 1  # second run came from cache

    def test_invalid_zip_is_rejected_before_any_fetch(self, client, premium):
        r = client.post("/v1/valuation", json=dict(BODY, zip="9210"))
        assert r.status_code == 422
        assert any("zip" in e for e in r.json()["detail"])
        assert premium.calls == []

    def test_blank_field_is_rejected(self, client):
        r = client.post("/v1/valuation", json=dict(BODY, city="  "))
        assert r.status_code == 422
        assert r.json()["detail"] == ["city is required"]

    def test_missing_field_is_rejected(self, client):
        body = dict(BODY)
        del body["state"]
        assert client.post("/v1/valuation", json=body).status_code == 422

    def test_override_arv(self, client, premium):
        r = client.post("/v1/valuation", json=dict(BODY, override={"arv": 650000}))
        assert r.status_code == 200
        data = r.json()
        assert data["reconciled_valuation"]["arv"] == 650_000
        assert data["reconciled_valuation"]["confidence_score"] == 100
        assert premium.calls == []

    def test_override_comps(self, client):
        comps = [
            {"address": "1 A St", "price": 400000, "sqft": 1500, "condition": "unremodeled"},
            {"address": "2 B St", "price": 400000, "sqft": 1500, "condition": "unremodeled"},
        ]
        r = client.post("/v1/valuation", json=dict(BODY, override={"comps": comps}))
        assert r.json()["reconciled_valuation"]["arv"] == 500_000

    def test_api_key_guard(self, client, monkeypatch):
        monkeypatch.setattr(settings, "API_KEY", "secret")
        assert client.post("/v1/valuation", json=BODY).status_code == 401
        ok = client.post("/v1/valuation", json=BODY, headers={"x-api-key": "secret"})
        assert ok.status_code == 200


class TestQuotaEndpoint:
    def test_snapshot_reflects_calls(self, client):
        client.post("/v1/valuation", json=BODY)
        rows = {row["provider_id"]: row for row in client.get("/v1/quota").json()}
        assert set(rows) == {"premium"}
        assert rows["premium"]["used"] == 1
        assert rows["premium"]["remaining"] == 249
        assert rows["premium"]["status"] == "healthy"
        assert rows["premium"]["period_key"] == "2026-03"
