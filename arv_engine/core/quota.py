"""
Per-provider, per-period call accounting.

The ledger is advisory: it never blocks a call by itself. The orchestrator asks
``is_available`` before choosing a provider and calls ``increment`` once for
every outbound attempt, successful or not, since the provider bills the call
either way. Periods roll over implicitly because the period key changes.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .config import ProviderQuota
from .metrics import QUOTA_USED

logger = logging.getLogger(__name__)

# Response headers carrying in-band usage counters (RapidAPI gateways)
_LIMIT_HEADERS = ("x-ratelimit-requests-limit", "x-rapidapi-requests-limit")
_REMAINING_HEADERS = ("x-ratelimit-requests-remaining", "x-rapidapi-requests-remaining")

# Keep redis counters a little past the end of their period
_PERIOD_EXPIRY_SECONDS = {"month": 40 * 86400, "day": 2 * 86400}


@dataclass
class QuotaRecord:
    provider_id: str
    period_key: str
    used: int
    limit: Optional[int]
    threshold: Optional[int]

    @property
    def remaining(self) -> Optional[int]:
        if self.limit is None:
            return None
        return max(0, self.limit - self.used)

    @property
    def percent_used(self) -> int:
        if not self.limit:
            return 0
        return round(self.used / self.limit * 100)

    @property
    def status(self) -> str:
        pct = self.percent_used
        if pct >= 100:
            return "exhausted"
        if pct >= 90:
            return "critical"
        if pct >= 75:
            return "warning"
        return "healthy"


def period_key_for(period: str, now: datetime) -> str:
    if period == "month":
        return now.strftime("%Y-%m")
    return now.strftime("%Y-%m-%d")


class QuotaLedger:
    """Call counts keyed by (provider_id, period_key), in Redis or in-process."""

    def __init__(
        self,
        quotas: Mapping[str, ProviderQuota],
        redis_client: Any = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.quotas = dict(quotas)
        self.backend = redis_client
        self._clock = clock
        self._counts: Dict[Tuple[str, str], int] = {}

    def _redis_key(self, provider_id: str, period_key: str) -> str:
        return f"quota:{provider_id}:{period_key}"

    def _expiry_seconds(self, provider_id: str) -> int:
        quota = self.quotas.get(provider_id)
        return _PERIOD_EXPIRY_SECONDS.get(quota.period if quota else "day", 2 * 86400)

    def period_key(self, provider_id: str) -> str:
        quota = self.quotas.get(provider_id)
        return period_key_for(quota.period if quota else "day", self._clock())

    def threshold_for(self, provider_id: str) -> Optional[int]:
        quota = self.quotas.get(provider_id)
        return quota.threshold if quota else None

    def get_usage(self, provider_id: str, period_key: str) -> int:
        if self.backend:
            raw = self.backend.get(self._redis_key(provider_id, period_key))
            try:
                return int(raw) if raw is not None else 0
            except (TypeError, ValueError):
                return 0
        return self._counts.get((provider_id, period_key), 0)

    def increment(self, provider_id: str, period_key: str) -> int:
        if self.backend:
            key = self._redis_key(provider_id, period_key)
            used = int(self.backend.incr(key))
            if used == 1:
                self.backend.expire(key, self._expiry_seconds(provider_id))
        else:
            used = self._counts.get((provider_id, period_key), 0) + 1
            self._counts[(provider_id, period_key)] = used
        QUOTA_USED.labels(provider=provider_id).set(used)
        return used

    def is_available(self, provider_id: str, period_key: str, threshold: Optional[int] = None) -> bool:
        if threshold is None:
            threshold = self.threshold_for(provider_id)
        if threshold is None:
            return True
        return self.get_usage(provider_id, period_key) < threshold

    def ingest_headers(self, provider_id: str, period_key: str, headers: Mapping[str, str]) -> Optional[int]:
        """
        Adopt the provider's own usage count when it reports one and it is
        ahead of ours (calls made from other machines, or before a restart).
        """
        lowered = {k.lower(): v for k, v in headers.items()}
        limit = next((lowered[h] for h in _LIMIT_HEADERS if h in lowered), None)
        remaining = next((lowered[h] for h in _REMAINING_HEADERS if h in lowered), None)
        if limit is None or remaining is None:
            return None
        try:
            reported = int(limit) - int(remaining)
        except ValueError:
            return None
        current = self.get_usage(provider_id, period_key)
        if reported <= current:
            return current
        if self.backend:
            self.backend.set(self._redis_key(provider_id, period_key), reported, ex=self._expiry_seconds(provider_id))
        else:
            self._counts[(provider_id, period_key)] = reported
        QUOTA_USED.labels(provider=provider_id).set(reported)
        logger.info("Quota for %s synced from provider headers: %d used", provider_id, reported)
        return reported

    def record(self, provider_id: str, period_key: Optional[str] = None) -> QuotaRecord:
        period_key = period_key or self.period_key(provider_id)
        quota = self.quotas.get(provider_id)
        return QuotaRecord(
            provider_id=provider_id,
            period_key=period_key,
            used=self.get_usage(provider_id, period_key),
            limit=quota.limit if quota else None,
            threshold=quota.threshold if quota else None,
        )

    def snapshot(self) -> List[QuotaRecord]:
        return [self.record(pid) for pid in self.quotas]
