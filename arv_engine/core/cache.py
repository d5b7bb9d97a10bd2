import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from cachetools import TLRUCache
from pydantic_core import to_jsonable_python

from ..data.base import TtlClass

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    key: str
    payload: Any
    fetched_at: float
    ttl_class: TtlClass
    expires_at: float


class CacheStore:
    """
    Type-keyed TTL store over Redis/in-memory.

    The TTL of an entry comes from its TTL class, never from the caller, so a
    data type is cached for the same duration everywhere. Entries are stored
    and returned whole; nothing is merged across keys.
    """
    def __init__(
        self,
        ttl_seconds: Mapping[str, float],
        maxsize: int = 4096,
        redis_client: Any = None,
        timer: Callable[[], float] = time.time,
    ):
        self._ttl = {TtlClass(k): float(v) for k, v in ttl_seconds.items()}
        missing = set(TtlClass) - set(self._ttl)
        if missing:
            raise ValueError(f"No TTL configured for: {sorted(m.value for m in missing)}")
        self._timer = timer
        self.backend = redis_client
        self._local = TLRUCache(maxsize=maxsize, ttu=self._ttu, timer=timer)

    @staticmethod
    def _ttu(key: str, entry: CacheEntry, now: float) -> float:
        return entry.expires_at

    def ttl_for(self, ttl_class: TtlClass | str) -> float:
        return self._ttl[TtlClass(ttl_class)]

    def entry(self, key: str) -> CacheEntry | None:
        if self.backend:
            raw = self.backend.get(key)
            if raw is None:
                return None
            try:
                doc = json.loads(raw)
                entry = CacheEntry(
                    key=key,
                    payload=doc["payload"],
                    fetched_at=float(doc["fetched_at"]),
                    ttl_class=TtlClass(doc["ttl_class"]),
                    expires_at=float(doc["expires_at"]),
                )
            except (ValueError, KeyError, TypeError):
                logger.warning("Dropping unreadable cache entry %s", key)
                self.backend.delete(key)
                return None
        else:
            entry = self._local.get(key)
            if entry is None:
                return None
        # Redis expiry has second granularity; the stored deadline is authoritative.
        if entry.expires_at <= self._timer():
            self.remove(key)
            return None
        return entry

    def get(self, key: str) -> Any | None:
        entry = self.entry(key)
        return entry.payload if entry else None

    def has(self, key: str) -> bool:
        return self.entry(key) is not None

    def set(self, key: str, payload: Any, ttl_class: TtlClass | str) -> None:
        ttl_class = TtlClass(ttl_class)
        ttl = self._ttl[ttl_class]
        now = self._timer()
        entry = CacheEntry(key=key, payload=payload, fetched_at=now, ttl_class=ttl_class, expires_at=now + ttl)
        if self.backend:
            doc = {
                "payload": to_jsonable_python(payload),
                "fetched_at": entry.fetched_at,
                "ttl_class": ttl_class.value,
                "expires_at": entry.expires_at,
            }
            self.backend.setex(key, max(1, int(ttl)), json.dumps(doc, separators=(",", ":")))
        else:
            self._local[key] = entry

    def remove(self, key: str) -> None:
        if self.backend:
            self.backend.delete(key)
        else:
            self._local.pop(key, None)
