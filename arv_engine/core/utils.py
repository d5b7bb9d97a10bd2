import hashlib
from datetime import date, datetime, timezone
from typing import Any, Mapping, Optional


def fnv1a_32(s: str) -> int:
    """Deterministic, fast hash for seed generation."""
    h = 0x811c9dc5
    for c in s.encode("utf-8"):
        h ^= c
        h = (h * 0x01000193) & 0xFFFFFFFF
    return h


def seeded_rand(seed: int, n: int = 1) -> list[float]:
    """
    Stateless pseudo-random generator (Mulberry32-like) so
    same seed → same outputs without storing PRNG state.
    """
    out = []
    t = (seed + 0x6D2B79F5) & 0xFFFFFFFF
    for _ in range(n):
        t = (t ^ (t >> 15)) * (t | 1) & 0xFFFFFFFF
        t ^= t + ((t ^ (t >> 7)) * (t | 61) & 0xFFFFFFFF)
        r = ((t ^ (t >> 14)) & 0xFFFFFFFF) / 4294967296.0
        out.append(r)
    return out


def weak_etag(payload_bytes: bytes) -> str:
    """Weak ETag for client-side conditional requests."""
    h = hashlib.sha256(payload_bytes).hexdigest()[:24]
    return f'W/"{h}"'


def first_present(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """
    Return the first non-empty value among ``keys``.
    Providers rename fields between endpoints (``livingArea`` vs ``sqft``),
    so adapters probe a list of aliases.
    """
    for key in keys:
        value = data.get(key) if isinstance(data, Mapping) else None
        if value not in (None, "", 0):
            return value
    return default


def first_set(data: Mapping[str, Any], *keys: str) -> Any:
    """Like ``first_present`` but keeps zeros (a 0% change is a real value)."""
    for key in keys:
        value = data.get(key) if isinstance(data, Mapping) else None
        if value not in (None, ""):
            return value
    return None


def dig(data: Any, *path: str) -> Any:
    """Nested lookup that returns None instead of raising on missing levels."""
    for key in path:
        if not isinstance(data, Mapping):
            return None
        data = data.get(key)
    return data


def to_float(value: Any, default: Optional[float] = None) -> Optional[float]:
    if value is None or value == "":
        return default
    if isinstance(value, str):
        value = value.replace("$", "").replace(",", "").strip()
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_date(value: Any) -> Optional[date]:
    """
    Accepts ISO dates, ISO datetimes and epoch milliseconds
    (the listing portals return sale dates in all three shapes).
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        seconds = value / 1000.0 if value > 10_000_000_000 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc).date()
        except (OverflowError, OSError, ValueError):
            return None
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    for fmt in ("%m/%d/%Y", "%Y/%m/%d"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def years_between(start: date, end: date) -> float:
    return (end - start).days / 365.25
