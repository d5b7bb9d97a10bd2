import os
from typing import Dict, List

from pydantic import BaseModel


class ProviderQuota(BaseModel):
    limit: int
    threshold: int           # soft cap, stop calling once used >= threshold
    period: str = "month"    # month | day


def _env_float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


class Settings(BaseModel):
    # Basic
    ENV: str = os.getenv("ENV", "dev")
    DEFAULT_CURRENCY: str = os.getenv("CURRENCY", "USD")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Providers
    PROVIDER_MODE: str = os.getenv("PROVIDER_MODE", "mock")        # mock | http
    PRIMARY_PROVIDER: str = os.getenv("PRIMARY_PROVIDER", "auto")  # auto | premium | search | listing | generative
    RAPIDAPI_KEY: str | None = os.getenv("RAPIDAPI_KEY")
    PREMIUM_BASE_URL: str = os.getenv("PREMIUM_BASE_URL", "https://private-zillow.p.rapidapi.com")
    PREMIUM_HOST: str = os.getenv("PREMIUM_HOST", "private-zillow.p.rapidapi.com")
    SEARCH_BASE_URL: str = os.getenv("SEARCH_BASE_URL", "https://us-real-estate.p.rapidapi.com")
    SEARCH_HOST: str = os.getenv("SEARCH_HOST", "us-real-estate.p.rapidapi.com")
    LISTING_BASE_URL: str = os.getenv("LISTING_BASE_URL", "https://redfin-com-data.p.rapidapi.com")
    LISTING_HOST: str = os.getenv("LISTING_HOST", "redfin-com-data.p.rapidapi.com")

    # LLM (generative last-resort comps)
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

    # Orchestration
    MAX_RETRIES: int = int(os.getenv("MAX_RETRIES", "3"))
    BACKOFF_BASE_SECONDS: float = _env_float("BACKOFF_BASE_SECONDS", "1.0")
    ATTEMPT_TIMEOUT_SECONDS: float = _env_float("ATTEMPT_TIMEOUT_SECONDS", "15")
    REQUEST_TIMEOUT_SECONDS: float = _env_float("REQUEST_TIMEOUT_SECONDS", "60")

    # Quotas (limits from the providers' billing plans)
    PROVIDER_PRIORITY: List[str] = ["premium", "search", "listing", "generative"]
    PROVIDER_QUOTAS: Dict[str, ProviderQuota] = {
        "premium": ProviderQuota(limit=250, threshold=225, period="month"),
        "search": ProviderQuota(limit=300, threshold=270, period="month"),
        "listing": ProviderQuota(limit=111, threshold=100, period="month"),
        "generative": ProviderQuota(limit=1500, threshold=1400, period="day"),
    }

    # Cache
    USE_REDIS: bool = os.getenv("USE_REDIS", "false").lower() == "true"
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    CACHE_MAXSIZE: int = int(os.getenv("CACHE_MAXSIZE", "4096"))
    CACHE_TTL_DAYS: Dict[str, float] = {
        "comps": 7,
        "estimate": 7,
        "property-detail": 30,
        "location": 30,
        "market-rate": 1,
    }

    # Reconciliation
    RECONCILIATION_WEIGHTS: Dict[str, float] = {
        "comps": 0.50,
        "premium": 0.25,
        "search": 0.25,
        "listing": 0.20,
    }
    DEFAULT_ESTIMATE_WEIGHT: float = 0.10
    RENOVATION_PREMIUM_CAP: float = 0.25
    DEFAULT_RENOVATION_PREMIUM: float = 0.25
    UNKNOWN_CONDITION_PREMIUM: float = 0.20

    # Historical validation
    DEVIATION_THRESHOLD: float = _env_float("DEVIATION_THRESHOLD", "0.15")

    # Security
    API_KEY: str | None = os.getenv("API_KEY")

    # CORS
    ALLOW_ORIGINS: str = os.getenv("ALLOW_ORIGINS", "*")

    # Metrics
    PROMETHEUS_ENABLED: bool = os.getenv("PROMETHEUS_ENABLED", "true").lower() == "true"

    def cache_ttl_seconds(self) -> Dict[str, float]:
        return {k: v * 86400 for k, v in self.CACHE_TTL_DAYS.items()}


settings = Settings()
