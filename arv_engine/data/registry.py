from typing import Dict, List

from .base import ProviderAdapter, RequestType
from .generative_client import GenerativeProvider
from .listing_client import ListingProvider
from .mock_client import MockProvider
from .premium_client import PremiumProvider
from .search_client import SearchProvider
from ..core.config import Settings, settings as default_settings


def _http_providers(cfg: Settings) -> Dict[str, ProviderAdapter]:
    timeout = cfg.ATTEMPT_TIMEOUT_SECONDS
    return {
        "premium": PremiumProvider(cfg.PREMIUM_BASE_URL, cfg.RAPIDAPI_KEY, cfg.PREMIUM_HOST, timeout),
        "search": SearchProvider(cfg.SEARCH_BASE_URL, cfg.RAPIDAPI_KEY, cfg.SEARCH_HOST, timeout),
        "listing": ListingProvider(cfg.LISTING_BASE_URL, cfg.RAPIDAPI_KEY, cfg.LISTING_HOST, timeout),
        "generative": GenerativeProvider(cfg.OPENAI_API_KEY, cfg.OPENAI_MODEL, timeout=timeout),
    }


def _mock_providers() -> Dict[str, ProviderAdapter]:
    # Same capability split as the real providers
    return {
        "premium": MockProvider("premium", PremiumProvider.endpoints.keys(), quality_score=100),
        "search": MockProvider("search", SearchProvider.endpoints.keys(), quality_score=100),
        "listing": MockProvider("listing", ListingProvider.endpoints.keys(), quality_score=90),
        "generative": MockProvider("generative", {RequestType.COMPS}, quality_score=50),
    }


def build_providers(cfg: Settings = default_settings) -> List[ProviderAdapter]:
    """
    Provider table in default priority order. Adding a provider means adding
    it here and to ``PROVIDER_PRIORITY``; the orchestrator is untouched.
    """
    table = _http_providers(cfg) if cfg.PROVIDER_MODE == "http" else _mock_providers()
    ordered = [table[pid] for pid in cfg.PROVIDER_PRIORITY if pid in table]
    ordered += [adapter for pid, adapter in table.items() if pid not in cfg.PROVIDER_PRIORITY]
    return ordered
