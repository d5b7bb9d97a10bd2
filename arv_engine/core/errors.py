"""
Exceptions raised by the data-acquisition core.

Only ``InvalidPropertyIdentityError`` is meant to reach callers. Provider errors
are raised by adapters and absorbed by the orchestrator, which retries the
transient ones and falls back on the rest.
"""
from typing import List, Optional


class ValuationError(Exception):
    """Base exception for the ARV engine."""


class InvalidPropertyIdentityError(ValuationError):
    """Raised when a caller passes an incomplete or malformed property identity."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("Invalid property identity: " + "; ".join(errors))


class ProviderError(ValuationError):
    """Base for failures talking to an external data provider."""

    transient = False

    def __init__(self, message: str, provider_id: Optional[str] = None,
                 original_error: Optional[Exception] = None):
        self.message = message
        self.provider_id = provider_id
        self.original_error = original_error
        super().__init__(message)

    def __str__(self):
        msg = self.message
        if self.provider_id:
            msg = f"[{self.provider_id}] {msg}"
        if self.original_error:
            msg += f" (Original: {self.original_error})"
        return msg


class ProviderTimeoutError(ProviderError):
    transient = True


class ProviderUnavailableError(ProviderError):
    """5xx responses and transport failures."""

    transient = True

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        self.status_code = status_code
        super().__init__(message, **kwargs)


class MalformedPayloadError(ProviderError):
    transient = True


class ProviderRateLimitError(ProviderError):
    """HTTP 429. The provider is out of quota, retrying only burns more."""

    def __init__(self, message: str, retry_after: Optional[float] = None, **kwargs):
        self.retry_after = retry_after
        super().__init__(message, **kwargs)


class ProviderRequestError(ProviderError):
    """Non-retryable 4xx or an error body returned with a 200."""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        self.status_code = status_code
        super().__init__(message, **kwargs)


class ProviderConfigurationError(ProviderError):
    """Missing credentials or base URL."""
