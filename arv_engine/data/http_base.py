import logging
from typing import Any, Dict, Optional

import httpx

from .base import ProviderAdapter, ProviderRequest, RawResponse, RequestType
from ..core.errors import (
    MalformedPayloadError,
    ProviderConfigurationError,
    ProviderRateLimitError,
    ProviderRequestError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)

logger = logging.getLogger(__name__)


class HttpProviderAdapter(ProviderAdapter):
    """
    Shared plumbing for RapidAPI-style JSON providers: one GET per request
    type, HTTP failures mapped onto the provider error taxonomy.
    """

    endpoints: Dict[RequestType, str] = {}

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        host: Optional[str] = None,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.host = host
        self.timeout = timeout
        self._client = client

    @property
    def handles(self):
        return frozenset(self.endpoints)

    def build_params(self, request: ProviderRequest) -> Dict[str, Any]:
        ident = request.identity
        return {"address": ident.address, "city": ident.city, "state": ident.state, "zip": ident.zip}

    def headers(self) -> Dict[str, str]:
        headers = {"X-RapidAPI-Key": self.api_key or ""}
        if self.host:
            headers["X-RapidAPI-Host"] = self.host
        return headers

    async def fetch(self, request: ProviderRequest) -> RawResponse:
        path = self.endpoints.get(request.request_type)
        if path is None:
            raise ProviderRequestError(
                f"{request.request_type.value} is not served by this provider", provider_id=self.provider_id
            )
        if not self.api_key:
            raise ProviderConfigurationError("API key not configured", provider_id=self.provider_id)
        params = {k: v for k, v in self.build_params(request).items() if v is not None}
        return await self._get(path, params)

    async def _get(self, path: str, params: Dict[str, Any]) -> RawResponse:
        url = f"{self.base_url}{path}"
        logger.debug("GET %s params=%s", url, params)
        try:
            if self._client is not None:
                r = await self._client.get(url, params=params, headers=self.headers())
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    r = await client.get(url, params=params, headers=self.headers())
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError("request timed out", provider_id=self.provider_id, original_error=exc)
        except httpx.TransportError as exc:
            raise ProviderUnavailableError("transport failure", provider_id=self.provider_id, original_error=exc)
        except httpx.DecodingError as exc:
            raise MalformedPayloadError("response body could not be decoded", provider_id=self.provider_id,
                                        original_error=exc)
        except httpx.HTTPError as exc:
            raise ProviderRequestError("request failed", provider_id=self.provider_id, original_error=exc)

        if r.status_code == 429:
            retry_after = r.headers.get("retry-after")
            raise ProviderRateLimitError(
                "rate limit exceeded",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
                provider_id=self.provider_id,
            )
        if r.status_code >= 500:
            raise ProviderUnavailableError(
                f"HTTP {r.status_code}", status_code=r.status_code, provider_id=self.provider_id
            )
        if r.status_code >= 400:
            raise ProviderRequestError(
                f"HTTP {r.status_code}", status_code=r.status_code, provider_id=self.provider_id
            )

        try:
            body = r.json()
        except ValueError as exc:
            raise MalformedPayloadError("response is not JSON", provider_id=self.provider_id, original_error=exc)
        if isinstance(body, dict) and body.get("error"):
            err = body["error"]
            message = err.get("message") if isinstance(err, dict) else body.get("message") or str(err)
            raise ProviderRequestError(message or "provider error", provider_id=self.provider_id)
        return RawResponse(body=body, status_code=r.status_code, headers=dict(r.headers))

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
