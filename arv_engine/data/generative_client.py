"""LLM-backed last-resort comps source."""

from __future__ import annotations

import json
import re
from typing import Any, List

import openai

from .base import Comp, ProviderAdapter, ProviderRequest, RawResponse, RequestType
from .normalize import make_comp
from ..core.errors import (
    MalformedPayloadError,
    ProviderConfigurationError,
    ProviderRateLimitError,
    ProviderRequestError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)

PROMPT = """
Generate 6 comparable homes that recently sold near {address}:
- 3 unremodeled/as-is properties (lower prices)
- 3 recently remodeled/renovated properties (higher prices)

Include realistic sale dates from the past 6 months, approximate distances in miles, and condition status.
Return a valid JSON array only, like:
[{{"address":"123 Main St","price":825000,"sqft":1600,"beds":3,"baths":2,"saleDate":"2024-08-15","distance":0.5,"condition":"remodeled"}}]

Condition should be either "unremodeled" or "remodeled".
Do NOT include markdown or explanations.
"""


class GenerativeProvider(ProviderAdapter):
    """
    Asks a chat model for plausible comps when every real source is out.
    Results are flagged ``is_real=False`` and carry a low quality score.
    """

    provider_id = "generative"
    handles = frozenset({RequestType.COMPS})

    def __init__(self, api_key: str | None, model: str, client: Any = None, timeout: float = 30.0):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client = client

    def _get_client(self):
        if self._client is None:
            if not self.api_key:
                raise ProviderConfigurationError("OPENAI_API_KEY missing", provider_id=self.provider_id)
            self._client = openai.AsyncOpenAI(api_key=self.api_key, timeout=self.timeout)
        return self._client

    async def fetch(self, request: ProviderRequest) -> RawResponse:
        if not self.can_handle(request.request_type):
            raise ProviderRequestError(
                f"{request.request_type.value} is not served by this provider", provider_id=self.provider_id
            )
        client = self._get_client()
        try:
            completion = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": "Return only valid JSON."},
                    {"role": "user", "content": PROMPT.format(address=request.identity.full_address)},
                ],
                temperature=0,
            )
        except openai.APITimeoutError as exc:
            raise ProviderTimeoutError("completion timed out", provider_id=self.provider_id, original_error=exc)
        except openai.APIConnectionError as exc:
            raise ProviderUnavailableError("connection failed", provider_id=self.provider_id, original_error=exc)
        except openai.RateLimitError as exc:
            raise ProviderRateLimitError("rate limit exceeded", provider_id=self.provider_id, original_error=exc)
        except openai.APIStatusError as exc:
            if exc.status_code >= 500:
                raise ProviderUnavailableError(
                    f"HTTP {exc.status_code}", status_code=exc.status_code,
                    provider_id=self.provider_id, original_error=exc,
                )
            raise ProviderRequestError(
                f"HTTP {exc.status_code}", status_code=exc.status_code,
                provider_id=self.provider_id, original_error=exc,
            )
        except openai.APIError as exc:
            raise MalformedPayloadError("unusable completion response", provider_id=self.provider_id,
                                        original_error=exc)
        content = completion.choices[0].message.content if completion.choices else None
        return RawResponse(body=content or "[]")

    def normalize(self, request_type: RequestType, raw: RawResponse) -> List[Comp]:
        text = _FENCE_RE.sub("", str(raw.body or "")).strip() or "[]"
        try:
            items = json.loads(text)
        except ValueError as exc:
            raise MalformedPayloadError("completion is not JSON", provider_id=self.provider_id, original_error=exc)
        if isinstance(items, dict):
            items = items.get("comps") or items.get("comparables") or []
        if not isinstance(items, list):
            raise MalformedPayloadError("expected a JSON array of comps", provider_id=self.provider_id)
        return [
            make_comp(
                provider_id=self.provider_id,
                quality_score=50,
                address=c.get("address"),
                price=c.get("price"),
                sqft=c.get("sqft"),
                beds=c.get("beds"),
                baths=c.get("baths"),
                sale_date=c.get("saleDate"),
                distance=c.get("distance"),
                condition=c.get("condition"),
                is_real=False,
            )
            for c in items
            if isinstance(c, dict)
        ]
