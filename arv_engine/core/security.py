from fastapi import Header, HTTPException
from starlette.status import HTTP_401_UNAUTHORIZED

from .config import settings


def require_api_key(x_api_key: str | None = Header(default=None, alias="x-api-key")):
    """
    Simple header-based API key check.
    The service is meant for a handful of users; a shared key is enough.
    """
    if not settings.API_KEY:
        # If unset, we allow requests (dev convenience).
        return
    if x_api_key != settings.API_KEY:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Invalid API key")
