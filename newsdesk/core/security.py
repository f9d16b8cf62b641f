"""
Operator surface protection: API-key auth and slowapi rate limiting.

Maintenance endpoints are limited per caller: per API-key fingerprint when a
key is sent, per client address otherwise, so one noisy operator script does
not exhaust the budget of everyone behind the same proxy.
"""

from __future__ import annotations

import hashlib
import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader
from slowapi import Limiter
from slowapi.util import get_remote_address

from newsdesk.core.config import Settings, get_settings
from newsdesk.core.logging import get_logger

logger = get_logger(__name__)

API_KEY_HEADER = "X-API-Key"


def key_fingerprint(api_key: str) -> str:
    """Short stable digest, safe to log and to use as a limiter bucket."""
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:16]


def operator_rate_key(request: Request) -> str:
    api_key = request.headers.get(API_KEY_HEADER)
    if api_key:
        return f"key:{key_fingerprint(api_key)}"
    return f"ip:{get_remote_address(request)}"


# attached to the app in main.py
limiter = Limiter(key_func=operator_rate_key)

_api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


async def verify_api_key(
    request: Request,
    api_key: Annotated[str | None, Security(_api_key_header)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> str:
    if not api_key or not secrets.compare_digest(api_key, settings.api_key):
        logger.warning(
            "api_key_rejected",
            path=request.url.path,
            fingerprint=key_fingerprint(api_key) if api_key else None,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or missing API key",
        )
    return api_key
