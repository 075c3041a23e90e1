"""API-key guard for the collector HTTP surface.

Every collection and stats route depends on :func:`require_api_key`; only
the health probe is open.
"""
import os
import secrets
from typing import Annotated, Optional

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader


API_KEY_HEADER = "X-COLLECTOR-API-KEY"
API_KEY_ENV = "COLLECTOR_API_KEY"

api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


def configured_api_key() -> str:
    """Key the server accepts, read per request so rotation needs no restart.

    Raises:
        RuntimeError: If COLLECTOR_API_KEY is unset or empty
    """
    key = os.getenv(API_KEY_ENV)
    if not key:
        raise RuntimeError(f"{API_KEY_ENV} environment variable not configured")
    return key


async def require_api_key(
    api_key: Annotated[Optional[str], Security(api_key_header)] = None
) -> str:
    """FastAPI dependency returning the caller's key once it matches.

    Raises:
        RuntimeError: If the server has no key configured
        HTTPException: 401 for a missing or wrong key
    """
    expected = configured_api_key()

    # Missing and wrong keys look the same to the caller
    if api_key is None or not secrets.compare_digest(api_key.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "API-Key"},
        )
    return api_key
