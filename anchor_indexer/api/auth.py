"""
``X-API-KEY`` authentication for the control and read endpoints.

``API_KEYS`` holds a comma-separated list of accepted keys. When it is
unset the API runs open, which is how local development works.
"""

import secrets

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from anchor_indexer.config.settings import get_settings

api_key_header = APIKeyHeader(name="X-API-KEY", auto_error=False)

DEV_MODE_KEY = "dev-mode"


def _configured_keys(raw: str | None) -> list[str]:
    return [key.strip() for key in (raw or "").split(",") if key.strip()]


async def verify_api_key(api_key: str | None = Security(api_key_header)) -> str:
    """
    Return the caller's key, or ``DEV_MODE_KEY`` when no keys are configured.

    Raises:
        HTTPException: 401 if the header is missing or the key is unknown
    """
    keys = _configured_keys(get_settings().api_keys)
    if not keys:
        return DEV_MODE_KEY

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key. Provide X-API-KEY header.",
        )

    if not any(secrets.compare_digest(api_key, key) for key in keys):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    return api_key
