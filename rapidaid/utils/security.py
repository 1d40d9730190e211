import logging
import os

from fastapi import Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

# --- API Key Authentication ---
API_KEY_NAME = "X-API-Key"
api_key_header = APIKeyHeader(name=API_KEY_NAME, auto_error=False)


async def get_api_key(api_key: str = Depends(api_key_header)):
    """
    Dependency to validate the API key from the request header.

    The expected key is read from the environment on every request, so a key
    loaded from `.env` after this module was imported still applies.
    Raises HTTPException 401 if the key is missing or invalid.
    """
    expected_key = os.getenv("API_KEY")
    if not expected_key:
        # If the server has no API_KEY configured, authentication is disabled.
        logger.warning("API_KEY not configured. Allowing request without authentication.")
        return None

    if not api_key:
        logger.warning("API key missing from request.")
        raise HTTPException(status_code=401, detail="API key is missing")

    if api_key != expected_key:
        logger.warning("Invalid API key received.")
        raise HTTPException(status_code=401, detail="Invalid API key")

    return api_key


# --- Rate Limiting Setup ---
def create_limiter() -> Limiter:
    """
    Builds a rate limiter keyed on the client's IP address.

    Each app gets its own limiter: limits are registered per route name, so
    sharing one limiter between apps would count every request once per app.
    """
    return Limiter(key_func=get_remote_address)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Returns a JSON 429 response when a client exceeds its rate limit."""
    return JSONResponse(
        status_code=429,
        content={"detail": "Too many requests", "error": f"Rate limit exceeded: {exc.detail}"}
    )
