"""Shared-key gate for deployed CargoPulse servers.

Setting CARGOPULSE_API_KEY turns the gate on: every /api/* request must
then send the key in X-API-Key. Field devices get the key from their
config or the OS keychain. Which user is calling is a separate concern,
resolved from X-User-Id in src/api/dependencies.py.

Signed blob downloads carry their own HMAC signature and the WhatsApp
status callback carries the webhook secret, so both bypass the gate.
"""

import hmac
import logging
import os

from fastapi import Request
from fastapi.responses import JSONResponse, Response

logger = logging.getLogger(__name__)

MIN_API_KEY_LENGTH = 32

_UNGATED_PREFIXES = (
    "/api/v1/blobs/",
    "/api/v1/webhooks/",
)


def get_expected_api_key() -> str:
    """Configured shared key, or "" when the gate is off."""
    return os.environ.get("CARGOPULSE_API_KEY", "").strip()


def validate_api_key_strength() -> None:
    """Refuse to start with a guessable shared key.

    Raises:
        ValueError: If CARGOPULSE_API_KEY is set but shorter than
            MIN_API_KEY_LENGTH characters.
    """
    key = get_expected_api_key()
    if key and len(key) < MIN_API_KEY_LENGTH:
        raise ValueError(
            f"CARGOPULSE_API_KEY is too short ({len(key)} chars); "
            f"use at least {MIN_API_KEY_LENGTH}."
        )


def should_authenticate(path: str) -> bool:
    """Only /api/* is gated; health, docs and self-authenticating routes are not."""
    return path.startswith("/api/") and not path.startswith(_UNGATED_PREFIXES)


async def maybe_require_api_key(request: Request, call_next) -> Response:
    """HTTP middleware enforcing the shared key when one is configured."""
    expected_key = get_expected_api_key()
    if (
        not expected_key
        or request.method == "OPTIONS"
        or not should_authenticate(request.url.path)
    ):
        return await call_next(request)

    provided_key = request.headers.get("X-API-Key", "")
    if not hmac.compare_digest(provided_key.encode(), expected_key.encode()):
        logger.warning("Rejected %s %s: bad API key", request.method, request.url.path)
        return JSONResponse(status_code=401, content={"error": "Invalid or missing API key"})
    return await call_next(request)
