"""FastAPI application for the CargoPulse API.

Provides the main application instance with routers, middleware,
and exception handlers configured.
"""

import logging
import os
import sys
import time as _time
from contextlib import asynccontextmanager
from importlib.metadata import version as _pkg_version
from typing import Any

from fastapi import FastAPI, Request

# Configure logging to stdout for uvicorn to capture
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logging.getLogger("src").setLevel(logging.INFO)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.api.middleware.auth import maybe_require_api_key, validate_api_key_strength
from src.api.routes import blobs, field_intake, shipments, webhooks
from src.db.connection import close_db, init_db
from src.errors import CargoPulseError
from src.errors.domain import NotFoundError
from src.utils.paths import ensure_dirs_exist

logger = logging.getLogger(__name__)

_startup_time: float = 0.0


def _parse_allowed_origins() -> list[str]:
    """Parse comma-separated CORS allowlist from ALLOWED_ORIGINS env var."""
    raw = os.environ.get("ALLOWED_ORIGINS", "").strip()
    if not raw:
        return []
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def _package_version() -> str:
    try:
        return _pkg_version("cargopulse")
    except Exception:
        return "unknown"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Async lifespan: schema setup on startup, engine disposal on shutdown."""
    global _startup_time

    _startup_time = _time.time()
    validate_api_key_strength()
    ensure_dirs_exist()
    init_db()

    if not os.environ.get("TWILIO_WEBHOOK_SECRET", "").strip():
        logger.warning(
            "TWILIO_WEBHOOK_SECRET is not set; WhatsApp status callbacks are "
            "rejected and delivery status will not be tracked."
        )

    yield

    close_db()


app = FastAPI(
    title="CargoPulse API",
    description="Field intake sync, shipment tracking and customer notifications",
    version="0.1.0",
    lifespan=lifespan,
)

# Optional API auth for /api/* when CARGOPULSE_API_KEY is configured.
app.middleware("http")(maybe_require_api_key)

# CORS allowlist is env-driven. If unset, CORS is disabled (same-origin only).
allowed_origins = _parse_allowed_origins()
if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-API-Key", "X-User-Id"],
    )


@app.exception_handler(CargoPulseError)
async def cargopulse_error_handler(
    request: Request, exc: CargoPulseError
) -> JSONResponse:
    """Handle CargoPulseError exceptions with consistent format.

    Args:
        request: The incoming request.
        exc: The CargoPulseError exception.

    Returns:
        JSONResponse with the error body and the code's HTTP status.
    """
    if exc.status_code >= 500:
        logger.error("%s on %s %s", exc, request.method, request.url.path)
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Render HTTPException with the same ``error`` key as other failures."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


# Include routers
app.include_router(field_intake.router, prefix="/api/v1")
app.include_router(shipments.router, prefix="/api/v1")
app.include_router(blobs.router, prefix="/api/v1")
app.include_router(webhooks.router, prefix="/api/v1")


@app.get("/health")
def health_check() -> dict:
    """Liveness check with version and uptime.

    Returns:
        Dictionary with health status and metrics.
    """
    uptime = int(_time.time() - _startup_time) if _startup_time else 0
    return {
        "status": "healthy",
        "version": _package_version(),
        "uptime_seconds": uptime,
    }


@app.get("/readyz")
def readiness_check():
    """Dependency-aware readiness check for local/container deployments."""
    from sqlalchemy import text

    from src.db.connection import get_db_context
    from src.services.whatsapp_client import TwilioWhatsAppClient

    uptime = int(_time.time() - _startup_time) if _startup_time else 0
    checks: dict[str, dict[str, Any]] = {}

    # DB connectivity gate.
    try:
        with get_db_context() as db:
            db.execute(text("SELECT 1"))
        checks["database"] = {"status": "ok"}
    except Exception as exc:
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "uptime_seconds": uptime,
                "checks": {
                    "database": {"status": "error", "message": str(exc)},
                },
            },
        )

    status = "ready"
    if TwilioWhatsAppClient.from_env().is_configured():
        checks["whatsapp"] = {"status": "configured"}
    else:
        checks["whatsapp"] = {"status": "log_only"}

    if os.environ.get("BLOB_SIGNING_SECRET", "").strip():
        checks["blob_signing_secret"] = {"status": "ok"}
    else:
        checks["blob_signing_secret"] = {
            "status": "degraded",
            "message": "BLOB_SIGNING_SECRET missing; using development secret",
        }
        status = "degraded"

    return {
        "status": status,
        "uptime_seconds": uptime,
        "checks": checks,
    }


@app.get("/api")
def api_root() -> dict:
    """API root with links to docs.

    Returns:
        Dictionary with API info and links.
    """
    return {
        "name": "CargoPulse API",
        "version": "0.1.0",
        "docs": "/docs",
        "redoc": "/redoc",
    }
