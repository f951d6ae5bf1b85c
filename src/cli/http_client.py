"""HTTP client implementation of CargoPulseClient.

Thin wrapper around httpx that talks to the CargoPulse API. Error
responses raise CargoPulseClientError, never typer.Exit, so the client
is reusable by the sync engine, scripts and tests.
"""

import json
import logging
from collections.abc import Sequence

import httpx

from src.cli.protocol import CargoPulseClientError, HealthStatus
from src.offline.models import OutboxBinary
from src.offline.transport import IntakeSubmitResult

logger = logging.getLogger(__name__)

INTAKE_PATH = "/api/v1/field/intake"


class HttpClient:
    """CargoPulseClient implementation that talks to the server over HTTP."""

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8000",
        user_id: str = "",
        api_key: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize with server base URL and caller identity.

        Args:
            base_url: The server's HTTP base URL.
            user_id: Sent as X-User-Id on every request.
            api_key: Sent as X-API-Key when the server requires one.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (ASGITransport in tests).
        """
        self._base_url = base_url
        self._user_id = user_id
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self):
        """Open httpx async client."""
        headers = {}
        if self._api_key:
            headers["X-API-Key"] = self._api_key
        if self._user_id:
            headers["X-User-Id"] = self._user_id
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers=headers,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Close httpx async client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("HttpClient used outside 'async with'")
        return self._client

    def _raise_for_status(self, resp: httpx.Response) -> None:
        """Raise CargoPulseClientError on non-2xx responses.

        Args:
            resp: httpx.Response to check.

        Raises:
            CargoPulseClientError: On non-2xx status codes.
        """
        if resp.status_code < 400:
            return
        error_code = None
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            message = str(body["error"])
            error_code = body.get("error_code")
        else:
            message = f"Request failed ({resp.status_code})"
        raise CargoPulseClientError(
            message=message,
            status_code=resp.status_code,
            error_code=error_code,
        )

    async def submit_intake(
        self,
        client_event_id: str,
        payload: dict,
        photos: Sequence[OutboxBinary],
        signature: OutboxBinary | None,
    ) -> IntakeSubmitResult:
        """Submit one intake via POST /api/v1/field/intake.

        Returns:
            IntakeSubmitResult; ``duplicate`` is True on idempotent replay.

        Raises:
            CargoPulseClientError: On an error response.
            httpx.HTTPError: On transport failures.
        """
        files = [
            ("photos", (photo.filename, photo.data, photo.content_type))
            for photo in photos
        ]
        if signature is not None:
            files.append(
                ("signature", (signature.filename, signature.data, signature.content_type))
            )
        data = {"clientEventId": client_event_id, "payload": json.dumps(payload)}

        resp = await self._require_client().post(
            INTAKE_PATH, data=data, files=files or None
        )
        self._raise_for_status(resp)
        return IntakeSubmitResult.from_api(resp.json())

    async def health(self) -> HealthStatus:
        """Check health via GET /health.

        Returns:
            HealthStatus; connection failures report healthy=False.
        """
        try:
            resp = await self._require_client().get("/health")
            if resp.status_code == 200:
                data = resp.json()
                return HealthStatus(
                    healthy=True,
                    version=data.get("version", "unknown"),
                    uptime_seconds=data.get("uptime_seconds", 0),
                )
            logger.debug("Health check returned HTTP %s", resp.status_code)
        except (httpx.HTTPError, OSError) as exc:
            logger.debug("Health check connection failed: %s", exc)
        return HealthStatus(healthy=False, version="unknown", uptime_seconds=0)

    async def is_reachable(self) -> bool:
        """Reachability check for ConnectivityMonitor."""
        return (await self.health()).healthy
