"""Overlap a slow request with a health check on one event loop."""

import asyncio
import time

import httpx

from src.api.main import app


async def health_latency_during(send) -> tuple[httpx.Response, float]:
    """Issue ``send(http)`` and, shortly after, GET /health.

    Returns:
        The slow request's response and the seconds /health took.
    """
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://cargopulse.test") as http:

        async def timed_health() -> float:
            await asyncio.sleep(0.1)
            started = time.perf_counter()
            response = await http.get("/health")
            assert response.status_code == 200
            return time.perf_counter() - started

        response, elapsed = await asyncio.gather(send(http), timed_health())
    return response, elapsed
