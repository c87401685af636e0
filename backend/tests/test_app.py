"""
Rate Lowry Backend — Application Wiring Tests
===============================================

Health, the error envelope for framework errors, request IDs and the
rate limiter.
"""

import httpx
from fastapi import FastAPI

from rate_lowry.middleware.rate_limit import RateLimitMiddleware


class TestHealth:

    async def test_health_reports_dependencies(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["imageHost"] == "available"
        assert body["writeBufferDepth"] == 0
        assert body["uptimeSeconds"] >= 0


class TestErrorEnvelope:

    async def test_unknown_route_is_404_envelope(self, client):
        response = await client.get("/api/nope")

        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "not_found"
        assert set(body) == {"error", "message", "details", "request_id"}

    async def test_unsupported_method_is_405_with_allow(self, client):
        response = await client.put("/api/reviews")

        assert response.status_code == 405
        assert response.json()["error"] == "method_not_allowed"
        assert "GET" in response.headers["allow"]

    async def test_request_id_echoed(self, client):
        response = await client.get("/api/reviews", headers={"X-Request-ID": "abc12345"})

        assert response.headers["X-Request-ID"] == "abc12345"
        assert response.json()["request_id"] == "abc12345"

    async def test_request_id_generated(self, client):
        response = await client.get("/api/stations")
        assert len(response.headers["X-Request-ID"]) == 8


class TestRateLimit:

    async def test_requests_over_limit_get_429(self):
        app = FastAPI()

        @app.get("/ping")
        async def ping():
            return {"ok": True}

        app.add_middleware(RateLimitMiddleware, max_requests=2, window=60)

        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
            assert (await ac.get("/ping")).status_code == 200
            assert (await ac.get("/ping")).status_code == 200
            limited = await ac.get("/ping")

        assert limited.status_code == 429
        assert limited.json()["error"] == "rate_limit_exceeded"
        assert int(limited.headers["Retry-After"]) >= 1

    async def test_health_is_never_limited(self):
        app = FastAPI()

        @app.get("/health")
        async def health():
            return {"ok": True}

        app.add_middleware(RateLimitMiddleware, max_requests=1, window=60)

        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
            statuses = [(await ac.get("/health")).status_code for _ in range(3)]

        assert statuses == [200, 200, 200]

    async def test_limited_response_carries_request_id(self, monkeypatch):
        from rate_lowry.config import settings
        from rate_lowry.main import create_app

        monkeypatch.setattr(settings, "rate_limit_requests", 10)
        app = create_app()
        headers = {"X-Request-ID": "abc123"}

        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
            for _ in range(10):
                await ac.get("/api/does-not-exist", headers=headers)
            limited = await ac.get("/api/does-not-exist", headers=headers)

        assert limited.status_code == 429
        assert limited.json()["request_id"] == "abc123"
        assert limited.headers["X-Request-ID"] == "abc123"
