"""
Test suite for the Bandhan Verification API surface
"""
import pytest
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport

from bandhan_auth.middleware.rate_limiter import RateLimitMiddleware


class TestHealthEndpoints:
    """Test health check endpoints."""

    @pytest.mark.asyncio
    async def test_health_check(self, client: AsyncClient):
        """Test the main health check endpoint."""
        response = await client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert "version" in data

    @pytest.mark.asyncio
    async def test_root_endpoint(self, client: AsyncClient):
        """Test the root endpoint."""
        response = await client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert "message" in data


class TestProtectedEndpoints:
    """Every verification route except the public ones needs a bearer token."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method,path", [
        ("GET", "/auth/digilocker/init"),
        ("GET", "/auth/digilocker/status"),
        ("GET", "/auth/age-verify/status"),
        ("GET", "/auth/video-selfie/status"),
        ("POST", "/auth/logout"),
        ("GET", "/consent"),
        ("GET", "/consent/history"),
        ("GET", "/location/history"),
        ("GET", "/profile"),
    ])
    async def test_requires_bearer_token(self, client: AsyncClient, method, path):
        response = await client.request(method, path)
        assert response.status_code == 401
        data = response.json()
        assert data["error"] == "UNAUTHORIZED"
        assert data["messageHi"]

    @pytest.mark.asyncio
    async def test_garbage_token(self, client: AsyncClient):
        response = await client.get("/profile", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401


class TestInputValidation:
    """Test input validation."""

    @pytest.mark.asyncio
    async def test_missing_phone(self, client: AsyncClient):
        response = await client.post("/auth/phone-otp/send", json={})
        assert response.status_code == 422
        data = response.json()
        assert data["error"] == "VALIDATION_ERROR"
        assert data["errors"][0]["field"].endswith("phone")

    @pytest.mark.asyncio
    async def test_negative_accuracy(self, client: AsyncClient, login):
        session = await login()
        response = await client.post(
            "/location",
            json={"latitude": 19.0, "longitude": 72.8, "accuracy": -1},
            headers={"Authorization": f"Bearer {session['accessToken']}"},
        )
        assert response.status_code == 422


class TestRequestTracing:

    @pytest.mark.asyncio
    async def test_request_id_is_generated(self, client: AsyncClient):
        response = await client.get("/auth/video-selfie/instructions")
        assert len(response.headers["X-Request-ID"]) == 36
        assert response.headers["X-Response-Time"].endswith("ms")

    @pytest.mark.asyncio
    async def test_request_id_is_propagated(self, client: AsyncClient):
        response = await client.get("/auth/video-selfie/instructions", headers={"X-Request-ID": "trace-12345678"})
        assert response.headers["X-Request-ID"] == "trace-12345678"

    @pytest.mark.asyncio
    async def test_unsafe_request_id_is_replaced(self, client: AsyncClient):
        response = await client.get("/auth/video-selfie/instructions", headers={"X-Request-ID": "bad id!"})
        assert response.headers["X-Request-ID"] != "bad id!"


class TestRateLimiting:
    """Test rate limiting functionality."""

    @pytest.mark.asyncio
    async def test_rate_limit_not_exceeded(self, client: AsyncClient):
        """Test that normal requests are not rate limited."""
        for _ in range(5):
            response = await client.get("/health")
            assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_bucket_empties(self):
        app = FastAPI()
        app.add_middleware(RateLimitMiddleware, rate_limit=2, window=60)

        @app.get("/ping")
        async def ping():
            return {"ok": True}

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            assert (await ac.get("/ping")).status_code == 200
            assert (await ac.get("/ping")).status_code == 200
            blocked = await ac.get("/ping")

        assert blocked.status_code == 429
        assert blocked.json()["error"] == "RATE_LIMIT_EXCEEDED"
        assert int(blocked.headers["Retry-After"]) >= 1

    @pytest.mark.asyncio
    async def test_buckets_are_per_client(self):
        app = FastAPI()
        app.add_middleware(RateLimitMiddleware, rate_limit=1, window=60)

        @app.get("/ping")
        async def ping():
            return {"ok": True}

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            assert (await ac.get("/ping", headers={"X-Forwarded-For": "10.0.0.1"})).status_code == 200
            assert (await ac.get("/ping", headers={"X-Forwarded-For": "10.0.0.1"})).status_code == 429
            assert (await ac.get("/ping", headers={"X-Forwarded-For": "10.0.0.2"})).status_code == 200
