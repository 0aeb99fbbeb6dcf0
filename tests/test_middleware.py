"""Middleware tests — request ID, rate limiting, CORS, error handling."""

from types import SimpleNamespace

import pytest
from httpx import AsyncClient

import obelisk.middleware.rate_limit as rate_limit


class FakePipeline:
    def __init__(self, store: dict[str, int]) -> None:
        self.store = store
        self.ops: list[str] = []

    def incr(self, key: str) -> None:
        self.ops.append(key)

    def expire(self, key: str, seconds: int) -> None:
        pass

    async def execute(self) -> list[int]:
        results = []
        for key in self.ops:
            self.store[key] = self.store.get(key, 0) + 1
            results.append(self.store[key])
        results.append(True)
        return results


class FakeRedis:
    def __init__(self) -> None:
        self.store: dict[str, int] = {}

    def pipeline(self) -> FakePipeline:
        return FakePipeline(self.store)


@pytest.fixture
def fake_redis(monkeypatch) -> FakeRedis:
    redis = FakeRedis()
    monkeypatch.setattr(rate_limit, "get_redis", lambda: redis)
    # Keep every request in the same window
    monkeypatch.setattr(rate_limit, "time", SimpleNamespace(time=lambda: 1_700_000_000.0))
    return redis


@pytest.mark.asyncio
async def test_request_id_generated(client: AsyncClient) -> None:
    """Request ID is auto-generated when not provided."""
    response = await client.get("/health")
    assert "x-request-id" in response.headers
    assert len(response.headers["x-request-id"]) == 36  # UUID format


@pytest.mark.asyncio
async def test_request_id_preserved(client: AsyncClient) -> None:
    """Custom request ID is echoed back in response."""
    response = await client.get("/health", headers={"X-Request-Id": "test-abc-123"})
    assert response.headers["x-request-id"] == "test-abc-123"


@pytest.mark.asyncio
async def test_no_rate_limit_headers_without_redis(client: AsyncClient) -> None:
    """Requests pass through unlimited when Redis is not initialized."""
    response = await client.get("/api/v1/badges")
    assert response.status_code == 200
    assert "x-ratelimit-limit" not in response.headers


@pytest.mark.asyncio
async def test_rate_limit_headers(client: AsyncClient, fake_redis: FakeRedis) -> None:
    """Rate limit headers are present on non-exempt endpoints."""
    response = await client.get("/api/v1/badges")
    assert response.headers["x-ratelimit-limit"] == "100"
    assert response.headers["x-ratelimit-remaining"] == "99"


@pytest.mark.asyncio
async def test_checkin_has_tighter_bucket(client: AsyncClient, fake_redis: FakeRedis) -> None:
    """The 21st check-in submission in a window is rejected with Retry-After."""
    for _ in range(20):
        response = await client.post("/api/v1/attendance/checkin", json={"token": "nope"})
        assert response.status_code != 429

    response = await client.post("/api/v1/attendance/checkin", json={"token": "nope"})
    assert response.status_code == 429
    assert response.headers["retry-after"] == "60"
    assert response.headers["x-ratelimit-limit"] == "20"
    assert "detail" in response.json()

    # The general bucket is separate
    response = await client.get("/api/v1/badges")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_health_exempt_from_rate_limit(client: AsyncClient, fake_redis: FakeRedis) -> None:
    """Health endpoint is exempt from rate limiting."""
    for _ in range(150):
        response = await client.get("/health")
        assert response.status_code == 200
    assert fake_redis.store == {}


@pytest.mark.asyncio
async def test_cors_preflight(client: AsyncClient) -> None:
    """CORS preflight returns access-control-allow-origin for configured origin."""
    response = await client.options(
        "/api/v1/attendance/checkin",
        headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "POST",
        },
    )
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


@pytest.mark.asyncio
async def test_404_returns_json(client: AsyncClient) -> None:
    """Unknown paths return 404 with JSON body."""
    response = await client.get("/nonexistent-path")
    assert response.status_code == 404
    assert response.headers["content-type"] == "application/json"
    assert response.json()["detail"] == "Not Found"


@pytest.mark.asyncio
async def test_validation_error_shape(client: AsyncClient) -> None:
    """Request validation failures return 422 with a serializable error list."""
    response = await client.get("/api/v1/attendance/verify-token")
    assert response.status_code == 422
    data = response.json()
    assert data["detail"] == "Validation error"
    assert data["errors"][0]["loc"] == ["query", "token"]


@pytest.mark.asyncio
async def test_checkin_error_shape(client: AsyncClient, database: str) -> None:
    """Typed check-in failures carry status, code and retry hint."""
    response = await client.get("/api/v1/attendance/verify-token", params={"token": "does-not-exist"})
    assert response.status_code == 404
    assert response.json() == {"detail": "Invalid QR code", "code": "token_not_found", "retryable": True}
