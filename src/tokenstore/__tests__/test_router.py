from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from tokenstore.__tests__.factories import make_token
from tokenstore.exceptions import StoreConnectionError
from tokenstore.models import HealthCheckResult, HealthStatus, StorageStats
from tokenstore.router import build_ops_router

if TYPE_CHECKING:
    from tokenstore.storage import MemoryCredentialStore


def _app(store: object) -> FastAPI:
    app = FastAPI()
    app.include_router(build_ops_router(store, prefix="/ops"))
    return app


def _stub_store(status: HealthStatus) -> Mock:
    store = Mock()
    store.health_check = AsyncMock(
        return_value=HealthCheckResult(
            healthy=status is HealthStatus.HEALTHY,
            status=status,
            message=f"stub storage is {status}",
            response_time_ms=12.5,
        ),
    )
    store.get_stats = AsyncMock(return_value=StorageStats(backend="stub", token_count=7))
    return store


@pytest.mark.parametrize(
    ("status", "expected_code"),
    [
        (HealthStatus.HEALTHY, 200),
        (HealthStatus.DEGRADED, 200),
        (HealthStatus.UNHEALTHY, 503),
    ],
)
def test_health_status_codes(status: HealthStatus, expected_code: int) -> None:
    client = TestClient(_app(_stub_store(status)))

    response = client.get("/ops/health")

    assert response.status_code == expected_code
    assert response.json()["status"] == status.value
    assert response.json()["response_time_ms"] == 12.5


def test_stats_endpoint() -> None:
    client = TestClient(_app(_stub_store(HealthStatus.HEALTHY)))

    response = client.get("/ops/stats")

    assert response.status_code == 200
    assert response.json()["backend"] == "stub"
    assert response.json()["token_count"] == 7


def test_stats_unavailable_when_disconnected() -> None:
    store = _stub_store(HealthStatus.UNHEALTHY)
    store.get_stats = AsyncMock(side_effect=StoreConnectionError("Redis client not connected"))
    client = TestClient(_app(store))

    response = client.get("/ops/stats")

    assert response.status_code == 503
    assert response.json() == {"detail": "Redis client not connected"}


@pytest.mark.asyncio
async def test_routes_against_memory_store(memory_store: MemoryCredentialStore) -> None:
    await memory_store.set_token("access-1", make_token(), 3_600)
    transport = httpx.ASGITransport(app=_app(memory_store))

    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        health = await client.get("/ops/health")
        stats = await client.get("/ops/stats")

    assert health.status_code == 200
    assert health.json()["healthy"] is True
    assert set(health.json()["components"]) == {"connection", "ping", "read_write", "storage"}
    assert stats.json()["token_count"] == 1
