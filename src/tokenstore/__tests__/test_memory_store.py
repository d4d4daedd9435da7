from __future__ import annotations

import asyncio

import pytest

from tokenstore.__tests__.factories import FakeClock, make_client, make_code, make_token
from tokenstore.exceptions import StoreConnectionError
from tokenstore.models import ConnectionStatus, HealthStatus
from tokenstore.storage import MemoryCredentialStore


@pytest.mark.asyncio
async def test_operations_require_connect() -> None:
    store = MemoryCredentialStore()

    assert store.status is ConnectionStatus.DISCONNECTED
    with pytest.raises(StoreConnectionError):
        await store.get_client("client-1")
    with pytest.raises(StoreConnectionError):
        await store.begin_transaction()


@pytest.mark.asyncio
async def test_records_expire_after_ttl(memory_store: MemoryCredentialStore, clock: FakeClock) -> None:
    await memory_store.set_token("access-1", make_token(), 60)
    await memory_store.set_refresh_token("refresh-1", "access-1", 120)
    await memory_store.set_authorization_code("code-1", make_code(), 30)

    clock.advance(59)
    assert await memory_store.get_token("access-1") is not None
    assert await memory_store.get_authorization_code("code-1") is None

    clock.advance(1)
    assert await memory_store.get_token("access-1") is None
    assert await memory_store.get_refresh_token("refresh-1") == "access-1"

    clock.advance(60)
    assert await memory_store.get_refresh_token("refresh-1") is None


@pytest.mark.asyncio
async def test_expired_key_can_be_created_again(memory_store: MemoryCredentialStore, clock: FakeClock) -> None:
    await memory_store.set_token("access-1", make_token(), 10)
    clock.advance(10)

    await memory_store.set_token("access-1", make_token("client-2"), 10)

    assert (await memory_store.get_token("access-1")).client_id == "client-2"


@pytest.mark.asyncio
async def test_clients_never_expire(memory_store: MemoryCredentialStore, clock: FakeClock) -> None:
    await memory_store.set_client("client-1", make_client())
    clock.advance(10 * 365 * 24 * 3_600)

    assert await memory_store.get_client("client-1") is not None


@pytest.mark.asyncio
async def test_purge_expired_removes_only_expired(memory_store: MemoryCredentialStore, clock: FakeClock) -> None:
    await memory_store.set_client("client-1", make_client())
    await memory_store.set_token("access-1", make_token(), 10)
    await memory_store.set_token("access-2", make_token(), 100)
    await memory_store.set_authorization_code("code-1", make_code(), 5)
    clock.advance(10)

    assert memory_store.purge_expired() == 2

    stats = await memory_store.get_stats()
    assert stats.token_count == 1
    assert stats.authorization_code_count == 0
    assert stats.client_count == 1


@pytest.mark.asyncio
async def test_expired_code_cannot_be_marked_used(memory_store: MemoryCredentialStore, clock: FakeClock) -> None:
    await memory_store.set_authorization_code("code-1", make_code(), 5)
    clock.advance(5)

    with pytest.raises(LookupError):
        await memory_store.mark_authorization_code_used("code-1")


@pytest.mark.asyncio
async def test_returned_records_are_copies(memory_store: MemoryCredentialStore) -> None:
    client = make_client()
    await memory_store.set_client("client-1", client)

    client.scopes.append("admin")
    fetched = await memory_store.get_client("client-1")
    fetched.redirect_uris.append("https://evil.example.com")

    stored = await memory_store.get_client("client-1")
    assert stored.scopes == ["read", "write"]
    assert stored.redirect_uris == ["https://app.example.com/callback"]


@pytest.mark.asyncio
async def test_stats_estimate_memory(memory_store: MemoryCredentialStore) -> None:
    empty = await memory_store.get_stats()
    client = make_client()
    await memory_store.set_client("client-1", client)

    stats = await memory_store.get_stats()

    assert empty.memory_usage == 0
    assert stats.backend == "memory"
    assert stats.memory_usage == len(client.model_dump_json()) * 2
    assert stats.active_connections == 1


@pytest.mark.asyncio
async def test_health_check_is_healthy(memory_store: MemoryCredentialStore) -> None:
    result = await memory_store.health_check()

    assert result.healthy is True
    assert result.status is HealthStatus.HEALTHY
    assert result.errors == []


@pytest.mark.asyncio
async def test_cleanup_task_purges_in_background(clock: FakeClock) -> None:
    store = MemoryCredentialStore(clock=clock, cleanup_interval_seconds=0.01)
    await store.connect()
    await store.set_token("access-1", make_token(), 1)
    clock.advance(1)

    for _ in range(50):
        if not any(store._tables.values()):
            break
        await asyncio.sleep(0.01)

    assert not any(store._tables.values())
    await store.disconnect()
    assert store.status is ConnectionStatus.CLOSED


@pytest.mark.asyncio
async def test_connect_is_idempotent(clock: FakeClock) -> None:
    store = MemoryCredentialStore(clock=clock)

    await store.connect()
    task = store._cleanup_task
    await store.connect()

    assert store._cleanup_task is task
    await store.disconnect()
    assert task.cancelled() or task.done()
