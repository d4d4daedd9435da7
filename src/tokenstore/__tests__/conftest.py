from __future__ import annotations

from typing import TYPE_CHECKING

import fakeredis
import pytest
import pytest_asyncio

from tokenstore.__tests__.factories import FakeClock, build_redis_store
from tokenstore.settings import RedisSettings
from tokenstore.storage import MemoryCredentialStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from tokenstore.proto import CredentialStoreProtocol
    from tokenstore.storage import RedisCredentialStore


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_server() -> fakeredis.FakeServer:
    return fakeredis.FakeServer()


@pytest.fixture
def redis_settings() -> RedisSettings:
    return RedisSettings(key_prefix="test:", retry_attempts=0, retry_delay=0.01, max_retry_delay=0.01)


@pytest.fixture
def raw_redis(fake_server: fakeredis.FakeServer) -> fakeredis.FakeAsyncRedis:
    return fakeredis.FakeAsyncRedis(server=fake_server, decode_responses=True)


@pytest_asyncio.fixture
async def memory_store(clock: FakeClock) -> AsyncIterator[MemoryCredentialStore]:
    store = MemoryCredentialStore(clock=clock, cleanup_interval_seconds=3_600)
    await store.connect()
    yield store
    await store.disconnect()


@pytest_asyncio.fixture
async def redis_store(
    redis_settings: RedisSettings,
    fake_server: fakeredis.FakeServer,
) -> AsyncIterator[RedisCredentialStore]:
    store = build_redis_store(redis_settings, fake_server)
    await store.connect()
    yield store
    await store.disconnect()


@pytest_asyncio.fixture(params=["memory", "redis"])
async def store(
    request: pytest.FixtureRequest,
    clock: FakeClock,
    redis_settings: RedisSettings,
    fake_server: fakeredis.FakeServer,
) -> AsyncIterator[CredentialStoreProtocol]:
    if request.param == "memory":
        backend: CredentialStoreProtocol = MemoryCredentialStore(clock=clock, cleanup_interval_seconds=3_600)
    else:
        backend = build_redis_store(redis_settings, fake_server)
    await backend.connect()
    yield backend
    await backend.disconnect()
