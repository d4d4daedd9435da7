from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from tokenstore.exceptions import AlreadyExistsError, NotFoundError, StoreConnectionError
from tokenstore.health import PROBE_TTL_SECONDS, run_health_check
from tokenstore.models import (
    ConnectionStatus,
    StorageStats,
    StoredAccessToken,
    StoredAuthorizationCode,
    StoredClient,
)
from tokenstore.settings import RedisSettings
from tokenstore.storage.scripts import CREATE_AUTHORIZATION_CODE, MARK_AUTHORIZATION_CODE_USED
from tokenstore.transaction import (
    BufferedTransaction,
    OperationKind,
    keys_requiring_absence,
    keys_requiring_presence,
    open_transaction,
)
from tokenstore.utils import Entity, redact, validate_ttl

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Sequence
    from contextlib import AbstractAsyncContextManager

    from redis.asyncio.client import Pipeline
    from redis.commands.core import AsyncScript

    from tokenstore.models import HealthCheckResult
    from tokenstore.proto import StoreTransactionProtocol
    from tokenstore.transaction import BufferedOperation, PendingResult

logger = logging.getLogger(__name__)

_GLOB_SPECIAL = "\\*?[]"
_SCAN_COUNT = 500
_USED = "1"
_UNUSED = "0"


def _escape_glob(value: str) -> str:
    return "".join(f"\\{char}" if char in _GLOB_SPECIAL else char for char in value)


def _code_fields(data: StoredAuthorizationCode) -> dict[str, str]:
    return {
        "data": data.model_dump_json(exclude={"used"}),
        "used": _USED if data.used else _UNUSED,
    }


class RedisCredentialStore:
    """Credential store backed by Redis.

    Clients, access tokens and refresh tokens are plain string keys created with
    ``SET NX``; authorization codes are hashes so that the single-use flag can be
    flipped by a server-side script without touching the record or its TTL.
    """

    def __init__(
        self,
        settings: RedisSettings | None = None,
        *,
        name: str | None = None,
        debug: bool = False,
        client_factory: Callable[[], Redis] | None = None,
    ) -> None:
        self.settings = settings or RedisSettings()
        self.name = name or "redis"
        self._debug = debug
        self._client_factory = client_factory or self._create_client
        self._client: Redis | None = None
        self._status = ConnectionStatus.DISCONNECTED
        self._connect_lock = asyncio.Lock()
        self._create_code_script: AsyncScript | None = None
        self._mark_used_script: AsyncScript | None = None

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def target(self) -> str:
        return f"{self.settings.host}:{self.settings.port}/{self.settings.db}"

    def key(self, entity: Entity, identifier: str) -> str:
        return f"{self.settings.key_prefix}{entity}:{identifier}"

    def _pattern(self, entity: Entity) -> str:
        return f"{_escape_glob(self.settings.key_prefix)}{entity}:*"

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is self._status:
            return
        logger.debug("Redis store %s status %s -> %s", self.name, self._status, status)
        self._status = status

    def _create_client(self) -> Redis:
        password = self.settings.password.get_secret_value() if self.settings.password else None
        return Redis(
            host=self.settings.host,
            port=self.settings.port,
            password=password,
            db=self.settings.db,
            socket_connect_timeout=self.settings.connection_timeout,
            socket_timeout=self.settings.connection_timeout,
            decode_responses=True,
        )

    async def connect(self) -> None:
        async with self._connect_lock:
            if self._status is ConnectionStatus.CONNECTED and self._client is not None:
                return

            self._set_status(ConnectionStatus.CONNECTING)
            client = self._client or self._client_factory()
            attempts = self.settings.retry_attempts
            last_error: Exception | None = None
            for attempt in range(attempts + 1):
                try:
                    await asyncio.wait_for(client.ping(), timeout=self.settings.connection_timeout)
                except (RedisError, OSError, TimeoutError) as exc:
                    last_error = exc
                    if attempt == attempts:
                        break
                    delay = self.settings.backoff_delay(attempt)
                    logger.warning(
                        "Redis connection attempt %s/%s to %s failed (%s), retrying in %.2fs",
                        attempt + 1,
                        attempts + 1,
                        self.target,
                        exc,
                        delay,
                    )
                    await asyncio.sleep(delay)
                else:
                    self._client = client
                    self._create_code_script = client.register_script(CREATE_AUTHORIZATION_CODE)
                    self._mark_used_script = client.register_script(MARK_AUTHORIZATION_CODE_USED)
                    self._set_status(ConnectionStatus.CONNECTED)
                    logger.info("Connected to Redis at %s", self.target)
                    return

            self._client = None
            await self._close(client)
            self._set_status(ConnectionStatus.ERROR)
            msg = f"Failed to connect to Redis at {self.target} after {attempts + 1} attempts: {last_error}"
            raise StoreConnectionError(msg) from last_error

    async def disconnect(self) -> None:
        client = self._client
        self._client = None
        if client is None:
            if self._status is not ConnectionStatus.DISCONNECTED:
                self._set_status(ConnectionStatus.CLOSED)
            return
        await self._close(client)
        self._set_status(ConnectionStatus.CLOSED)
        logger.info("Disconnected from Redis at %s", self.target)

    async def _close(self, client: Redis) -> None:
        try:
            await client.aclose()
        except (RedisError, OSError) as exc:
            logger.warning("Graceful Redis shutdown failed (%s), forcing disconnect", exc)
            try:
                await client.connection_pool.disconnect(inuse_connections=True)
            except (RedisError, OSError) as force_exc:
                logger.error("Forced Redis disconnect failed: %s", force_exc)  # noqa: TRY400

    def _require_client(self) -> Redis:
        # In the error state commands still go out; the client reconnects its pool and a success recovers.
        if self._client is None:
            msg = f"Redis client is {self._status}. Call connect() first."
            raise StoreConnectionError(msg)
        return self._client

    async def _acquire_client(self) -> Redis:
        queue = self.settings.queue_while_disconnected
        if queue and self._client is None and self._status is ConnectionStatus.CONNECTING:
            async with self._connect_lock:
                pass
        return self._require_client()

    @asynccontextmanager
    async def _command(self) -> AsyncIterator[Redis]:
        client = await self._acquire_client()
        try:
            yield client
        except (RedisConnectionError, RedisTimeoutError) as exc:
            self._set_status(ConnectionStatus.ERROR)
            logger.warning("Redis command failed on %s: %s", self.target, exc)
            msg = f"Redis command failed: {exc}"
            raise StoreConnectionError(msg) from exc
        if self._status is ConnectionStatus.ERROR:
            logger.info("Redis connection to %s recovered", self.target)
            self._set_status(ConnectionStatus.CONNECTED)

    def _trace(self, operation: str, entity: Entity, key: str) -> None:
        if self._debug:
            logger.debug("%s %s %s", operation, entity, redact(key))

    async def _set_string(self, entity: Entity, identifier: str, payload: str, ttl_seconds: int | None = None) -> None:
        async with self._command() as redis:
            created = await redis.set(self.key(entity, identifier), payload, ex=ttl_seconds, nx=True)
        if not created:
            msg = f"{entity} already exists: {redact(identifier)}"
            raise AlreadyExistsError(msg)
        self._trace("set", entity, identifier)

    async def _get_string(self, entity: Entity, identifier: str) -> str | None:
        async with self._command() as redis:
            value = await redis.get(self.key(entity, identifier))
        self._trace("get", entity, identifier)
        return value

    async def _delete_key(self, entity: Entity, identifier: str) -> bool:
        async with self._command() as redis:
            removed = await redis.delete(self.key(entity, identifier))
        self._trace("delete", entity, identifier)
        return removed > 0

    async def _count(self, redis: Redis, entity: Entity) -> int:
        return sum([1 async for _ in redis.scan_iter(match=self._pattern(entity), count=_SCAN_COUNT)])

    async def health_check(self) -> HealthCheckResult:
        return await run_health_check(
            backend="Redis",
            target=self.target,
            connected=self._client is not None,
            ping=self._ping,
            round_trip=self._probe_round_trip,
            stats=self.get_stats,
        )

    async def _ping(self) -> None:
        async with self._command() as redis:
            await redis.ping()

    async def _probe_round_trip(self, value: str) -> bool:
        key = self.key(Entity.HEALTH, f"check:{value}")
        async with self._command() as redis:
            await redis.set(key, value, ex=PROBE_TTL_SECONDS)
            echoed = await redis.get(key)
            await redis.delete(key)
        return echoed == value

    async def set_client(self, client_id: str, client: StoredClient) -> None:
        await self._set_string(Entity.CLIENT, client_id, client.model_dump_json())

    async def get_client(self, client_id: str) -> StoredClient | None:
        payload = await self._get_string(Entity.CLIENT, client_id)
        return None if payload is None else StoredClient.model_validate_json(payload)

    async def delete_client(self, client_id: str) -> bool:
        return await self._delete_key(Entity.CLIENT, client_id)

    async def list_clients(self) -> list[str]:
        prefix_length = len(self.key(Entity.CLIENT, ""))
        async with self._command() as redis:
            keys = [key async for key in redis.scan_iter(match=self._pattern(Entity.CLIENT), count=_SCAN_COUNT)]
        return [key[prefix_length:] for key in keys]

    async def set_token(self, token: str, data: StoredAccessToken, ttl_seconds: int) -> None:
        validate_ttl(ttl_seconds)
        await self._set_string(Entity.TOKEN, token, data.model_dump_json(), ttl_seconds)

    async def get_token(self, token: str) -> StoredAccessToken | None:
        payload = await self._get_string(Entity.TOKEN, token)
        return None if payload is None else StoredAccessToken.model_validate_json(payload)

    async def delete_token(self, token: str) -> bool:
        return await self._delete_key(Entity.TOKEN, token)

    async def delete_tokens_by_client(self, client_id: str) -> int:
        deleted = 0
        async with self._command() as redis:
            async for key in redis.scan_iter(match=self._pattern(Entity.TOKEN), count=_SCAN_COUNT):
                payload = await redis.get(key)
                if payload is None:
                    continue
                if StoredAccessToken.model_validate_json(payload).client_id == client_id:
                    deleted += await redis.delete(key)
        if deleted:
            logger.info("Deleted %s tokens for client %s", deleted, client_id)
        return deleted

    async def set_refresh_token(self, refresh_token: str, access_token: str, ttl_seconds: int) -> None:
        validate_ttl(ttl_seconds)
        await self._set_string(Entity.REFRESH_TOKEN, refresh_token, access_token, ttl_seconds)

    async def get_refresh_token(self, refresh_token: str) -> str | None:
        return await self._get_string(Entity.REFRESH_TOKEN, refresh_token)

    async def delete_refresh_token(self, refresh_token: str) -> bool:
        return await self._delete_key(Entity.REFRESH_TOKEN, refresh_token)

    async def find_tokens_by_refresh_token(self, refresh_token: str) -> list[tuple[str, StoredAccessToken]]:
        access_token = await self.get_refresh_token(refresh_token)
        if access_token is None:
            return []
        data = await self.get_token(access_token)
        if data is None:
            return []
        return [(access_token, data)]

    async def set_authorization_code(self, code: str, data: StoredAuthorizationCode, ttl_seconds: int) -> None:
        validate_ttl(ttl_seconds)
        fields = _code_fields(data)
        async with self._command() as redis:
            created = await self._create_code_script(
                keys=[self.key(Entity.AUTHORIZATION_CODE, code)],
                args=[fields["data"], fields["used"], ttl_seconds],
                client=redis,
            )
        if not created:
            msg = f"{Entity.AUTHORIZATION_CODE} already exists: {redact(code)}"
            raise AlreadyExistsError(msg)
        self._trace("set", Entity.AUTHORIZATION_CODE, code)

    async def get_authorization_code(self, code: str) -> StoredAuthorizationCode | None:
        async with self._command() as redis:
            fields = await redis.hgetall(self.key(Entity.AUTHORIZATION_CODE, code))
        self._trace("get", Entity.AUTHORIZATION_CODE, code)
        if not fields or "data" not in fields:
            return None
        record = StoredAuthorizationCode.model_validate_json(fields["data"])
        return record.model_copy(update={"used": fields.get("used") == _USED})

    async def delete_authorization_code(self, code: str) -> bool:
        return await self._delete_key(Entity.AUTHORIZATION_CODE, code)

    async def mark_authorization_code_used(self, code: str) -> bool:
        async with self._command() as redis:
            outcome = await self._mark_used_script(
                keys=[self.key(Entity.AUTHORIZATION_CODE, code)],
                client=redis,
            )
        if outcome == -1:
            msg = f"Authorization code not found: {redact(code)}"
            raise NotFoundError(msg)
        if outcome == 0:
            logger.warning("Authorization code %s was already used", redact(code))
            return False
        return True

    async def begin_transaction(self) -> StoreTransactionProtocol:
        self._require_client()
        return RedisTransaction(self)

    def transaction(self) -> AbstractAsyncContextManager[StoreTransactionProtocol]:
        return open_transaction(self)

    async def get_stats(self) -> StorageStats:
        async with self._command() as redis:
            stats = StorageStats(
                backend="redis",
                token_count=await self._count(redis, Entity.TOKEN),
                refresh_token_count=await self._count(redis, Entity.REFRESH_TOKEN),
                authorization_code_count=await self._count(redis, Entity.AUTHORIZATION_CODE),
                client_count=await self._count(redis, Entity.CLIENT),
            )
            try:
                memory_info = await redis.info("memory")
                clients_info = await redis.info("clients")
            except ResponseError as exc:
                logger.warning("Redis INFO unavailable on %s: %s", self.target, exc)
            else:
                stats.memory_usage = memory_info.get("used_memory")
                stats.active_connections = clients_info.get("connected_clients")
        return stats


class RedisTransaction(BufferedTransaction):
    """Buffered writes executed with ``WATCH`` + ``MULTI``/``EXEC`` on commit."""

    def __init__(self, store: RedisCredentialStore) -> None:
        super().__init__(store)
        self._redis_store = store

    def _queue(self, pipe: Pipeline, operation: BufferedOperation) -> int:
        """Queue the commands for one operation and return how many were queued."""
        key = self._redis_store.key(operation.entity, operation.key)
        if operation.kind is OperationKind.DELETE:
            pipe.delete(key)
        elif operation.entity is Entity.AUTHORIZATION_CODE:
            pipe.hset(key, mapping=_code_fields(operation.value))
            pipe.expire(key, operation.ttl_seconds)
            return 2
        elif isinstance(operation.value, str):
            pipe.set(key, operation.value, ex=operation.ttl_seconds)
        else:
            pipe.set(key, operation.value.model_dump_json(), ex=operation.ttl_seconds)
        return 1

    async def _apply(self, operations: Sequence[BufferedOperation]) -> None:
        if not operations:
            return
        store = self._redis_store
        required = [store.key(entity, key) for entity, key in keys_requiring_absence(operations)]
        present = [store.key(entity, key) for entity, key in keys_requiring_presence(operations)]
        touched = list(dict.fromkeys(store.key(operation.entity, operation.key) for operation in operations))

        async with store._command() as redis, redis.pipeline(transaction=True) as pipe:  # noqa: SLF001
            await pipe.watch(*touched)
            for key in required:
                if await pipe.exists(key):
                    msg = f"Key already exists: {redact(key)}"
                    raise AlreadyExistsError(msg)
            for key in present:
                if not await pipe.exists(key):
                    msg = f"Key no longer exists: {redact(key)}"
                    raise NotFoundError(msg)

            pipe.multi()
            pending: list[tuple[int, PendingResult[bool]]] = []
            index = 0
            for operation in operations:
                if operation.result is not None:
                    pending.append((index, operation.result))
                index += self._queue(pipe, operation)
            replies = await pipe.execute()

        for position, result in pending:
            result.resolve(replies[position] > 0)
