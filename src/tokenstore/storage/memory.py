from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from tokenstore.exceptions import AlreadyExistsError, NotFoundError, StoreConnectionError
from tokenstore.health import PROBE_TTL_SECONDS, run_health_check
from tokenstore.models import ConnectionStatus, StorageStats
from tokenstore.transaction import (
    BufferedTransaction,
    OperationKind,
    keys_requiring_absence,
    keys_requiring_presence,
    open_transaction,
)
from tokenstore.utils import Entity, redact, validate_ttl

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from contextlib import AbstractAsyncContextManager

    from tokenstore.models import HealthCheckResult, StoredAccessToken, StoredAuthorizationCode, StoredClient
    from tokenstore.proto import StoreTransactionProtocol
    from tokenstore.transaction import BufferedOperation

logger = logging.getLogger(__name__)

# Rough overhead factor applied to serialized record sizes.
_BYTES_PER_CHAR = 2


@dataclass(slots=True)
class _Entry:
    value: Any
    expires_at: float | None = None


def _copy(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_copy(deep=True)
    return value


def _serialized_size(value: Any) -> int:
    if isinstance(value, BaseModel):
        return len(value.model_dump_json())
    return len(str(value))


class MemoryCredentialStore:
    """Process-local credential store for development, tests and single-worker deployments."""

    def __init__(
        self,
        *,
        name: str | None = None,
        debug: bool = False,
        cleanup_interval_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name or "memory"
        self._debug = debug
        self._cleanup_interval_seconds = cleanup_interval_seconds
        self._clock = clock
        self._status = ConnectionStatus.DISCONNECTED
        self._cleanup_task: asyncio.Task[None] | None = None
        self._tables: dict[Entity, dict[str, _Entry]] = {entity: {} for entity in Entity}

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    async def connect(self) -> None:
        if self._status is ConnectionStatus.CONNECTED:
            return
        self._status = ConnectionStatus.CONNECTED
        self._cleanup_task = asyncio.create_task(self._cleanup_loop(), name=f"{self.name}-cleanup")
        logger.info("Memory credential store %s connected", self.name)

    async def disconnect(self) -> None:
        task = self._cleanup_task
        self._cleanup_task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._status is ConnectionStatus.CONNECTED:
            logger.info("Memory credential store %s disconnected", self.name)
            self._status = ConnectionStatus.CLOSED

    def purge_expired(self) -> int:
        now = self._clock()
        removed = 0
        for table in self._tables.values():
            expired = [key for key, entry in table.items() if entry.expires_at is not None and entry.expires_at <= now]
            for key in expired:
                del table[key]
            removed += len(expired)
        return removed

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval_seconds)
            removed = self.purge_expired()
            if removed:
                logger.debug("Purged %s expired entries from %s", removed, self.name)

    def _ensure_connected(self) -> None:
        if self._status is not ConnectionStatus.CONNECTED:
            msg = "Memory credential store not connected. Call connect() first."
            raise StoreConnectionError(msg)

    def _trace(self, operation: str, entity: Entity, key: str) -> None:
        if self._debug:
            logger.debug("%s %s %s", operation, entity, redact(key))

    def _live(self, entity: Entity, key: str) -> _Entry | None:
        table = self._tables[entity]
        entry = table.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del table[key]
            return None
        return entry

    def _put(self, entity: Entity, key: str, value: Any, ttl_seconds: int | None) -> None:
        expires_at = None if ttl_seconds is None else self._clock() + ttl_seconds
        self._tables[entity][key] = _Entry(value=_copy(value), expires_at=expires_at)

    def _insert(self, entity: Entity, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        self._ensure_connected()
        if ttl_seconds is not None:
            validate_ttl(ttl_seconds)
        if self._live(entity, key) is not None:
            msg = f"{entity} already exists: {redact(key)}"
            raise AlreadyExistsError(msg)
        self._put(entity, key, value, ttl_seconds)
        self._trace("set", entity, key)

    def _read(self, entity: Entity, key: str) -> Any:
        self._ensure_connected()
        entry = self._live(entity, key)
        self._trace("get", entity, key)
        return None if entry is None else _copy(entry.value)

    def _remove(self, entity: Entity, key: str) -> bool:
        existed = self._live(entity, key) is not None
        self._tables[entity].pop(key, None)
        return existed

    def _delete(self, entity: Entity, key: str) -> bool:
        self._ensure_connected()
        self._trace("delete", entity, key)
        return self._remove(entity, key)

    async def health_check(self) -> HealthCheckResult:
        return await run_health_check(
            backend="Memory",
            target=self.name,
            connected=self._status is ConnectionStatus.CONNECTED,
            ping=self._ping,
            round_trip=self._probe_round_trip,
            stats=self.get_stats,
        )

    async def _ping(self) -> None:
        self._ensure_connected()

    async def _probe_round_trip(self, value: str) -> bool:
        key = f"check:{value}"
        self._put(Entity.HEALTH, key, value, PROBE_TTL_SECONDS)
        entry = self._live(Entity.HEALTH, key)
        self._tables[Entity.HEALTH].pop(key, None)
        return entry is not None and entry.value == value

    async def set_client(self, client_id: str, client: StoredClient) -> None:
        self._insert(Entity.CLIENT, client_id, client)

    async def get_client(self, client_id: str) -> StoredClient | None:
        return self._read(Entity.CLIENT, client_id)

    async def delete_client(self, client_id: str) -> bool:
        return self._delete(Entity.CLIENT, client_id)

    async def list_clients(self) -> list[str]:
        self._ensure_connected()
        return list(self._tables[Entity.CLIENT])

    async def set_token(self, token: str, data: StoredAccessToken, ttl_seconds: int) -> None:
        self._insert(Entity.TOKEN, token, data, ttl_seconds)

    async def get_token(self, token: str) -> StoredAccessToken | None:
        return self._read(Entity.TOKEN, token)

    async def delete_token(self, token: str) -> bool:
        return self._delete(Entity.TOKEN, token)

    async def delete_tokens_by_client(self, client_id: str) -> int:
        self._ensure_connected()
        tokens = [
            token
            for token in list(self._tables[Entity.TOKEN])
            if (entry := self._live(Entity.TOKEN, token)) is not None and entry.value.client_id == client_id
        ]
        for token in tokens:
            del self._tables[Entity.TOKEN][token]
        if tokens:
            logger.info("Deleted %s tokens for client %s", len(tokens), client_id)
        return len(tokens)

    async def set_refresh_token(self, refresh_token: str, access_token: str, ttl_seconds: int) -> None:
        self._insert(Entity.REFRESH_TOKEN, refresh_token, access_token, ttl_seconds)

    async def get_refresh_token(self, refresh_token: str) -> str | None:
        return self._read(Entity.REFRESH_TOKEN, refresh_token)

    async def delete_refresh_token(self, refresh_token: str) -> bool:
        return self._delete(Entity.REFRESH_TOKEN, refresh_token)

    async def find_tokens_by_refresh_token(self, refresh_token: str) -> list[tuple[str, StoredAccessToken]]:
        access_token = await self.get_refresh_token(refresh_token)
        if access_token is None:
            return []
        data = await self.get_token(access_token)
        if data is None:
            return []
        return [(access_token, data)]

    async def set_authorization_code(self, code: str, data: StoredAuthorizationCode, ttl_seconds: int) -> None:
        self._insert(Entity.AUTHORIZATION_CODE, code, data, ttl_seconds)

    async def get_authorization_code(self, code: str) -> StoredAuthorizationCode | None:
        return self._read(Entity.AUTHORIZATION_CODE, code)

    async def delete_authorization_code(self, code: str) -> bool:
        return self._delete(Entity.AUTHORIZATION_CODE, code)

    async def mark_authorization_code_used(self, code: str) -> bool:
        self._ensure_connected()
        entry = self._live(Entity.AUTHORIZATION_CODE, code)
        if entry is None:
            msg = f"Authorization code not found: {redact(code)}"
            raise NotFoundError(msg)
        if entry.value.used:
            logger.warning("Authorization code %s was already used", redact(code))
            return False
        entry.value = entry.value.model_copy(update={"used": True})
        return True

    async def begin_transaction(self) -> StoreTransactionProtocol:
        self._ensure_connected()
        return MemoryTransaction(self)

    def transaction(self) -> AbstractAsyncContextManager[StoreTransactionProtocol]:
        return open_transaction(self)

    async def get_stats(self) -> StorageStats:
        self._ensure_connected()
        counts: dict[Entity, int] = {}
        memory_usage = 0
        for entity, table in self._tables.items():
            live = [entry for key in list(table) if (entry := self._live(entity, key)) is not None]
            counts[entity] = len(live)
            memory_usage += sum(_serialized_size(entry.value) * _BYTES_PER_CHAR for entry in live)
        return StorageStats(
            backend="memory",
            token_count=counts[Entity.TOKEN],
            refresh_token_count=counts[Entity.REFRESH_TOKEN],
            authorization_code_count=counts[Entity.AUTHORIZATION_CODE],
            client_count=counts[Entity.CLIENT],
            memory_usage=memory_usage,
            active_connections=1,
        )


class MemoryTransaction(BufferedTransaction):
    def __init__(self, store: MemoryCredentialStore) -> None:
        super().__init__(store)
        self._memory = store

    async def _apply(self, operations: Sequence[BufferedOperation]) -> None:
        store = self._memory
        store._ensure_connected()  # noqa: SLF001
        # Validation and application run without awaiting, so no other task sees a partial commit.
        for entity, key in keys_requiring_absence(operations):
            if store._live(entity, key) is not None:  # noqa: SLF001
                msg = f"{entity} already exists: {redact(key)}"
                raise AlreadyExistsError(msg)
        for entity, key in keys_requiring_presence(operations):
            if store._live(entity, key) is None:  # noqa: SLF001
                msg = f"{entity} no longer exists: {redact(key)}"
                raise NotFoundError(msg)
        for operation in operations:
            if operation.kind is OperationKind.SET:
                store._put(operation.entity, operation.key, operation.value, operation.ttl_seconds)  # noqa: SLF001
            elif operation.result is not None:
                operation.result.resolve(store._remove(operation.entity, operation.key))  # noqa: SLF001
