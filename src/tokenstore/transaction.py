"""Buffered transaction contexts shared by the storage backends."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Generic, TypeVar

from tokenstore.exceptions import (
    AlreadyExistsError,
    CommitFailedError,
    InvalidStateError,
    UnsupportedOperationError,
)
from tokenstore.utils import Entity, redact, validate_ttl

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from pydantic import BaseModel

    from tokenstore.models import StoredAccessToken, StoredAuthorizationCode, StoredClient
    from tokenstore.proto import CredentialStoreProtocol, StoreTransactionProtocol

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNSET = object()


class TransactionState(StrEnum):
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class OperationKind(StrEnum):
    SET = "set"
    DELETE = "delete"


class PendingResult(Generic[T]):
    """Outcome of a buffered operation, known only once the transaction commits."""

    __slots__ = ("_value",)

    def __init__(self) -> None:
        self._value: object = _UNSET

    @property
    def resolved(self) -> bool:
        return self._value is not _UNSET

    @property
    def value(self) -> T:
        if self._value is _UNSET:
            msg = "Result is only available after the transaction commits"
            raise InvalidStateError(msg)
        return self._value  # type: ignore[return-value]

    def resolve(self, value: T) -> None:
        self._value = value

    def __repr__(self) -> str:
        if self._value is _UNSET:
            return "PendingResult(<pending>)"
        return f"PendingResult({self._value!r})"


@dataclass(frozen=True, slots=True, kw_only=True)
class BufferedOperation:
    kind: OperationKind
    entity: Entity
    key: str
    value: BaseModel | str | None = None
    ttl_seconds: int | None = None
    result: PendingResult[bool] | None = None
    must_exist: bool = False

    @property
    def ident(self) -> tuple[Entity, str]:
        return (self.entity, self.key)


@dataclass(frozen=True, slots=True, kw_only=True)
class TransactionResult:
    operations: int
    deleted: dict[str, bool] = field(default_factory=dict)


def keys_requiring_absence(operations: Sequence[BufferedOperation]) -> list[tuple[Entity, str]]:
    """Keys that must not exist in committed state for the buffered creates to succeed.

    A create that follows a delete of the same key inside the transaction needs no
    check; two creates of the same key are rejected outright.
    """
    pending: dict[tuple[Entity, str], bool] = {}
    required: list[tuple[Entity, str]] = []
    for operation in operations:
        ident = operation.ident
        if operation.kind is OperationKind.SET:
            if pending.get(ident) is True:
                msg = f"{operation.entity} {redact(operation.key)} is created twice in one transaction"
                raise AlreadyExistsError(msg)
            if ident not in pending:
                required.append(ident)
            pending[ident] = True
        else:
            pending[ident] = False
    return required


def keys_requiring_presence(operations: Sequence[BufferedOperation]) -> list[tuple[Entity, str]]:
    """Keys that must still exist in committed state for the buffered deletes marked ``must_exist``.

    Only a delete that is the first operation on its key is checked.
    """
    seen: set[tuple[Entity, str]] = set()
    required: list[tuple[Entity, str]] = []
    for operation in operations:
        ident = operation.ident
        if operation.kind is OperationKind.DELETE and operation.must_exist and ident not in seen:
            required.append(ident)
        seen.add(ident)
    return required


class BufferedTransaction(ABC):
    """Transaction context that buffers writes until :meth:`commit`.

    Reads go straight to the store and never see buffered writes. Deletes hand
    back a :class:`PendingResult` that resolves when the commit succeeds.
    """

    def __init__(self, store: CredentialStoreProtocol) -> None:
        self._store = store
        self._operations: list[BufferedOperation] = []
        self._state = TransactionState.ACTIVE

    @property
    def state(self) -> TransactionState:
        return self._state

    def __len__(self) -> int:
        return len(self._operations)

    @abstractmethod
    async def _apply(self, operations: Sequence[BufferedOperation]) -> None:
        """Apply every operation as one unit and resolve the pending results."""

    async def _discard(self) -> None:  # noqa: B027
        """Release backend resources held for the buffer."""

    def _ensure_active(self) -> None:
        if self._state is not TransactionState.ACTIVE:
            msg = f"Transaction is {self._state}, cannot perform operations"
            raise InvalidStateError(msg)

    def _buffer_set(
        self,
        entity: Entity,
        key: str,
        value: BaseModel | str,
        ttl_seconds: int | None = None,
    ) -> None:
        self._ensure_active()
        if ttl_seconds is not None:
            validate_ttl(ttl_seconds)
        self._operations.append(
            BufferedOperation(kind=OperationKind.SET, entity=entity, key=key, value=value, ttl_seconds=ttl_seconds),
        )

    def _buffer_delete(self, entity: Entity, key: str, *, must_exist: bool = False) -> PendingResult[bool]:
        self._ensure_active()
        result: PendingResult[bool] = PendingResult()
        self._operations.append(
            BufferedOperation(kind=OperationKind.DELETE, entity=entity, key=key, result=result, must_exist=must_exist),
        )
        return result

    async def set_client(self, client_id: str, client: StoredClient) -> None:
        self._buffer_set(Entity.CLIENT, client_id, client)

    async def get_client(self, client_id: str) -> StoredClient | None:
        self._ensure_active()
        return await self._store.get_client(client_id)

    async def delete_client(self, client_id: str, *, require_existing: bool = False) -> PendingResult[bool]:
        return self._buffer_delete(Entity.CLIENT, client_id, must_exist=require_existing)

    async def set_token(self, token: str, data: StoredAccessToken, ttl_seconds: int) -> None:
        self._buffer_set(Entity.TOKEN, token, data, ttl_seconds)

    async def get_token(self, token: str) -> StoredAccessToken | None:
        self._ensure_active()
        return await self._store.get_token(token)

    async def delete_token(self, token: str, *, require_existing: bool = False) -> PendingResult[bool]:
        return self._buffer_delete(Entity.TOKEN, token, must_exist=require_existing)

    async def set_refresh_token(self, refresh_token: str, access_token: str, ttl_seconds: int) -> None:
        self._buffer_set(Entity.REFRESH_TOKEN, refresh_token, access_token, ttl_seconds)

    async def get_refresh_token(self, refresh_token: str) -> str | None:
        self._ensure_active()
        return await self._store.get_refresh_token(refresh_token)

    async def delete_refresh_token(self, refresh_token: str, *, require_existing: bool = False) -> PendingResult[bool]:
        return self._buffer_delete(Entity.REFRESH_TOKEN, refresh_token, must_exist=require_existing)

    async def set_authorization_code(self, code: str, data: StoredAuthorizationCode, ttl_seconds: int) -> None:
        self._buffer_set(Entity.AUTHORIZATION_CODE, code, data, ttl_seconds)

    async def get_authorization_code(self, code: str) -> StoredAuthorizationCode | None:
        self._ensure_active()
        return await self._store.get_authorization_code(code)

    async def delete_authorization_code(self, code: str, *, require_existing: bool = False) -> PendingResult[bool]:
        return self._buffer_delete(Entity.AUTHORIZATION_CODE, code, must_exist=require_existing)

    async def mark_authorization_code_used(self, code: str) -> bool:  # noqa: ARG002
        self._ensure_active()
        msg = (
            "mark_authorization_code_used cannot be used in transactions; "
            "call it on the store directly for the atomic check-and-set"
        )
        raise UnsupportedOperationError(msg)

    async def commit(self) -> TransactionResult:
        self._ensure_active()
        operations = list(self._operations)
        logger.debug("Committing transaction with %s operations", len(operations))
        try:
            await self._apply(operations)
        except Exception as exc:
            self._state = TransactionState.ROLLED_BACK
            self._operations = []
            logger.warning("Transaction commit failed, rolled back: %s", exc)
            msg = f"Transaction commit failed: {exc}"
            raise CommitFailedError(msg) from exc

        self._state = TransactionState.COMMITTED
        self._operations = []
        deleted = {
            f"{operation.entity}:{operation.key}": operation.result.value
            for operation in operations
            if operation.result is not None
        }
        return TransactionResult(operations=len(operations), deleted=deleted)

    async def rollback(self) -> None:
        self._ensure_active()
        logger.debug("Rolling back transaction with %s operations", len(self._operations))
        self._operations = []
        self._state = TransactionState.ROLLED_BACK
        await self._discard()


@asynccontextmanager
async def open_transaction(store: CredentialStoreProtocol) -> AsyncIterator[StoreTransactionProtocol]:
    """Commit on normal exit, roll back if the block raises."""
    txn = await store.begin_transaction()
    try:
        yield txn
    except BaseException:
        if txn.state is TransactionState.ACTIVE:
            await txn.rollback()
        raise
    if txn.state is TransactionState.ACTIVE:
        await txn.commit()
