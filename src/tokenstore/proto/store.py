from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from contextlib import AbstractAsyncContextManager

    from tokenstore.models import (
        ConnectionStatus,
        HealthCheckResult,
        StorageStats,
        StoredAccessToken,
        StoredAuthorizationCode,
        StoredClient,
    )
    from tokenstore.proto.transaction import StoreTransactionProtocol


@runtime_checkable
class CredentialStoreProtocol(Protocol):
    """Persistence contract shared by every credential backend.

    TTLs are always whole seconds. ``set_*`` never overwrites an existing key,
    ``get_*`` and ``delete_*`` never raise for a missing key, and
    ``mark_authorization_code_used`` is the only tri-state operation
    (marked, already used, not found).
    """

    @property
    def status(self) -> ConnectionStatus: ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def health_check(self) -> HealthCheckResult: ...

    async def set_client(self, client_id: str, client: StoredClient) -> None: ...

    async def get_client(self, client_id: str) -> StoredClient | None: ...

    async def delete_client(self, client_id: str) -> bool: ...

    async def list_clients(self) -> list[str]: ...

    async def set_token(self, token: str, data: StoredAccessToken, ttl_seconds: int) -> None: ...

    async def get_token(self, token: str) -> StoredAccessToken | None: ...

    async def delete_token(self, token: str) -> bool: ...

    async def delete_tokens_by_client(self, client_id: str) -> int: ...

    async def set_refresh_token(self, refresh_token: str, access_token: str, ttl_seconds: int) -> None: ...

    async def get_refresh_token(self, refresh_token: str) -> str | None: ...

    async def delete_refresh_token(self, refresh_token: str) -> bool: ...

    async def find_tokens_by_refresh_token(self, refresh_token: str) -> list[tuple[str, StoredAccessToken]]: ...

    async def set_authorization_code(
        self,
        code: str,
        data: StoredAuthorizationCode,
        ttl_seconds: int,
    ) -> None: ...

    async def get_authorization_code(self, code: str) -> StoredAuthorizationCode | None: ...

    async def delete_authorization_code(self, code: str) -> bool: ...

    async def mark_authorization_code_used(self, code: str) -> bool: ...

    async def begin_transaction(self) -> StoreTransactionProtocol: ...

    def transaction(self) -> AbstractAsyncContextManager[StoreTransactionProtocol]: ...

    async def get_stats(self) -> StorageStats: ...
