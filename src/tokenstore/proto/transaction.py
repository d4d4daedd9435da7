from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from tokenstore.models import StoredAccessToken, StoredAuthorizationCode, StoredClient
    from tokenstore.transaction import PendingResult, TransactionResult, TransactionState


@runtime_checkable
class StoreTransactionProtocol(Protocol):
    @property
    def state(self) -> TransactionState: ...

    def __len__(self) -> int: ...

    async def set_client(self, client_id: str, client: StoredClient) -> None: ...

    async def get_client(self, client_id: str) -> StoredClient | None: ...

    async def delete_client(self, client_id: str, *, require_existing: bool = False) -> PendingResult[bool]: ...

    async def set_token(self, token: str, data: StoredAccessToken, ttl_seconds: int) -> None: ...

    async def get_token(self, token: str) -> StoredAccessToken | None: ...

    async def delete_token(self, token: str, *, require_existing: bool = False) -> PendingResult[bool]: ...

    async def set_refresh_token(self, refresh_token: str, access_token: str, ttl_seconds: int) -> None: ...

    async def get_refresh_token(self, refresh_token: str) -> str | None: ...

    async def delete_refresh_token(
        self,
        refresh_token: str,
        *,
        require_existing: bool = False,
    ) -> PendingResult[bool]: ...

    async def set_authorization_code(
        self,
        code: str,
        data: StoredAuthorizationCode,
        ttl_seconds: int,
    ) -> None: ...

    async def get_authorization_code(self, code: str) -> StoredAuthorizationCode | None: ...

    async def delete_authorization_code(self, code: str, *, require_existing: bool = False) -> PendingResult[bool]: ...

    async def mark_authorization_code_used(self, code: str) -> bool: ...

    async def commit(self) -> TransactionResult: ...

    async def rollback(self) -> None: ...
