"""Storage engine for OAuth credentials: clients, access and refresh tokens, authorization codes."""

from tokenstore.exceptions import (
    AlreadyExistsError,
    CommitFailedError,
    ConfigurationError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    StoreConnectionError,
    TokenStoreError,
    UnsupportedOperationError,
)
from tokenstore.factory import create_credential_store
from tokenstore.health import HealthMonitor, classify_latency
from tokenstore.models import (
    ComponentHealth,
    ConnectionStatus,
    HealthCheckResult,
    HealthStatus,
    StorageStats,
    StoredAccessToken,
    StoredAuthorizationCode,
    StoredClient,
)
from tokenstore.proto import CredentialStoreProtocol, StoreTransactionProtocol
from tokenstore.rotation import rotate_tokens
from tokenstore.router import build_ops_router
from tokenstore.settings import RedisSettings, StoreSettings
from tokenstore.storage import MemoryCredentialStore, RedisCredentialStore
from tokenstore.transaction import PendingResult, TransactionResult, TransactionState

__version__ = "0.1.0"

__all__ = [
    "AlreadyExistsError",
    "CommitFailedError",
    "ComponentHealth",
    "ConfigurationError",
    "ConnectionStatus",
    "CredentialStoreProtocol",
    "HealthCheckResult",
    "HealthMonitor",
    "HealthStatus",
    "InvalidArgumentError",
    "InvalidStateError",
    "MemoryCredentialStore",
    "NotFoundError",
    "PendingResult",
    "RedisCredentialStore",
    "RedisSettings",
    "StorageStats",
    "StoreConnectionError",
    "StoreSettings",
    "StoreTransactionProtocol",
    "StoredAccessToken",
    "StoredAuthorizationCode",
    "StoredClient",
    "TokenStoreError",
    "TransactionResult",
    "TransactionState",
    "UnsupportedOperationError",
    "build_ops_router",
    "classify_latency",
    "create_credential_store",
    "rotate_tokens",
]
