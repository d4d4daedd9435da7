from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tokenstore.exceptions import ConfigurationError
from tokenstore.settings import StoreSettings
from tokenstore.storage import MemoryCredentialStore, RedisCredentialStore

if TYPE_CHECKING:
    from tokenstore.proto import CredentialStoreProtocol

logger = logging.getLogger(__name__)


def create_credential_store(settings: StoreSettings | None = None) -> CredentialStoreProtocol:
    """Build an unconnected store for ``settings.backend``.

    The caller owns the returned instance and must ``connect()`` it before use.
    """
    settings = settings or StoreSettings()
    backend = settings.backend
    if backend == "memory":
        store: CredentialStoreProtocol = MemoryCredentialStore(
            name=settings.name,
            debug=settings.debug,
            cleanup_interval_seconds=settings.cleanup_interval_seconds,
        )
    elif backend == "redis":
        store = RedisCredentialStore(settings.redis, name=settings.name, debug=settings.debug)
    else:
        msg = f"Unknown credential store backend: {backend!r}"
        raise ConfigurationError(msg)

    logger.info("Created %s credential store", backend)
    return store
