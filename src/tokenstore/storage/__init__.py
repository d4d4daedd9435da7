from tokenstore.storage.memory import MemoryCredentialStore, MemoryTransaction
from tokenstore.storage.redis import RedisCredentialStore, RedisTransaction

__all__ = [
    "MemoryCredentialStore",
    "MemoryTransaction",
    "RedisCredentialStore",
    "RedisTransaction",
]
