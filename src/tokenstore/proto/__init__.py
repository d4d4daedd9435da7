"""Protocol interfaces every credential backend implements."""

from tokenstore.proto.store import CredentialStoreProtocol
from tokenstore.proto.transaction import StoreTransactionProtocol

__all__ = [
    "CredentialStoreProtocol",
    "StoreTransactionProtocol",
]
