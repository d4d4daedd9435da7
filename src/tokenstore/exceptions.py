class TokenStoreError(Exception):
    pass


class StoreConnectionError(TokenStoreError, ConnectionError):
    """Backend unreachable, retries exhausted, or connection dropped mid-operation."""


class AlreadyExistsError(TokenStoreError):
    pass


class InvalidArgumentError(TokenStoreError, ValueError):
    pass


class NotFoundError(TokenStoreError, LookupError):
    pass


class CommitFailedError(TokenStoreError):
    pass


class InvalidStateError(TokenStoreError):
    pass


class UnsupportedOperationError(TokenStoreError):
    pass


class ConfigurationError(TokenStoreError):
    pass
