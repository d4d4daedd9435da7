from enum import StrEnum

from tokenstore.exceptions import InvalidArgumentError

_VISIBLE_CHARS = 8


class Entity(StrEnum):
    CLIENT = "client"
    TOKEN = "token"  # noqa: S105
    REFRESH_TOKEN = "refreshToken"  # noqa: S105
    AUTHORIZATION_CODE = "authorizationCode"
    HEALTH = "health"


def validate_ttl(ttl_seconds: int) -> int:
    if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int):
        msg = f"Invalid TTL: {ttl_seconds!r} (must be a whole number of seconds)"
        raise InvalidArgumentError(msg)
    if ttl_seconds <= 0:
        msg = f"Invalid TTL: {ttl_seconds} (must be > 0)"
        raise InvalidArgumentError(msg)
    return ttl_seconds


def redact(value: str) -> str:
    return f"{value[:_VISIBLE_CHARS]}..."
