from typing import Literal, Self

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RedisSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TOKENSTORE_REDIS_",
        env_file=".env",
        extra="ignore",
    )

    host: str = Field(default="localhost")
    port: int = Field(default=6379, ge=1, le=65535)
    password: SecretStr | None = Field(default=None)
    db: int = Field(default=0, ge=0)
    key_prefix: str = Field(default="oauth:")

    # seconds
    connection_timeout: float = Field(default=5.0, gt=0)
    retry_attempts: int = Field(default=5, ge=0)
    retry_delay: float = Field(default=1.0, gt=0)
    max_retry_delay: float = Field(default=10.0, gt=0)

    queue_while_disconnected: bool = Field(default=False)

    @field_validator("key_prefix")
    @classmethod
    def validate_key_prefix(cls, value: str) -> str:
        if not value or not value.strip():
            msg = "key_prefix must be a non-empty string"
            raise ValueError(msg)
        return value

    @model_validator(mode="after")
    def validate_retry_window(self) -> Self:
        if self.retry_delay > self.max_retry_delay:
            msg = "retry_delay must not exceed max_retry_delay"
            raise ValueError(msg)
        return self

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        return min(self.retry_delay * 2**attempt, self.max_retry_delay)


class StoreSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TOKENSTORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    backend: Literal["memory", "redis"] = Field(default="memory")
    name: str | None = Field(default=None)
    debug: bool = Field(default=False)

    health_check_interval_seconds: float = Field(default=30.0, gt=0)
    cleanup_interval_seconds: float = Field(default=60.0, gt=0)

    redis: RedisSettings = Field(default_factory=RedisSettings)
