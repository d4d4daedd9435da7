import pytest
from pydantic import ValidationError

from tokenstore.settings import RedisSettings, StoreSettings


def test_store_settings_defaults() -> None:
    settings = StoreSettings()

    assert settings.backend == "memory"
    assert settings.debug is False
    assert settings.health_check_interval_seconds == 30.0
    assert settings.cleanup_interval_seconds == 60.0
    assert isinstance(settings.redis, RedisSettings)


def test_redis_settings_defaults() -> None:
    settings = RedisSettings()

    assert settings.host == "localhost"
    assert settings.port == 6379
    assert settings.password is None
    assert settings.key_prefix == "oauth:"
    assert settings.connection_timeout == 5.0
    assert settings.retry_attempts == 5
    assert settings.queue_while_disconnected is False


def test_redis_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOKENSTORE_REDIS_HOST", "cache.internal")
    monkeypatch.setenv("TOKENSTORE_REDIS_PORT", "6380")
    monkeypatch.setenv("TOKENSTORE_REDIS_PASSWORD", "s3cret")
    monkeypatch.setenv("TOKENSTORE_REDIS_KEY_PREFIX", "auth:")

    settings = RedisSettings()

    assert settings.host == "cache.internal"
    assert settings.port == 6380
    assert settings.password is not None
    assert settings.password.get_secret_value() == "s3cret"
    assert settings.key_prefix == "auth:"


def test_store_settings_read_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOKENSTORE_BACKEND", "redis")

    assert StoreSettings().backend == "redis"


def test_store_settings_reject_unknown_backend() -> None:
    with pytest.raises(ValidationError):
        StoreSettings(backend="sqlite")


@pytest.mark.parametrize("prefix", ["", "   "])
def test_redis_settings_reject_blank_prefix(prefix: str) -> None:
    with pytest.raises(ValidationError, match="key_prefix"):
        RedisSettings(key_prefix=prefix)


def test_redis_settings_reject_retry_delay_above_max() -> None:
    with pytest.raises(ValidationError, match="retry_delay"):
        RedisSettings(retry_delay=5.0, max_retry_delay=1.0)


def test_redis_settings_reject_non_positive_timeout() -> None:
    with pytest.raises(ValidationError):
        RedisSettings(connection_timeout=0)


def test_backoff_delay_doubles_until_capped() -> None:
    settings = RedisSettings(retry_delay=1.0, max_retry_delay=10.0)

    assert [settings.backoff_delay(attempt) for attempt in range(6)] == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]
