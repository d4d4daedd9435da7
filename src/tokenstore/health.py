"""Health grading and periodic self-checks for credential stores."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import TYPE_CHECKING
from uuid import uuid4

from tokenstore.models import ComponentHealth, HealthCheckResult, HealthStatus

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from tokenstore.models import StorageStats
    from tokenstore.proto import CredentialStoreProtocol

logger = logging.getLogger(__name__)

HEALTHY_LATENCY_MS = 100.0
DEGRADED_LATENCY_MS = 500.0
PING_LATENCY_MS = 50.0
PROBE_TTL_SECONDS = 10


def classify_latency(latency_ms: float) -> HealthStatus:
    if latency_ms < HEALTHY_LATENCY_MS:
        return HealthStatus.HEALTHY
    if latency_ms < DEGRADED_LATENCY_MS:
        return HealthStatus.DEGRADED
    return HealthStatus.UNHEALTHY


def _status_message(backend: str, status: HealthStatus) -> str:
    if status is HealthStatus.HEALTHY:
        return f"{backend} storage is healthy"
    if status is HealthStatus.DEGRADED:
        return f"{backend} storage is degraded (high latency)"
    return f"{backend} storage is unhealthy"


def _elapsed_ms(start: float, clock: Callable[[], float]) -> float:
    return (clock() - start) * 1000


def _disconnected_result(backend: str, *, started: float, clock: Callable[[], float]) -> HealthCheckResult:
    message = f"{backend} client not connected"
    return HealthCheckResult(
        healthy=False,
        status=HealthStatus.UNHEALTHY,
        message=message,
        response_time_ms=_elapsed_ms(started, clock),
        components={"connection": ComponentHealth(healthy=False, message="Not connected")},
        errors=[message],
    )


async def run_health_check(  # noqa: PLR0913
    *,
    backend: str,
    target: str,
    connected: bool,
    ping: Callable[[], Awaitable[object]],
    round_trip: Callable[[str], Awaitable[bool]],
    stats: Callable[[], Awaitable[StorageStats]],
    clock: Callable[[], float] = time.perf_counter,
) -> HealthCheckResult:
    """Probe a backend and grade it by total latency.

    Runs a connectivity ping, a write-then-read round trip of a random value and
    a stats snapshot. Each step is reported under its own component, and a failing
    step marks only that component unhealthy. Nothing is raised.
    """
    started = clock()
    if not connected:
        return _disconnected_result(backend, started=started, clock=clock)

    errors: list[str] = []

    ping_started = clock()
    try:
        await ping()
    except Exception as exc:  # noqa: BLE001
        logger.warning("%s health check ping failed: %s", backend, exc)
        errors.append(f"ping: {exc}")
        ping_health = ComponentHealth(healthy=False, message=str(exc))
    else:
        ping_ms = _elapsed_ms(ping_started, clock)
        ping_health = ComponentHealth(
            healthy=ping_ms < PING_LATENCY_MS,
            message=f"{ping_ms:.1f}ms (threshold {PING_LATENCY_MS:.0f}ms)",
        )

    try:
        read_write_ok = await round_trip(uuid4().hex)
    except Exception as exc:  # noqa: BLE001
        logger.warning("%s health check read/write failed: %s", backend, exc)
        errors.append(f"read_write: {exc}")
        read_write_health = ComponentHealth(healthy=False, message=str(exc))
    else:
        if not read_write_ok:
            errors.append("Read/write probe returned a different value")
        read_write_health = ComponentHealth(
            healthy=read_write_ok,
            message="Read/write successful" if read_write_ok else "Read/write failed",
        )

    try:
        snapshot = await stats()
    except Exception as exc:  # noqa: BLE001
        logger.warning("%s health check stats failed: %s", backend, exc)
        errors.append(f"storage: {exc}")
        storage_health = ComponentHealth(healthy=False, message=str(exc))
    else:
        storage_health = ComponentHealth(
            healthy=True,
            message=f"{snapshot.token_count} tokens, {snapshot.authorization_code_count} codes",
        )

    total_ms = _elapsed_ms(started, clock)
    status = HealthStatus.UNHEALTHY if errors else classify_latency(total_ms)
    if status is HealthStatus.UNHEALTHY and not errors:
        errors.append(f"Health check took {total_ms:.1f}ms")

    return HealthCheckResult(
        healthy=status is HealthStatus.HEALTHY,
        status=status,
        message=_status_message(backend, status),
        response_time_ms=total_ms,
        components={
            "connection": ComponentHealth(healthy=True, message=f"Connected to {target}"),
            "ping": ping_health,
            "read_write": read_write_health,
            "storage": storage_health,
        },
        errors=errors,
    )


class HealthMonitor:
    """Run a store's health check on a fixed interval and keep the latest result."""

    def __init__(self, store: CredentialStoreProtocol, *, interval_seconds: float = 30.0) -> None:
        if interval_seconds <= 0:
            msg = "interval_seconds must be positive"
            raise ValueError(msg)
        self.store = store
        self.interval_seconds = interval_seconds
        self._last_result: HealthCheckResult | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def last_result(self) -> HealthCheckResult | None:
        return self._last_result

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check_now(self) -> HealthCheckResult:
        result = await self.store.health_check()
        previous = self._last_result
        if previous is None or previous.status is not result.status:
            level = logging.INFO if result.status is HealthStatus.HEALTHY else logging.WARNING
            logger.log(
                level,
                "Credential store health changed to %s (%.1fms): %s",
                result.status,
                result.response_time_ms,
                result.message,
            )
        self._last_result = result
        return result

    async def start(self) -> bool:
        if self.is_running:
            return False
        self._task = asyncio.create_task(self._run(), name="tokenstore-health-monitor")
        return True

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        while True:
            await self.check_now()
            await asyncio.sleep(self.interval_seconds)
