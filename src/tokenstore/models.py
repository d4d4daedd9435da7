from __future__ import annotations

import time
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field


class ConnectionStatus(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    CLOSED = "closed"


class HealthStatus(StrEnum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class StoredClient(BaseModel):
    client_id: str
    secret_hash: str | None = None
    redirect_uris: list[str] = Field(default_factory=list)
    scopes: list[str] = Field(default_factory=list)
    name: str | None = None
    created_at: float = Field(default_factory=time.time)


class StoredAccessToken(BaseModel):
    client_id: str
    scopes: list[str] = Field(default_factory=list)
    issued_at: float = Field(default_factory=time.time)
    expires_at: float
    refresh_token: str | None = None
    authorization_code: str | None = None
    resource: str | None = None
    user_id: str | None = None


class StoredAuthorizationCode(BaseModel):
    client_id: str
    scopes: list[str] = Field(default_factory=list)
    redirect_uri: str
    code_challenge: str
    code_challenge_method: Literal["S256", "plain"] = "S256"
    expires_at: float
    used: bool = False
    resource: str | None = None
    user_id: str | None = None


class StorageStats(BaseModel):
    backend: str
    token_count: int = 0
    refresh_token_count: int = 0
    authorization_code_count: int = 0
    client_count: int = 0
    memory_usage: int | None = None
    active_connections: int | None = None


class ComponentHealth(BaseModel):
    healthy: bool
    message: str | None = None


class HealthCheckResult(BaseModel):
    healthy: bool
    status: HealthStatus
    message: str
    response_time_ms: float
    timestamp: float = Field(default_factory=time.time)
    components: dict[str, ComponentHealth] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
