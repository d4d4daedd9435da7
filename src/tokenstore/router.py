from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from tokenstore.exceptions import StoreConnectionError
from tokenstore.models import HealthStatus

if TYPE_CHECKING:
    from tokenstore.proto import CredentialStoreProtocol

logger = logging.getLogger(__name__)


def build_ops_router(store: CredentialStoreProtocol, *, prefix: str = "") -> APIRouter:
    router = APIRouter(prefix=prefix, tags=["ops"])

    async def health_handler() -> JSONResponse:
        result = await store.health_check()
        status_code = (
            status.HTTP_503_SERVICE_UNAVAILABLE
            if result.status is HealthStatus.UNHEALTHY
            else status.HTTP_200_OK
        )
        return JSONResponse(content=result.model_dump(mode="json"), status_code=status_code)

    async def stats_handler() -> JSONResponse:
        try:
            stats = await store.get_stats()
        except StoreConnectionError as exc:
            logger.warning("Stats unavailable: %s", exc)
            return JSONResponse(
                content={"detail": str(exc)},
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            )
        return JSONResponse(content=stats.model_dump(mode="json"))

    router.add_api_route("/health", health_handler, methods=["GET"])
    router.add_api_route("/stats", stats_handler, methods=["GET"])
    return router
