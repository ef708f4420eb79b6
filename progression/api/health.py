"""Liveness and readiness probes.

``/health`` always answers 200 while the process can respond; its
``status`` field turns to ``degraded`` when a configured dependency is
unreachable.  ``/ready`` has no critical dependency to wait for: without
Redis the in-memory transport is used, and the remote backend is only
needed per request.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Response

from progression.api.dependencies import get_services
from progression.db.redis import redis_pool
from progression.services.container import Services
from progression.services.realtime import RedisRealtimeTransport
from progression.services.rpc_client import HttpRpcClient

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(services: Annotated[Services, Depends(get_services)]) -> dict:
    checks: dict[str, str] = {}
    overall = "ok"

    if redis_pool is not None:
        try:
            await redis_pool.ping()  # type: ignore[misc]
            checks["redis"] = "ok"
        except Exception as e:
            logger.warning("Redis health check failed: %s", e)
            checks["redis"] = "degraded"
            overall = "degraded"
    else:
        checks["redis"] = "not_configured"

    checks["rpc"] = "http" if isinstance(services.rpc, HttpRpcClient) else "in_memory"
    checks["realtime"] = (
        "redis" if isinstance(services.transport, RedisRealtimeTransport) else "in_memory"
    )

    return {
        "status": overall,
        "checks": checks,
        "stats": {
            "subscribed": services.stats.subscribed_user_id is not None,
            "listeners": services.stats.listener_count,
        },
        "cache_entries": len(services.cache),
    }


@router.get("/ready")
async def ready() -> Response:
    return Response(status_code=200)
