from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.requests import HTTPConnection

from progression.services.container import Services
from progression.services.rpc_client import RpcError
from progression.services.stats_sync import StatsSyncManager

logger = logging.getLogger(__name__)


def get_services(conn: HTTPConnection) -> Services:
    """The services built by the app lifespan (or injected by tests)."""
    return conn.app.state.services


def get_stats_manager(
    services: Annotated[Services, Depends(get_services)],
) -> StatsSyncManager:
    return services.stats


def bad_gateway(error: RpcError) -> HTTPException:
    """Translate a failed remote call into a 502 for the caller."""
    logger.warning("Remote call failed: %s", error, extra={"operation": error.function})
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail={"function": error.function, "message": error.message},
    )
