from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from progression.api.courses import router as courses_router
from progression.api.health import router as health_router
from progression.api.metrics_endpoint import router as metrics_router
from progression.api.quizzes import router as quizzes_router
from progression.api.stats import router as stats_router
from progression.core.config import SETTINGS
from progression.core.logging import setup_logging
from progression.db.redis import lifespan_redis, redis_pool
from progression.middleware.request_context import (
    RequestContextMiddleware,
    install_log_filter,
)
from progression.services.container import Services, build_services

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
install_log_filter()

logger = logging.getLogger(__name__)


def create_app(services: Services | None = None) -> FastAPI:
    """Build the application.

    Tests pass their own ``services``; otherwise they are built from
    ``SETTINGS`` at startup and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        async with lifespan_redis():
            owned = services is None
            if owned:
                app.state.services = build_services(SETTINGS, redis_pool)
            try:
                yield
            finally:
                if owned:
                    await app.state.services.aclose()

    app = FastAPI(
        title="progression-engine",
        lifespan=lifespan,
        docs_url="/docs" if SETTINGS.is_dev else None,
        redoc_url="/redoc" if SETTINGS.is_dev else None,
    )
    if services is not None:
        app.state.services = services

    app.add_middleware(RequestContextMiddleware)

    app.include_router(metrics_router)
    app.include_router(health_router)
    app.include_router(courses_router)
    app.include_router(quizzes_router)
    app.include_router(stats_router)
    return app


app = create_app()

logger.info(
    "progression-engine started  env=%s log_level=%s port=%d docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
)
