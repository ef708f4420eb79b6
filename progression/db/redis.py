"""Redis connection for the realtime transport.

When REDIS_URL is set the process gets one shared asyncio client; when it
is not (local dev, tests) ``redis_pool`` is None and the services fall
back to the in-memory transport.  No Redis server is needed to run the
test suite.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from progression.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Verify the connection on startup and release it on shutdown.

    An unreachable Redis is logged but does not stop the app from
    starting; the health endpoint reports it as degraded.
    """
    if redis_pool is None:
        logger.info("No REDIS_URL configured; realtime uses the in-memory transport")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        logger.exception("Redis connection failed on startup")
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
