"""Service instances owned by the application root.

``build_services`` picks concrete implementations from ``Settings``:

  RPC_BASE_URL set  -> HttpRpcClient         else InMemoryRpcClient
  REDIS_URL set     -> RedisRealtimeTransport else InMemoryRealtimeTransport

The FastAPI app keeps the result on ``app.state.services`` and closes it
on shutdown.  Tests build their own ``Services`` from in-memory parts and
pass it to ``create_app``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from progression.core.config import Settings
from progression.services.realtime import (
    InMemoryRealtimeTransport,
    RealtimeTransport,
    RedisRealtimeTransport,
)
from progression.services.remote_cache import RemoteCallCache
from progression.services.rpc_client import HttpRpcClient, InMemoryRpcClient, RpcClient
from progression.services.stats_sync import RpcStatsSource, StatsSyncManager

logger = logging.getLogger(__name__)


@dataclass
class Services:
    rpc: RpcClient
    cache: RemoteCallCache
    transport: RealtimeTransport
    stats: StatsSyncManager

    @staticmethod
    def create(
        rpc: RpcClient,
        transport: RealtimeTransport,
        *,
        settle_delay: float = 0.3,
    ) -> Services:
        return Services(
            rpc=rpc,
            cache=RemoteCallCache(rpc),
            transport=transport,
            stats=StatsSyncManager(
                RpcStatsSource(rpc), transport, settle_delay=settle_delay
            ),
        )

    async def aclose(self) -> None:
        await self.stats.aclose()
        await self.rpc.aclose()


def build_services(settings: Settings, redis_client=None) -> Services:
    if settings.rpc_base_url:
        rpc: RpcClient = HttpRpcClient(settings.rpc_base_url, settings.rpc_api_key)
    else:
        logger.warning("No RPC_BASE_URL configured; remote calls use the in-memory client")
        rpc = InMemoryRpcClient()

    if redis_client is not None:
        transport: RealtimeTransport = RedisRealtimeTransport(redis_client)
    else:
        transport = InMemoryRealtimeTransport()

    return Services.create(rpc, transport, settle_delay=settings.stats_settle_delay)
