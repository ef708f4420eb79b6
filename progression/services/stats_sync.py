"""Live mirror of one learner's gamification stats.

``StatsSyncManager`` holds the single authoritative ``StatsSnapshot`` for
the process.  Readers never wait on the network: ``subscribe`` hands a
listener the current snapshot immediately and then every replacement.

WHERE UPDATES COME FROM
------------------------
  setup_subscription(user_id)
      opens ONE realtime subscription for the learner covering both
      streams, then pulls the snapshot once.

  snapshot_changed event  -> pull immediately
  log_inserted event      -> pull one settle delay (300 ms by default)
                             after the first insert of a burst, giving the
                             backend time to fold the log entry into the
                             stats row.  Inserts that arrive while that
                             pull is pending share it; a steady stream of
                             inserts still gets a pull every settle delay.

  refresh()               -> manual pull for the subscribed learner

CONSISTENCY
------------
A pull replaces the snapshot wholesale and notifies listeners
synchronously, in subscription order.  A failed pull is logged and the
previous snapshot stays visible.  A pull that completes after the manager
switched to another learner, or after ``cleanup()``, is dropped.  The
manager never writes upstream.

All state changes happen between awaits on one event loop, so there are
no locks; ``setup_subscription`` records the user id before its first
await, which is what makes overlapping calls for the same learner
subscribe only once.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from progression.core.metrics import REALTIME_EVENTS, STATS_FETCHES, STATS_LISTENERS
from progression.models.stats import LevelProgress, StatsSnapshot, level_progress
from progression.services.debounce import Debouncer
from progression.services.observable import Listener, Observable, Subscription
from progression.services.realtime import (
    STREAM_KINDS,
    RealtimeEvent,
    RealtimeTransport,
)
from progression.services.rpc_client import RpcClient

logger = logging.getLogger(__name__)

DEFAULT_SETTLE_DELAY = 0.3


@runtime_checkable
class StatsSource(Protocol):
    async def fetch_snapshot(self, user_id: str) -> Mapping[str, Any] | None:
        """Pull the learner's current stats; None when there is no row."""
        ...


class RpcStatsSource:
    def __init__(self, rpc: RpcClient, function: str = "get_my_stats") -> None:
        self._rpc = rpc
        self._function = function

    async def fetch_snapshot(self, user_id: str) -> Mapping[str, Any] | None:
        return await self._rpc.call(self._function, {"p_user_id": user_id})


class StatsSyncManager:
    def __init__(
        self,
        source: StatsSource,
        transport: RealtimeTransport,
        *,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
    ) -> None:
        self._source = source
        self._transport = transport
        self._snapshot = StatsSnapshot()
        self._listeners: Observable[StatsSnapshot] = Observable(
            on_change=STATS_LISTENERS.set
        )
        self._subscribed_user_id: str | None = None
        self._handle: Any = None
        self._settle = Debouncer(settle_delay, self._settled_refetch)
        self._fetches: set[asyncio.Task[None]] = set()
        # bumped whenever the subscription changes; pulls started by an event
        # carry the value they were started under
        self._epoch = 0

    # -- reads ---------------------------------------------------------------

    @property
    def snapshot(self) -> StatsSnapshot:
        return self._snapshot

    @property
    def level_progress(self) -> LevelProgress:
        return level_progress(self._snapshot)

    @property
    def subscribed_user_id(self) -> str | None:
        return self._subscribed_user_id

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Listener[StatsSnapshot]) -> Subscription:
        """Register ``listener`` and call it right away with the snapshot.

        Dropping the last listener leaves the realtime subscription open;
        only ``cleanup()`` closes it.
        """
        subscription = self._listeners.subscribe(listener)
        listener(self._snapshot)
        return subscription

    # -- lifecycle -----------------------------------------------------------

    async def setup_subscription(self, user_id: str) -> None:
        if self._subscribed_user_id == user_id:
            return

        previous_handle = self._handle
        previous_user = self._subscribed_user_id
        self._subscribed_user_id = user_id
        self._handle = None
        self._cancel_pulls()

        if previous_handle is not None:
            logger.info(
                "Closing subscription of previous learner",
                extra={"user_id": previous_user},
            )
            await self._transport.unsubscribe(previous_handle)

        logger.info("Opening stats subscription", extra={"user_id": user_id})
        try:
            handle = await self._transport.subscribe(
                user_id, STREAM_KINDS, self._on_event
            )
        except Exception:
            # leave the manager unsubscribed so a later call can retry
            if self._subscribed_user_id == user_id:
                self._subscribed_user_id = None
            raise
        if self._subscribed_user_id != user_id:
            # cleanup() or another learner took over while we were waiting
            await self._transport.unsubscribe(handle)
            return
        self._handle = handle

        await self.fetch_stats(user_id)

    async def cleanup(self) -> None:
        """Close the realtime subscription; listeners stay registered.

        Pulls started by realtime events are cancelled, and any that still
        complete are dropped.
        """
        self._cancel_pulls()
        handle, user_id = self._handle, self._subscribed_user_id
        self._handle = None
        self._subscribed_user_id = None
        if handle is not None:
            logger.info("Closing stats subscription", extra={"user_id": user_id})
            await self._transport.unsubscribe(handle)

    async def aclose(self) -> None:
        await self.cleanup()
        await self.wait_idle()

    # -- pulls ---------------------------------------------------------------

    async def fetch_stats(self, user_id: str) -> None:
        """Pull and publish the snapshot; failures keep the previous one."""
        await self._pull(user_id, epoch=None)

    async def _pull(self, user_id: str, epoch: int | None) -> None:
        if not user_id:
            return

        try:
            data = await self._source.fetch_snapshot(user_id)
        except Exception:
            STATS_FETCHES.labels(result="error").inc()
            logger.exception("Error fetching stats", extra={"user_id": user_id})
            return

        stale_event = epoch is not None and epoch != self._epoch
        if stale_event or (
            self._subscribed_user_id is not None and self._subscribed_user_id != user_id
        ):
            STATS_FETCHES.labels(result="discarded").inc()
            logger.info("Dropping stats of inactive learner", extra={"user_id": user_id})
            return

        if not data:
            STATS_FETCHES.labels(result="empty").inc()
            logger.debug("No stats row yet", extra={"user_id": user_id})
            return

        self._snapshot = StatsSnapshot.from_payload(data)
        STATS_FETCHES.labels(result="ok").inc()
        logger.debug(
            "Stats updated points=%d level=%d",
            self._snapshot.points,
            self._snapshot.level,
            extra={"user_id": user_id},
        )
        self._listeners.emit(self._snapshot)

    async def refresh(self) -> None:
        if self._subscribed_user_id is None:
            return
        await self.fetch_stats(self._subscribed_user_id)

    async def wait_idle(self) -> None:
        """Wait for pending settle timers and event-triggered pulls."""
        await self._settle.wait_idle()
        while self._fetches:
            await asyncio.gather(*self._fetches, return_exceptions=True)

    # -- realtime ------------------------------------------------------------

    def _on_event(self, event: RealtimeEvent) -> None:
        if event.filter_key != self._subscribed_user_id:
            return
        REALTIME_EVENTS.labels(stream=event.kind).inc()

        if event.kind == "snapshot_changed":
            self._spawn_fetch(event.filter_key)
        elif event.kind == "log_inserted":
            self._settle.trigger()

    async def _settled_refetch(self) -> None:
        if self._subscribed_user_id is not None:
            await self._pull(self._subscribed_user_id, self._epoch)

    def _cancel_pulls(self) -> None:
        self._epoch += 1
        self._settle.cancel()
        for task in self._fetches:
            task.cancel()

    def _spawn_fetch(self, user_id: str) -> None:
        task = asyncio.ensure_future(self._pull(user_id, self._epoch))
        self._fetches.add(task)
        task.add_done_callback(self._fetches.discard)

