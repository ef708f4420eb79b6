"""Push notifications for gamification changes.

The backend announces two logical streams per learner:

  snapshot_changed   the learner's stats row was written
  log_inserted       a row was appended to the gamification log; the
                     stats row is recomputed from it shortly after

A consumer subscribes once for a filter key (the user id) and a set of
stream kinds and receives ``RealtimeEvent`` objects through a plain
callback.  The callback runs on the event loop and must not block.

  InMemoryRealtimeTransport   process-local fan-out for tests and dev.
  RedisRealtimeTransport      Redis pub/sub; one channel per
                              (kind, filter key):
                              ``realtime:{kind}:{filter_key}``.

Reconnecting a dropped Redis connection is not handled here.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

StreamKind = Literal["snapshot_changed", "log_inserted"]
STREAM_KINDS: tuple[StreamKind, ...] = ("snapshot_changed", "log_inserted")


@dataclass(frozen=True, slots=True)
class RealtimeEvent:
    kind: StreamKind
    filter_key: str
    payload: dict[str, Any] = field(default_factory=dict)


EventCallback = Callable[[RealtimeEvent], None]


@runtime_checkable
class RealtimeTransport(Protocol):
    async def subscribe(
        self,
        filter_key: str,
        kinds: Iterable[StreamKind],
        callback: EventCallback,
    ) -> Any:
        """Start delivering matching events; returns an opaque handle."""
        ...

    async def unsubscribe(self, handle: Any) -> None: ...

    async def publish(
        self,
        kind: StreamKind,
        filter_key: str,
        payload: Mapping[str, Any] | None = None,
    ) -> None: ...


def channel_name(kind: StreamKind, filter_key: str) -> str:
    return f"realtime:{kind}:{filter_key}"


def _check_kinds(kinds: Iterable[StreamKind]) -> frozenset[StreamKind]:
    kind_set = frozenset(kinds)
    unknown = kind_set.difference(STREAM_KINDS)
    if unknown:
        raise ValueError(f"unknown stream kinds: {sorted(unknown)}")
    return kind_set


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class _LocalSubscription:
    id: int
    filter_key: str
    kinds: frozenset[StreamKind]
    callback: EventCallback


class InMemoryRealtimeTransport:
    def __init__(self) -> None:
        self._subscriptions: dict[int, _LocalSubscription] = {}
        self._ids = itertools.count(1)
        self.subscribe_calls = 0

    @property
    def active_subscriptions(self) -> int:
        return len(self._subscriptions)

    async def subscribe(
        self,
        filter_key: str,
        kinds: Iterable[StreamKind],
        callback: EventCallback,
    ) -> int:
        self.subscribe_calls += 1
        sub = _LocalSubscription(
            id=next(self._ids),
            filter_key=filter_key,
            kinds=_check_kinds(kinds),
            callback=callback,
        )
        self._subscriptions[sub.id] = sub
        logger.debug("Local subscription %d for %s", sub.id, filter_key)
        return sub.id

    async def unsubscribe(self, handle: int) -> None:
        self._subscriptions.pop(handle, None)

    async def publish(
        self,
        kind: StreamKind,
        filter_key: str,
        payload: Mapping[str, Any] | None = None,
    ) -> None:
        self.emit(kind, filter_key, payload)

    def emit(
        self,
        kind: StreamKind,
        filter_key: str,
        payload: Mapping[str, Any] | None = None,
    ) -> None:
        """Deliver an event synchronously to every matching subscriber."""
        event = RealtimeEvent(kind=kind, filter_key=filter_key, payload=dict(payload or {}))
        for sub in list(self._subscriptions.values()):
            if sub.filter_key == filter_key and kind in sub.kinds:
                sub.callback(event)


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class _RedisSubscription:
    pubsub: Any
    reader: asyncio.Task[None]
    channels: tuple[str, ...]


class RedisRealtimeTransport:
    """Redis pub/sub transport; expects a client with ``decode_responses=True``."""

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def subscribe(
        self,
        filter_key: str,
        kinds: Iterable[StreamKind],
        callback: EventCallback,
    ) -> _RedisSubscription:
        channels = {
            channel_name(kind, filter_key): kind for kind in sorted(_check_kinds(kinds))
        }
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(*channels)
        reader = asyncio.ensure_future(
            self._read(pubsub, channels, filter_key, callback)
        )
        logger.info("Subscribed to %s", ", ".join(channels))
        return _RedisSubscription(pubsub=pubsub, reader=reader, channels=tuple(channels))

    async def unsubscribe(self, handle: _RedisSubscription) -> None:
        handle.reader.cancel()
        try:
            await handle.reader
        except asyncio.CancelledError:
            pass
        await handle.pubsub.unsubscribe(*handle.channels)
        await handle.pubsub.aclose()
        logger.info("Unsubscribed from %s", ", ".join(handle.channels))

    async def publish(
        self,
        kind: StreamKind,
        filter_key: str,
        payload: Mapping[str, Any] | None = None,
    ) -> None:
        await self._redis.publish(
            channel_name(kind, filter_key), json.dumps(dict(payload or {}), default=str)
        )

    @staticmethod
    async def _read(
        pubsub,
        channels: dict[str, StreamKind],
        filter_key: str,
        callback: EventCallback,
    ) -> None:
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            kind = channels.get(message.get("channel"))
            if kind is None:
                continue
            try:
                payload = json.loads(message.get("data") or "{}")
            except ValueError:
                logger.warning("Dropping malformed event on %s", message.get("channel"))
                continue
            if not isinstance(payload, dict):
                payload = {"data": payload}
            try:
                callback(RealtimeEvent(kind=kind, filter_key=filter_key, payload=payload))
            except Exception:
                logger.exception("Realtime callback failed for %s", kind)
