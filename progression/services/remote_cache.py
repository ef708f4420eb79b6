"""Memoizing cache over named remote calls.

The key is ``"{operation}-{params as canonical JSON}"`` unless the caller
supplies one.  Entries never expire: whoever mutates upstream state is
responsible for invalidating what the mutation touched.  Three ways to do
that:

  invalidate(key)                   one entry
  invalidate_tag(tag)               every entry tagged with a resource
  invalidate_by_pattern(substr)     every key containing a substring

Tags are the precise option.  By default each entry carries its operation
name as a tag, so ``invalidate_tag("get_course_structure")`` drops every
course structure regardless of params, while a substring such as
``"get_course"`` would also hit ``get_courses_list``.

IN-FLIGHT REQUESTS
-------------------
Concurrent misses for the same key share one fetch, which runs as its own
task: every caller awaits it through ``asyncio.shield``, so cancelling one
caller never cancels the fetch the others are waiting on.  Invalidating a
key while its fetch is in flight detaches that fetch: its result is still
returned to the callers already waiting but is not stored, and the next
caller starts a fresh fetch.

Failures are never stored; the next call goes to the network again.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from progression.core.metrics import RPC_CACHE_ENTRIES, RPC_CACHE_OPERATIONS
from progression.services.rpc_client import RpcClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CacheEntry:
    key: str
    value: Any
    tags: frozenset[str]


def cache_key(operation: str, params: Mapping[str, Any] | None = None) -> str:
    return f"{operation}-{json.dumps(params, sort_keys=True, default=str)}"


class RemoteCallCache:
    def __init__(self, rpc: RpcClient | None = None) -> None:
        self._rpc = rpc
        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, asyncio.Future[Any]] = {}
        self._inflight_tags: dict[str, frozenset[str]] = {}
        # bumped when a key is invalidated while fetches for it are pending;
        # a fetch only stores its result if the generation it started with
        # is still current.  Both maps only hold keys with pending fetches.
        self._generations: dict[str, int] = {}
        self._pending: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def peek(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    async def execute(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[Any]],
        *,
        force_refresh: bool = False,
        tags: Iterable[str] = (),
    ) -> Any:
        """Return the cached result for ``key`` or fetch and store it.

        A hit completes without awaiting anything.  ``force_refresh`` skips
        the stored entry but still joins a fetch already in flight.
        """
        if not force_refresh:
            entry = self._entries.get(key)
            if entry is not None:
                RPC_CACHE_OPERATIONS.labels(result="hit").inc()
                return entry.value

        pending = self._inflight.get(key)
        if pending is not None:
            RPC_CACHE_OPERATIONS.labels(result="coalesced").inc()
            logger.debug("Joining in-flight fetch", extra={"cache_key": key})
            return await asyncio.shield(pending)

        RPC_CACHE_OPERATIONS.labels(result="miss").inc()
        tag_set = frozenset(tags)
        task = asyncio.ensure_future(
            self._fetch(key, fetcher, self._generations.get(key, 0), tag_set)
        )
        self._inflight[key] = task
        self._pending[key] = self._pending.get(key, 0) + 1
        self._inflight_tags[key] = tag_set
        return await asyncio.shield(task)

    async def call(
        self,
        operation: str,
        params: Mapping[str, Any] | None = None,
        *,
        force_refresh: bool = False,
        tags: Iterable[str] | None = None,
        key: str | None = None,
    ) -> Any:
        """Cached ``rpc.call(operation, params)``.

        Tags default to the operation name.
        """
        if self._rpc is None:
            raise RuntimeError("RemoteCallCache was built without an RpcClient")

        rpc = self._rpc

        async def fetch() -> Any:
            return await rpc.call(operation, params)

        return await self.execute(
            key or cache_key(operation, params),
            fetch,
            force_refresh=force_refresh,
            tags=(operation,) if tags is None else tags,
        )

    def invalidate(self, key: str) -> None:
        if key in self._pending:
            self._bump(key)
        if key in self._inflight:
            del self._inflight[key]
            del self._inflight_tags[key]
        if self._entries.pop(key, None) is not None:
            logger.debug("Invalidated", extra={"cache_key": key})
        RPC_CACHE_ENTRIES.set(len(self._entries))

    def invalidate_by_pattern(self, pattern: str) -> int:
        keys = [k for k in self._all_keys() if pattern in k]
        for key in keys:
            self.invalidate(key)
        return len(keys)

    def invalidate_tag(self, tag: str) -> int:
        keys = [k for k, e in self._entries.items() if tag in e.tags]
        keys.extend(k for k, tags in self._inflight_tags.items() if tag in tags)
        keys = list(dict.fromkeys(keys))
        for key in keys:
            self.invalidate(key)
        if keys:
            logger.info("Invalidated %d entries for tag=%s", len(keys), tag)
        return len(keys)

    def clear(self) -> None:
        for key in self._pending:
            self._bump(key)
        self._inflight.clear()
        self._inflight_tags.clear()
        self._entries.clear()
        RPC_CACHE_ENTRIES.set(0)

    def _all_keys(self) -> list[str]:
        return list(dict.fromkeys([*self._entries, *self._inflight]))

    def _bump(self, key: str) -> None:
        self._generations[key] = self._generations.get(key, 0) + 1

    async def _fetch(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[Any]],
        generation: int,
        tags: frozenset[str],
    ) -> Any:
        me = asyncio.current_task()
        try:
            result = await fetcher()
            if self._generations.get(key, 0) == generation:
                self._store(key, result, tags)
            else:
                logger.info(
                    "Discarding result invalidated during fetch", extra={"cache_key": key}
                )
            return result
        finally:
            if self._inflight.get(key) is me:
                del self._inflight[key]
                del self._inflight_tags[key]
            remaining = self._pending[key] - 1
            if remaining:
                self._pending[key] = remaining
            else:
                # nothing left that could compare against this generation
                del self._pending[key]
                self._generations.pop(key, None)

    def _store(self, key: str, value: Any, tags: frozenset[str]) -> None:
        self._entries[key] = CacheEntry(key=key, value=value, tags=tags)
        RPC_CACHE_ENTRIES.set(len(self._entries))
