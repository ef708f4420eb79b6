"""RemoteCallCache: memoization, coalescing and invalidation."""

from __future__ import annotations

import asyncio

import pytest
from prometheus_client import REGISTRY

from progression.services.remote_cache import RemoteCallCache, cache_key
from progression.services.rpc_client import InMemoryRpcClient, RpcError


def _sample(result: str) -> float:
    value = REGISTRY.get_sample_value("rpc_cache_operations_total", {"result": result})
    return value if value is not None else 0.0


class CountingFetcher:
    def __init__(self, value="data", *, delay: float = 0) -> None:
        self.calls = 0
        self.value = value
        self.delay = delay

    async def __call__(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return f"{self.value}-{self.calls}"


def test_cache_key_is_stable_across_param_order() -> None:
    assert cache_key("get_x", {"a": 1, "b": 2}) == cache_key("get_x", {"b": 2, "a": 1})
    assert cache_key("get_x", {"a": 1}) == 'get_x-{"a": 1}'
    assert cache_key("get_x") == "get_x-null"


def test_second_call_is_served_from_cache() -> None:
    cache = RemoteCallCache()
    fetcher = CountingFetcher()

    async def run():
        first = await cache.execute("k", fetcher)
        second = await cache.execute("k", fetcher)
        return first, second

    hits_before = _sample("hit")
    assert asyncio.run(run()) == ("data-1", "data-1")
    assert fetcher.calls == 1
    assert _sample("hit") - hits_before == 1
    assert "k" in cache
    assert cache.peek("k") == "data-1"


def test_force_refresh_bypasses_and_replaces_entry() -> None:
    cache = RemoteCallCache()
    fetcher = CountingFetcher()

    async def run():
        await cache.execute("k", fetcher)
        return await cache.execute("k", fetcher, force_refresh=True)

    assert asyncio.run(run()) == "data-2"
    assert cache.peek("k") == "data-2"


def test_invalidate_forces_the_fetcher() -> None:
    cache = RemoteCallCache()
    fetcher = CountingFetcher()

    async def run():
        await cache.execute("k", fetcher)
        cache.invalidate("k")
        return await cache.execute("k", fetcher)

    assert asyncio.run(run()) == "data-2"
    assert fetcher.calls == 2


def test_concurrent_misses_share_one_fetch() -> None:
    cache = RemoteCallCache()
    fetcher = CountingFetcher(delay=0.01)

    async def run():
        return await asyncio.gather(*(cache.execute("k", fetcher) for _ in range(5)))

    coalesced_before = _sample("coalesced")
    assert asyncio.run(run()) == ["data-1"] * 5
    assert fetcher.calls == 1
    assert _sample("coalesced") - coalesced_before == 4


def test_invalidation_during_flight_prevents_storage() -> None:
    cache = RemoteCallCache()
    fetcher = CountingFetcher(delay=0.01)

    async def run():
        pending = asyncio.ensure_future(cache.execute("k", fetcher))
        await asyncio.sleep(0)
        cache.invalidate("k")
        result = await pending
        return result, "k" in cache

    assert asyncio.run(run()) == ("data-1", False)


def test_failures_are_not_cached() -> None:
    cache = RemoteCallCache()
    attempts = 0

    async def flaky():
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise RpcError("get_x", "boom")
        return "ok"

    async def run():
        with pytest.raises(RpcError):
            await cache.execute("k", flaky)
        assert "k" not in cache
        return await cache.execute("k", flaky)

    assert asyncio.run(run()) == "ok"
    assert attempts == 2


def test_invalidate_by_pattern_is_substring_match() -> None:
    cache = RemoteCallCache()

    async def run():
        for key in ("get_course_structure-1", "get_course_structure-2", "get_my_stats-u"):
            await cache.execute(key, CountingFetcher())

    asyncio.run(run())
    assert cache.invalidate_by_pattern("get_course_structure") == 2
    assert len(cache) == 1
    assert "get_my_stats-u" in cache


def test_invalidate_tag_is_exact() -> None:
    rpc = InMemoryRpcClient()
    rpc.register("get_course", lambda p: {"id": p["id"]})
    rpc.register("get_courses_list", lambda p: [])
    cache = RemoteCallCache(rpc)

    async def run():
        await cache.call("get_course", {"id": 1})
        await cache.call("get_course", {"id": 2})
        await cache.call("get_courses_list")

    asyncio.run(run())
    assert cache.invalidate_tag("get_course") == 2
    assert len(cache) == 1
    assert cache_key("get_courses_list") in cache


def test_custom_tags_group_operations() -> None:
    cache = RemoteCallCache()

    async def run():
        await cache.execute("a", CountingFetcher(), tags=["course:1"])
        await cache.execute("b", CountingFetcher(), tags=["course:1", "course:2"])
        await cache.execute("c", CountingFetcher(), tags=["course:2"])

    asyncio.run(run())
    assert cache.invalidate_tag("course:1") == 2
    assert "c" in cache
    assert cache.invalidate_tag("course:1") == 0


def test_call_goes_through_rpc_once() -> None:
    rpc = InMemoryRpcClient()
    rpc.register("get_my_courses", lambda p: ["course"])
    cache = RemoteCallCache(rpc)

    async def run():
        await cache.call("get_my_courses", {"p_user_id": "u1"})
        return await cache.call("get_my_courses", {"p_user_id": "u1"})

    assert asyncio.run(run()) == ["course"]
    assert rpc.call_count("get_my_courses") == 1


def test_call_without_rpc_client_fails() -> None:
    with pytest.raises(RuntimeError):
        asyncio.run(RemoteCallCache().call("get_x"))


def test_clear_drops_everything_and_updates_gauge() -> None:
    cache = RemoteCallCache()
    asyncio.run(cache.execute("k", CountingFetcher()))
    assert REGISTRY.get_sample_value("rpc_cache_entries") == 1

    cache.clear()
    assert len(cache) == 0
    assert REGISTRY.get_sample_value("rpc_cache_entries") == 0


def test_cancelled_owner_does_not_cancel_shared_fetch() -> None:
    cache = RemoteCallCache()
    calls = 0

    async def run():
        gate = asyncio.Event()

        async def fetcher():
            nonlocal calls
            calls += 1
            await gate.wait()
            return "value"

        owner = asyncio.ensure_future(cache.execute("k", fetcher))
        await asyncio.sleep(0)
        joiner = asyncio.ensure_future(cache.execute("k", fetcher))
        await asyncio.sleep(0)
        owner.cancel()
        await asyncio.sleep(0)
        gate.set()
        return await joiner, owner.cancelled()

    assert asyncio.run(run()) == ("value", True)
    assert calls == 1
    assert cache.peek("k") == "value"


def test_call_after_invalidation_starts_fresh_fetch() -> None:
    cache = RemoteCallCache()

    async def run():
        gate = asyncio.Event()

        async def old():
            await gate.wait()
            return "old"

        async def new():
            return "new"

        first = asyncio.ensure_future(cache.execute("k", old))
        await asyncio.sleep(0)
        cache.invalidate("k")
        second = await cache.execute("k", new)
        gate.set()
        return await first, second

    assert asyncio.run(run()) == ("old", "new")
    assert cache.peek("k") == "new"


def test_invalidation_bookkeeping_does_not_grow() -> None:
    cache = RemoteCallCache()

    async def run():
        for i in range(50):
            await cache.execute(f"k{i}", CountingFetcher())
            cache.invalidate(f"k{i}")
        pending = asyncio.ensure_future(cache.execute("slow", CountingFetcher(delay=0.01)))
        await asyncio.sleep(0)
        cache.invalidate("slow")
        await pending

    asyncio.run(run())
    assert cache._generations == {}
    assert cache._pending == {}
    assert len(cache) == 0
