from __future__ import annotations

import asyncio

import pytest

from app.core.errors import UpstreamFetchFailed
from services.metadata_cache import CoalescingCache, MetadataCache
from tests.fixtures import FakeMiniflux, make_feed, make_icon


@pytest.mark.asyncio
async def test_concurrent_requests_for_same_id_share_one_upstream_call():
    upstream = FakeMiniflux(feeds={10: make_feed(10)}, delay=0.02)
    cache = MetadataCache(upstream)

    results = await asyncio.gather(*(cache.get_feed(10) for _ in range(25)))

    assert upstream.feed_calls == [10]
    assert all(feed.id == 10 for feed in results)
    assert all(feed is results[0] for feed in results)


@pytest.mark.asyncio
async def test_distinct_ids_are_fetched_separately_and_cached_forever():
    upstream = FakeMiniflux(feeds={10: make_feed(10), 11: make_feed(11)})
    cache = MetadataCache(upstream)

    await asyncio.gather(cache.get_feed(10), cache.get_feed(11), cache.get_feed(10))
    await cache.get_feed(11)
    await cache.get_feed(10)

    assert sorted(upstream.feed_calls) == [10, 11]
    assert cache.snapshot()["feed"]["size"] == 2
    assert cache.snapshot()["feed"]["misses"] == 2


@pytest.mark.asyncio
async def test_feed_and_icon_caches_are_independent():
    upstream = FakeMiniflux(feeds={7: make_feed(7, icon_id=7)}, icons={7: make_icon(7)})
    cache = MetadataCache(upstream)

    feed = await cache.get_feed(7)
    icon = await cache.get_icon(7)

    assert feed.id == 7 and icon.id == 7
    assert upstream.feed_calls == [7]
    assert upstream.icon_calls == [7]


@pytest.mark.asyncio
async def test_failure_reaches_every_waiter_and_is_evicted():
    upstream = FakeMiniflux(feeds={}, delay=0.01)
    cache = MetadataCache(upstream)

    results = await asyncio.gather(*(cache.get_feed(5) for _ in range(4)), return_exceptions=True)

    assert len(upstream.feed_calls) == 1
    assert all(isinstance(r, UpstreamFetchFailed) for r in results)
    assert len(cache.feeds) == 0
    assert cache.snapshot()["feed"]["failures"] == 1


@pytest.mark.asyncio
async def test_failed_lookup_is_retried_on_next_access():
    upstream = FakeMiniflux(feeds={5: make_feed(5)})
    upstream.failing_feeds.add(5)
    cache = MetadataCache(upstream)

    with pytest.raises(UpstreamFetchFailed):
        await cache.get_feed(5)

    upstream.failing_feeds.clear()
    feed = await cache.get_feed(5)

    assert feed.id == 5
    assert upstream.feed_calls == [5, 5]


@pytest.mark.asyncio
async def test_stale_eviction_does_not_drop_newer_inflight_retry():
    """A late failure callback must only evict the task it belongs to."""
    gate = asyncio.Event()
    calls = []

    async def loader(key: int) -> str:
        calls.append(key)
        if len(calls) == 1:
            raise RuntimeError("first attempt fails")
        await gate.wait()
        return "ok"

    cache: CoalescingCache[int, str] = CoalescingCache("test", loader)

    with pytest.raises(RuntimeError):
        await cache.get(1)

    retry = asyncio.ensure_future(cache.get(1))
    await asyncio.sleep(0)
    inflight = cache._tasks.get(1)
    assert inflight is not None and not inflight.done()

    # Simulate the first failure's eviction firing late, after the retry started
    failed = asyncio.get_running_loop().create_future()
    failed.set_exception(RuntimeError("late"))
    cache._on_done(1, failed)

    assert cache._tasks.get(1) is inflight
    gate.set()
    assert await retry == "ok"
    assert await cache.get(1) == "ok"
    assert calls == [1, 1]


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_cancel_the_fetch():
    upstream = FakeMiniflux(feeds={3: make_feed(3)}, delay=0.05)
    cache = MetadataCache(upstream)

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(cache.get_feed(3), timeout=0.005)

    # The fetch keeps running and populates the cache for the next request
    feed = await cache.get_feed(3)
    assert feed.id == 3
    assert upstream.feed_calls == [3]
