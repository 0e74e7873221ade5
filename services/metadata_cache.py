# services/metadata_cache.py
"""
Request-coalescing cache for Miniflux feed and icon metadata.

Each key maps to one asyncio.Task. The first caller starts the task, every
concurrent caller awaits the same task, and a successful result stays cached
for the process lifetime. A failed task is evicted so the next access retries.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Generic, Hashable, TypeVar

from app.core.logging import get_logger
from app.models.miniflux import Feed, Icon
from services.miniflux_service import MinifluxClient

logger = get_logger()

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    failures: int = 0


class CoalescingCache(Generic[K, V]):
    """
    Keyed table of pending-or-complete lookups.

    Callers await the shared task through asyncio.shield: cancelling a caller
    (client disconnect, request timeout) never cancels the fetch, so the
    result still lands in the cache for later requests.
    """

    def __init__(self, name: str, loader: Callable[[K], Awaitable[V]]) -> None:
        self.name = name
        self._loader = loader
        self._tasks: Dict[K, "asyncio.Task[V]"] = {}
        self.stats = CacheStats()

    def __len__(self) -> int:
        return len(self._tasks)

    async def get(self, key: K) -> V:
        task = self._tasks.get(key)
        if task is None:
            self.stats.misses += 1
            task = asyncio.ensure_future(self._loader(key))
            self._tasks[key] = task
            task.add_done_callback(lambda t, k=key: self._on_done(k, t))
        else:
            self.stats.hits += 1
        return await asyncio.shield(task)

    def _on_done(self, key: K, task: "asyncio.Task[V]") -> None:
        if task.cancelled():
            exc: BaseException | None = asyncio.CancelledError()
        else:
            exc = task.exception()
        if exc is None:
            return

        self.stats.failures += 1
        # Alleen evicten als de slot nog naar deze task wijst: een nieuwere retry blijft staan.
        if self._tasks.get(key) is task:
            del self._tasks[key]
            logger.info("metadata_cache_evicted", cache=self.name, key=key, error_type=type(exc).__name__)


class MetadataCache:
    """Feed and icon lookups backed by one MinifluxClient."""

    def __init__(self, client: MinifluxClient) -> None:
        self.client = client
        self.feeds: CoalescingCache[int, Feed] = CoalescingCache("feed", client.fetch_feed)
        self.icons: CoalescingCache[int, Icon] = CoalescingCache("icon", client.fetch_icon)

    async def get_feed(self, feed_id: int) -> Feed:
        return await self.feeds.get(feed_id)

    async def get_icon(self, icon_id: int) -> Icon:
        return await self.icons.get(icon_id)

    def snapshot(self) -> Dict[str, Dict[str, int]]:
        return {
            cache.name: {
                "size": len(cache),
                "hits": cache.stats.hits,
                "misses": cache.stats.misses,
                "failures": cache.stats.failures,
            }
            for cache in (self.feeds, self.icons)
        }
