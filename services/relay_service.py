# services/relay_service.py
"""
RelayService: drives one webhook event through batch → enrich → deliver.

Owns the process-wide components (Miniflux client, metadata cache, batcher,
Discord client, delivery queue). They are built once at startup and handed
to the API through app.state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from app.core.config import Settings
from app.core.errors import UpstreamFetchFailed
from app.core.logging import get_logger
from app.models.miniflux import NewEntriesEvent
from services.delivery_queue import DeliveryQueue
from services.discord_service import DiscordWebhookClient
from services.metadata_cache import MetadataCache
from services.miniflux_service import MinifluxClient
from services.notification_batcher import NotificationBatcher

logger = get_logger()


@dataclass
class RelayResult:
    entries: int = 0
    batches_total: int = 0
    batches_enqueued: int = 0
    batches_failed: int = 0
    failed_entry_ids: List[int] = field(default_factory=list)


class RelayService:
    def __init__(
        self,
        *,
        batcher: NotificationBatcher,
        queue: DeliveryQueue,
        miniflux: Optional[MinifluxClient] = None,
        discord: Optional[DiscordWebhookClient] = None,
    ) -> None:
        self.batcher = batcher
        self.queue = queue
        self.miniflux = miniflux
        self.discord = discord

    @property
    def cache(self) -> MetadataCache:
        return self.batcher.cache

    async def start(self) -> None:
        self.queue.start()

    async def aclose(self, *, drain_timeout: float = 10.0) -> None:
        await self.queue.stop(timeout=drain_timeout)
        if self.miniflux is not None:
            await self.miniflux.aclose()
        if self.discord is not None:
            await self.discord.aclose()

    async def handle_new_entries(self, event: NewEntriesEvent, *, request_id: Optional[str] = None) -> RelayResult:
        """
        Build batches in entry order and enqueue each as soon as it is ready.

        A batch whose enrichment fails is logged and dropped; later batches of
        the same event still go out, in order.
        """
        groups = self.batcher.partition(event.entries)
        result = RelayResult(entries=len(event.entries), batches_total=len(groups))
        logger.info(
            "relay_event_received",
            feed_id=event.feed.id,
            entries=result.entries,
            batches=result.batches_total,
        )

        for index, group in enumerate(groups, start=1):
            try:
                batch = await self.batcher.build_batch(
                    group, index=index, total=result.batches_total, request_id=request_id
                )
            except UpstreamFetchFailed as e:
                result.batches_failed += 1
                result.failed_entry_ids.extend(entry.id for entry in group)
                logger.error(
                    "relay_batch_enrichment_failed",
                    batch=f"{index}/{result.batches_total}",
                    resource=e.resource,
                    resource_id=e.resource_id,
                    error=str(e.cause),
                    entry_ids=[entry.id for entry in group],
                )
                continue

            await self.queue.enqueue(batch)
            result.batches_enqueued += 1
            logger.info("relay_batch_enqueued", batch=batch.label, entries=len(batch))

        logger.info(
            "relay_event_processed",
            batches_enqueued=result.batches_enqueued,
            batches_failed=result.batches_failed,
            cache=self.cache.snapshot(),
        )
        return result


def build_relay_service(settings: Settings) -> RelayService:
    miniflux = MinifluxClient(
        settings.MINIFLUX_BASE_URL,
        settings.MINIFLUX_API_KEY,
        timeout_s=settings.UPSTREAM_TIMEOUT_S,
        max_concurrency=settings.UPSTREAM_MAX_CONCURRENCY,
    )
    batcher = NotificationBatcher(
        MetadataCache(miniflux),
        public_url=settings.public_url,
        link_style=settings.ENTRY_LINK_STYLE,
        convert_ico=settings.CONVERT_ICO_ICONS,
        color=settings.EMBED_COLOR,
    )
    discord = DiscordWebhookClient(
        settings.DISCORD_WEBHOOK_URL,
        timeout_s=settings.DISCORD_TIMEOUT_S,
        username=settings.DISCORD_USERNAME,
        avatar_url=settings.DISCORD_AVATAR_URL,
    )
    queue = DeliveryQueue(
        discord,
        min_interval=settings.DELIVERY_MIN_INTERVAL_S,
        strict=settings.DELIVERY_STRICT_INTERVAL,
        maxsize=settings.DELIVERY_QUEUE_MAXSIZE,
    )
    return RelayService(batcher=batcher, queue=queue, miniflux=miniflux, discord=discord)
