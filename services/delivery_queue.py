# services/delivery_queue.py
"""
DeliveryQueue: the single, ordered, rate-limited outbound path to Discord.

One worker task drains a bounded FIFO and sends batches strictly one at a
time. With a minimum interval T, no two sends start less than T apart; in
strict mode T is counted from the end of the previous send instead. A failed
send is logged and reported through that batch's future, never retried, and
the worker moves on to the next batch.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Tuple

from app.core.errors import DeliveryFailed, DeliveryQueueClosed, DeliveryQueueFull
from app.core.logging import get_logger
from app.core.request_id import with_delivery_id
from app.models.notification import Batch

logger = get_logger()

DEFAULT_MAXSIZE = 100

_QueueItem = Tuple[Batch, "asyncio.Future[None]"]


def _mark_retrieved(fut: "asyncio.Future[None]") -> None:
    # Niemand hoeft op de future te wachten; voorkom "exception was never retrieved"
    if fut.done() and not fut.cancelled():
        fut.exception()


class DeliveryQueue:
    def __init__(
        self,
        sender: Any,
        *,
        min_interval: float = 0.0,
        strict: bool = False,
        maxsize: int = DEFAULT_MAXSIZE,
    ) -> None:
        """
        Args:
            sender: Object with an async ``send(batch)`` (DiscordWebhookClient)
            min_interval: Minimum seconds between send starts, 0 disables
            strict: Count the interval from the end of the previous send
            maxsize: Backlog bound; enqueue waits, enqueue_nowait rejects
        """
        self.sender = sender
        self.min_interval = max(0.0, float(min_interval))
        self.strict = strict
        self.maxsize = max(1, int(maxsize))
        self._queue: "asyncio.Queue[_QueueItem]" = asyncio.Queue(self.maxsize)
        self._task: Optional[asyncio.Task[None]] = None
        self._closed = False
        self._last_start: Optional[float] = None
        self._last_end: Optional[float] = None
        self.sent = 0
        self.failed = 0

    # ---- lifecycle ---------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def qsize(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._task is not None:
            return
        loop = asyncio.get_running_loop()
        self._closed = False
        self._task = loop.create_task(self._run(), name="discord-delivery-queue")
        logger.info(
            "delivery_queue_started",
            min_interval_s=self.min_interval,
            strict=self.strict,
            maxsize=self.maxsize,
        )

    async def stop(self, timeout: float = 10.0) -> None:
        """Stop accepting batches, drain the backlog for up to `timeout` seconds, then cancel."""
        self._closed = True
        if self._task is None:
            self._fail_backlog()
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("delivery_queue_drain_timeout", pending=self._queue.qsize(), timeout_s=timeout)
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None

        self._fail_backlog()
        logger.info("delivery_queue_stopped", sent=self.sent, failed=self.failed)

    async def join(self) -> None:
        await self._queue.join()

    def _fail_backlog(self) -> None:
        while not self._queue.empty():
            batch, fut = self._queue.get_nowait()
            self._queue.task_done()
            if not fut.done():
                fut.set_exception(DeliveryQueueClosed("delivery queue stopped before sending"))
                _mark_retrieved(fut)
            logger.warning("delivery_batch_dropped", batch=batch.label, entries=len(batch))

    # ---- producers ---------------------------------------------------------

    async def enqueue(self, batch: Batch) -> "asyncio.Future[None]":
        """
        Add a batch, waiting for space when the backlog is full.

        Returns a future that resolves once the send attempt finished: None on
        success, DeliveryFailed on failure. Raises DeliveryQueueClosed when the
        queue stopped before or while waiting.
        """
        if self._closed:
            raise DeliveryQueueClosed("delivery queue is not accepting batches")
        fut: "asyncio.Future[None]" = asyncio.get_running_loop().create_future()
        await self._queue.put((batch, fut))
        if self._closed and not self.running:
            # stop() liep terwijl we op ruimte wachtten; niemand haalt dit item nog op
            self._fail_backlog()
            raise DeliveryQueueClosed("delivery queue stopped while waiting for space")
        logger.debug("delivery_batch_enqueued", batch=batch.label, entries=len(batch), backlog=self._queue.qsize())
        return fut

    def enqueue_nowait(self, batch: Batch) -> "asyncio.Future[None]":
        if self._closed:
            raise DeliveryQueueClosed("delivery queue is not accepting batches")
        fut: "asyncio.Future[None]" = asyncio.get_running_loop().create_future()
        try:
            self._queue.put_nowait((batch, fut))
        except asyncio.QueueFull:
            logger.warning("delivery_queue_full", maxsize=self.maxsize, batch=batch.label)
            raise DeliveryQueueFull(f"delivery backlog is full ({self.maxsize} batches)") from None
        return fut

    # ---- worker ------------------------------------------------------------

    async def _wait_for_slot(self) -> None:
        if self.min_interval <= 0:
            return
        anchor = self._last_end if self.strict else self._last_start
        if anchor is None:
            return
        loop = asyncio.get_running_loop()
        delay = anchor + self.min_interval - loop.time()
        if delay > 0:
            logger.debug("delivery_rate_limit_delay", sleep_time_s=round(delay, 3))
            await asyncio.sleep(delay)

    async def _deliver(self, batch: Batch, fut: "asyncio.Future[None]") -> None:
        loop = asyncio.get_running_loop()
        with with_delivery_id():
            self._last_start = loop.time()
            try:
                await self.sender.send(batch)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = e if isinstance(e, DeliveryFailed) else DeliveryFailed(f"{type(e).__name__}: {e}")
                self.failed += 1
                logger.error(
                    "delivery_failed",
                    batch=batch.label,
                    entries=len(batch),
                    entry_ids=list(batch.entry_ids),
                    origin_request_id=batch.request_id,
                    status_code=error.http_status,
                    error=error.detail,
                )
                if not fut.done():
                    fut.set_exception(error)
                    _mark_retrieved(fut)
            else:
                self.sent += 1
                logger.info(
                    "delivery_succeeded",
                    batch=batch.label,
                    entries=len(batch),
                    origin_request_id=batch.request_id,
                )
                if not fut.done():
                    fut.set_result(None)
            finally:
                self._last_end = loop.time()

    async def _run(self) -> None:
        while True:
            batch, fut = await self._queue.get()
            try:
                await self._wait_for_slot()
                await self._deliver(batch, fut)
            except asyncio.CancelledError:
                if not fut.done():
                    fut.set_exception(DeliveryQueueClosed("delivery queue stopped mid-send"))
                    _mark_retrieved(fut)
                raise
            finally:
                self._queue.task_done()
