"""Bounded inbound message queue.

The webhook enqueues each inbound chat message without waiting for it to be
processed; a fixed pool of worker tasks drains the queue into the
dispatcher.  Workers may process messages for different trips concurrently;
per-trip serialization is the dispatcher's job.

Backpressure: when the queue is full, ``enqueue`` returns ``False`` and the
message is dropped with a warning.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from trip_dispatcher.connectors.base import InboundMessage
from trip_dispatcher.core.metrics import DispatcherMetrics

logger = logging.getLogger(__name__)


@dataclass
class _Queued:
    message: InboundMessage
    enqueued_at: datetime


class InboundQueue:
    """Bounded queue of inbound messages served by ``worker_count`` tasks.

    Parameters
    ----------
    process_fn:
        Async callable invoked once per message.  Exceptions it raises are
        logged and do not stop the worker.
    queue_capacity:
        Maximum number of messages waiting for a worker.
    worker_count:
        Number of worker tasks.
    metrics:
        Optional recorder for the queue-depth gauge.
    """

    def __init__(
        self,
        process_fn: Callable[[InboundMessage], Awaitable[object]],
        *,
        queue_capacity: int = 100,
        worker_count: int = 4,
        metrics: DispatcherMetrics | None = None,
    ) -> None:
        self._process_fn = process_fn
        self._queue: asyncio.Queue[_Queued] = asyncio.Queue(maxsize=queue_capacity)
        self._worker_count = worker_count
        self._metrics = metrics
        self._worker_tasks: list[asyncio.Task] = []
        self._running = False
        self._accepted_total = 0
        self._dropped_total = 0
        self._failed_total = 0

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for i in range(self._worker_count):
            self._worker_tasks.append(
                asyncio.create_task(self._worker_loop(worker_id=i), name=f"inbound-worker-{i}")
            )
        logger.info(
            "Inbound queue started: workers=%d, queue_capacity=%d",
            self._worker_count,
            self._queue.maxsize,
        )

    async def stop(self, drain_timeout_s: float = 10.0) -> None:
        """Drain queued messages for up to *drain_timeout_s*, then cancel workers."""
        if not self._running:
            return
        self._running = False

        if drain_timeout_s > 0:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=drain_timeout_s)
            except TimeoutError:
                logger.warning(
                    "Inbound queue drain timed out after %.1fs; %d messages dropped",
                    drain_timeout_s,
                    self.queue_depth,
                )

        for task in self._worker_tasks:
            task.cancel()
        await asyncio.gather(*self._worker_tasks, return_exceptions=True)
        self._worker_tasks.clear()
        logger.info(
            "Inbound queue stopped: accepted=%d, dropped=%d, failed=%d",
            self._accepted_total,
            self._dropped_total,
            self._failed_total,
        )

    def enqueue(self, message: InboundMessage) -> bool:
        """Queue *message* without blocking; ``False`` when the queue is full."""
        try:
            self._queue.put_nowait(_Queued(message, datetime.now(UTC)))
        except asyncio.QueueFull:
            self._dropped_total += 1
            logger.warning(
                "Inbound queue full (capacity=%d); dropping message from %s",
                self._queue.maxsize,
                message.sender_id,
            )
            return False
        self._accepted_total += 1
        self._update_depth()
        return True

    async def _worker_loop(self, worker_id: int) -> None:
        while True:
            item = await self._queue.get()
            try:
                self._update_depth()
                wait_ms = (datetime.now(UTC) - item.enqueued_at).total_seconds() * 1000
                logger.debug(
                    "Inbound worker %d processing message from %s (queue_wait_ms=%.0f)",
                    worker_id,
                    item.message.sender_id,
                    wait_ms,
                )
                await self._process_fn(item.message)
            except asyncio.CancelledError:
                raise
            except Exception:
                self._failed_total += 1
                logger.exception(
                    "Inbound worker %d: processing failed for message from %s",
                    worker_id,
                    item.message.sender_id,
                )
            finally:
                self._queue.task_done()

    def _update_depth(self) -> None:
        if self._metrics is not None:
            self._metrics.set_queue_depth(self.queue_depth)

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    @property
    def stats(self) -> dict[str, int]:
        """Snapshot of queue counters for health reporting."""
        return {
            "queue_depth": self.queue_depth,
            "accepted_total": self._accepted_total,
            "dropped_total": self._dropped_total,
            "failed_total": self._failed_total,
        }
