"""
pulse.services.ingest — Bounded, non-blocking ingestion queue
==============================================================

Gateway handlers must never wait on Redis or PostgreSQL.  They call
:meth:`IngestQueue.submit`, which is a plain ``put_nowait`` on a bounded
``asyncio.Queue``.  One consumer task per process pulls events off the
queue and hands each one to a synchronous handler on a worker thread via
``run_db``.

When the queue is full the event is dropped, counted, and logged; the
producer is never slowed down.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from pulse.database.engine import run_db
from pulse.engine.events import ActivityEvent

logger = logging.getLogger(__name__)

# Log every Nth drop after the first so a flood doesn't flood the log too.
DROP_LOG_EVERY = 1000


class IngestQueue:
    """Fire-and-forget queue in front of a synchronous event handler."""

    def __init__(
        self,
        handler: Callable[[ActivityEvent], object],
        maxsize: int = 10_000,
    ) -> None:
        self.handler = handler
        self.maxsize = maxsize
        self._queue: asyncio.Queue[ActivityEvent] = asyncio.Queue(maxsize=maxsize)
        self._consumer_task: asyncio.Task | None = None
        self.processed = 0
        self.failed = 0
        self.dropped = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def submit(self, event: ActivityEvent) -> bool:
        """Queue *event* without blocking.  False means it was dropped."""
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            if self.dropped == 1 or self.dropped % DROP_LOG_EVERY == 0:
                logger.warning(
                    "Ingest queue full (%d) — dropped %s event for guild %s "
                    "(%d dropped so far)",
                    self.maxsize, event.event_type, event.guild_id, self.dropped,
                )
            return False

    async def process_one(self, event: ActivityEvent) -> None:
        try:
            await run_db(self.handler, event)
            self.processed += 1
        except Exception:
            self.failed += 1
            logger.exception(
                "Ingest handler failed for %s event in guild %s",
                event.event_type, event.guild_id,
                extra={"task": "ingest"},
            )

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.process_one(event)
            finally:
                self._queue.task_done()

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Start the consumer task (idempotent)."""
        if self._consumer_task is not None:
            return
        loop = loop or asyncio.get_running_loop()
        self._consumer_task = loop.create_task(self._consume(), name="activity-ingest")
        logger.info("Ingest consumer started (maxsize=%d)", self.maxsize)

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""
        await self._queue.join()

    async def stop(self, timeout: float = 10.0) -> None:
        """Give queued events *timeout* seconds to finish, then cancel."""
        if self._consumer_task is None:
            return
        try:
            await asyncio.wait_for(self.drain(), timeout)
        except TimeoutError:
            logger.warning("Ingest drain timed out with %d events pending", self.pending)
        self._consumer_task.cancel()
        self._consumer_task = None
        logger.info(
            "Ingest consumer stopped (processed=%d failed=%d dropped=%d)",
            self.processed, self.failed, self.dropped,
        )
