"""
tests/test_ingest.py — Bounded ingestion queue
===============================================
"""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

from conftest import run_async

from pulse.database.models import ActivityEventType
from pulse.engine.events import ActivityEvent
from pulse.services.ingest import IngestQueue


def _event(user_id: int = 1) -> ActivityEvent:
    return ActivityEvent(guild_id=10, event_type=ActivityEventType.MESSAGE, user_id=user_id)


class TestIngestQueue:
    def test_submit_never_blocks_when_full(self):
        async def _inner():
            queue = IngestQueue(MagicMock(), maxsize=2)
            results = [queue.submit(_event(i)) for i in range(5)]
            return queue, results

        queue, results = run_async(_inner())

        assert results == [True, True, False, False, False]
        assert queue.dropped == 3
        assert queue.pending == 2

    def test_consumer_hands_events_to_handler_in_order(self):
        seen: list[int] = []

        async def _inner():
            queue = IngestQueue(lambda e: seen.append(e.user_id), maxsize=10)
            queue.start()
            for i in range(4):
                queue.submit(_event(i))
            await queue.stop(timeout=5)
            return queue

        queue = run_async(_inner())

        assert seen == [0, 1, 2, 3]
        assert queue.processed == 4
        assert queue.failed == 0

    def test_handler_errors_are_counted_not_raised(self):
        handler = MagicMock(side_effect=[RuntimeError("boom"), None])

        async def _inner():
            queue = IngestQueue(handler, maxsize=10)
            queue.start()
            queue.submit(_event(1))
            queue.submit(_event(2))
            await queue.drain()
            await queue.stop()
            return queue

        queue = run_async(_inner())

        assert queue.failed == 1
        assert queue.processed == 1

    def test_start_is_idempotent(self):
        async def _inner():
            queue = IngestQueue(MagicMock(), maxsize=1)
            queue.start()
            first = queue._consumer_task
            queue.start()
            same = queue._consumer_task is first
            await queue.stop()
            return same

        assert run_async(_inner()) is True

    def test_stop_gives_up_after_timeout(self):
        async def _inner():
            queue = IngestQueue(MagicMock(), maxsize=10)
            # No consumer: pending work can never finish.
            queue._consumer_task = asyncio.get_running_loop().create_task(asyncio.sleep(60))
            queue.submit(_event())
            await queue.stop(timeout=0.05)
            return queue

        queue = run_async(_inner())
        assert queue.pending == 1
        assert queue._consumer_task is None
