"""
pulse.services.log_queue — Raw Event FIFO
==========================================

Every event carrying a user id is appended to the Redis list
``activity:log_queue`` as a JSON envelope.  The log-sync worker pops
batches off the head and bulk-inserts them into the partitioned
``activity_log`` table.

Delivery is **at-most-once**: a popped batch that fails to insert is
logged and lost.  Ordering is FIFO per producer only.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

import redis
from redis.exceptions import RedisError

from pulse.engine.keys import LOG_QUEUE_KEY

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RawLogEntry:
    """One row destined for ``activity_log``."""

    timestamp: datetime
    user_id: int
    guild_id: int
    event_type: int
    metadata: dict = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(
            {
                "timestamp": self.timestamp.isoformat(),
                "user_id": self.user_id,
                "guild_id": self.guild_id,
                "event_type": self.event_type,
                "metadata": self.metadata,
            },
            separators=(",", ":"),
            default=str,
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> RawLogEntry:
        """Decode a queued envelope.  Raises ``ValueError`` when malformed."""
        try:
            data = json.loads(raw)
            ts = datetime.fromisoformat(data["timestamp"])
            if ts.tzinfo is None:
                ts = ts.replace(tzinfo=UTC)
            return cls(
                timestamp=ts,
                user_id=int(data["user_id"]),
                guild_id=int(data["guild_id"]),
                event_type=int(data["event_type"]),
                metadata=dict(data.get("metadata") or {}),
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"Malformed log entry: {exc}") from exc


class RawEventQueue:
    """Thin wrapper over the Redis list."""

    def __init__(self, client: redis.Redis, key: str = LOG_QUEUE_KEY) -> None:
        self.client = client
        self.key = key

    def enqueue(self, entry: RawLogEntry) -> bool:
        """RPUSH *entry*.  Best-effort: returns False instead of raising."""
        try:
            self.client.rpush(self.key, entry.to_json())
            return True
        except RedisError:
            logger.exception(
                "Failed to enqueue raw event for guild=%s user=%s",
                entry.guild_id, entry.user_id,
            )
            return False

    def dequeue_batch(self, max_count: int = 1000) -> list[RawLogEntry]:
        """Pop up to *max_count* entries from the head of the queue.

        Popped entries are gone from Redis whether or not the caller
        manages to persist them.  Malformed envelopes are logged and
        skipped.
        """
        if max_count <= 0:
            return []
        raw_items = self.client.lpop(self.key, max_count) or []
        entries: list[RawLogEntry] = []
        for raw in raw_items:
            try:
                entries.append(RawLogEntry.from_json(raw))
            except ValueError:
                logger.warning("Dropping malformed log queue entry: %r", raw[:200])
        return entries

    def queue_length(self) -> int:
        return int(self.client.llen(self.key))
