"""
pulse.services.buffer — Volatile Counter & XP Buffers
======================================================

Hot-path counters live in Redis so a chat message costs one pipelined
round trip instead of a PostgreSQL upsert.  The drain workers in
:mod:`pulse.services.sync_service` move them into durable tables.

Drain protocol (both buffers):

1. ``read_all`` / ``read_xp_buckets`` snapshot the current values.
2. The worker upserts the snapshot into PostgreSQL.
3. ``settle`` / ``settle_xp`` subtract **exactly** the drained amount.
   If the key is then at (or below) zero it is removed with a
   WATCH/MULTI compare-and-delete, so an increment landing between
   steps 1 and 3 stays in Redis for the next cycle instead of being
   wiped by a blind ``DEL``.

Producers never see an exception from this module: Redis failures on
the increment path are logged and swallowed.  Read/settle failures
propagate so the worker can count them.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import redis
from redis.exceptions import RedisError, WatchError

from pulse.constants import COUNTER_TTL_SECONDS, XP_BUCKET_TTL_SECONDS
from pulse.engine.keys import XP_BUCKET_PATTERN, xp_bucket_key

logger = logging.getLogger(__name__)

SCAN_COUNT = 500

XP_FIELDS = ("msg_exp", "voice_exp")


def _delete_if_drained(
    client: redis.Redis,
    key: str,
    read: Callable[[redis.client.Pipeline, str], object],
    is_drained: Callable[[object], bool],
) -> bool:
    """Delete *key* only if it is still drained when the delete commits.

    Returns True when the key was removed.  A concurrent write between
    the WATCH and the EXEC aborts the delete; the key then survives with
    its new value.
    """
    with client.pipeline() as pipe:
        try:
            pipe.watch(key)
            current = read(pipe, key)
            if current is None or not is_drained(current):
                pipe.unwatch()
                return False
            pipe.multi()
            pipe.delete(key)
            pipe.execute()
            return True
        except WatchError:
            logger.debug("Key %s changed during settle — keeping it", key)
            return False


def _scan(client: redis.Redis, pattern: str) -> list[str]:
    return list(client.scan_iter(match=pattern, count=SCAN_COUNT))


# ---------------------------------------------------------------------------
# Daily counters (message counts, voice minutes)
# ---------------------------------------------------------------------------
class CounterBuffer:
    """Integer counters keyed by ``activity:{kind}:{guild}:{user}:{date}``."""

    def __init__(self, client: redis.Redis, ttl: int = COUNTER_TTL_SECONDS) -> None:
        self.client = client
        self.ttl = ttl

    def increment(self, key: str, delta: int = 1) -> bool:
        """INCRBY + EXPIRE in one pipeline.  Returns False on Redis failure."""
        try:
            pipe = self.client.pipeline()
            pipe.incrby(key, delta)
            pipe.expire(key, self.ttl)
            pipe.execute()
            return True
        except RedisError:
            logger.exception("Counter increment failed for %s", key)
            return False

    def read_all(self, pattern: str) -> list[tuple[str, int]]:
        """Snapshot every positive counter matching *pattern*."""
        keys = _scan(self.client, pattern)
        results: list[tuple[str, int]] = []
        for start in range(0, len(keys), SCAN_COUNT):
            chunk = keys[start:start + SCAN_COUNT]
            for key, raw in zip(chunk, self.client.mget(chunk)):
                if raw is None:
                    continue  # expired between SCAN and MGET
                try:
                    value = int(raw)
                except (TypeError, ValueError):
                    logger.warning("Non-integer counter %s=%r — skipping", key, raw)
                    continue
                if value > 0:
                    results.append((key, value))
        return results

    def settle(self, key: str, drained: int) -> int:
        """Subtract *drained* from *key*; delete it if nothing is left.

        Returns the value remaining after the decrement.
        """
        remaining = int(self.client.decrby(key, drained))
        if remaining <= 0:
            _delete_if_drained(
                self.client,
                key,
                lambda pipe, k: pipe.get(k),
                lambda raw: int(raw) <= 0,
            )
        return remaining


# ---------------------------------------------------------------------------
# XP accumulators
# ---------------------------------------------------------------------------
class XPBuffer:
    """Per-member ``{msg_exp, voice_exp}`` hashes keyed by ``leveling:xp:{guild}:{user}``."""

    def __init__(self, client: redis.Redis, ttl: int = XP_BUCKET_TTL_SECONDS) -> None:
        self.client = client
        self.ttl = ttl

    def add_xp(self, guild_id: int, user_id: int, field: str, amount: int) -> bool:
        """HINCRBY + EXPIRE.  The TTL is refreshed on every award."""
        if field not in XP_FIELDS:
            raise ValueError(f"Unknown XP field: {field!r}")
        key = xp_bucket_key(guild_id, user_id)
        try:
            pipe = self.client.pipeline()
            pipe.hincrby(key, field, amount)
            pipe.expire(key, self.ttl)
            pipe.execute()
            return True
        except RedisError:
            logger.exception("XP increment failed for %s", key)
            return False

    def read_xp_buckets(self) -> list[tuple[str, int, int]]:
        """Return ``(key, msg_exp, voice_exp)`` for every bucket holding XP."""
        keys = _scan(self.client, XP_BUCKET_PATTERN)
        if not keys:
            return []
        pipe = self.client.pipeline(transaction=False)
        for key in keys:
            pipe.hgetall(key)
        buckets: list[tuple[str, int, int]] = []
        for key, fields in zip(keys, pipe.execute(raise_on_error=False)):
            if isinstance(fields, RedisError):
                logger.warning("Unreadable XP bucket %s: %s; skipping", key, fields)
                continue
            if not fields:
                continue
            try:
                msg = int(fields.get("msg_exp", 0))
                voice = int(fields.get("voice_exp", 0))
            except (TypeError, ValueError):
                logger.warning("Malformed XP bucket %s=%r — skipping", key, fields)
                continue
            if msg > 0 or voice > 0:
                buckets.append((key, max(msg, 0), max(voice, 0)))
        return buckets

    def settle_xp(self, key: str, msg_exp: int, voice_exp: int) -> tuple[int, int]:
        """Subtract the drained XP; delete the hash once both fields are spent."""
        pipe = self.client.pipeline()
        pipe.hincrby(key, "msg_exp", -msg_exp)
        pipe.hincrby(key, "voice_exp", -voice_exp)
        msg_left, voice_left = (int(v) for v in pipe.execute())
        if msg_left <= 0 and voice_left <= 0:
            _delete_if_drained(
                self.client,
                key,
                lambda p, k: p.hgetall(k) or None,
                lambda fields: all(int(fields.get(f, 0)) <= 0 for f in XP_FIELDS),
            )
        return msg_left, voice_left
