"""
pulse.services.sync_service — Buffer → PostgreSQL Drain Workers
================================================================

Three stateless workers, each ``(redis_client, engine) -> summary``:

- :func:`sync_counters` — ``activity:msg:*`` / ``activity:voice:*`` →
  ``member_daily_stats`` (``message_count`` / ``vc_minutes``).
- :func:`sync_logs` — ``activity:log_queue`` → partitioned ``activity_log``
  in bulk, one round trip per batch.
- :func:`sync_xp` — ``leveling:xp:*`` → ``member_leveling`` with level
  recomputation.

Every per-key write happens **before** the matching buffer settle, and
the settle subtracts exactly what was written.  A crash between the two
re-drains the same amount next cycle (at-least-once for counters); an
increment that lands mid-drain is never lost.

The workers are synchronous — the tasks cog runs them through
``run_db`` on a background thread.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime

import redis
from redis.exceptions import RedisError
from sqlalchemy import Date, DateTime, Engine, bindparam, insert, text
from sqlalchemy.exc import SQLAlchemyError

from pulse.constants import calculate_level
from pulse.database.engine import get_session
from pulse.database.models import activity_log
from pulse.engine.keys import (
    MESSAGE_COUNTER_PATTERN,
    VOICE_COUNTER_PATTERN,
    CounterKey,
    XPKey,
    parse_counter_key,
    parse_xp_key,
)
from pulse.services.buffer import CounterBuffer, XPBuffer
from pulse.services.log_queue import RawEventQueue, RawLogEntry
from pulse.services.partition_service import PartitionDescriptor, list_partitions

logger = logging.getLogger(__name__)

DEFAULT_LOG_BATCH_SIZE = 1000
DEFAULT_LOG_MAX_BATCHES = 50

_COUNTER_COLUMNS = {"msg": "message_count", "voice": "vc_minutes"}


# ---------------------------------------------------------------------------
# Counter sync
# ---------------------------------------------------------------------------
def _upsert_member_daily(engine: Engine, key: CounterKey, amount: int) -> None:
    column = _COUNTER_COLUMNS[key.kind]
    stmt = text(f"""
        INSERT INTO member_daily_stats (stat_date, user_id, guild_id, {column})
        VALUES (:stat_date, :user_id, :guild_id, :amount)
        ON CONFLICT (stat_date, user_id, guild_id) DO UPDATE
        SET {column} = member_daily_stats.{column} + excluded.{column}
    """).bindparams(bindparam("stat_date", type_=Date))
    with get_session(engine) as session:
        session.execute(stmt, {
            "stat_date": key.stat_date,
            "user_id": key.user_id,
            "guild_id": key.guild_id,
            "amount": amount,
        })


def sync_counters(client: redis.Redis, engine: Engine) -> dict[str, int]:
    """Drain message and voice counters into ``member_daily_stats``.

    Returns ``{"keys": N, "rows": M, "failed": K}``.  A failure on one key
    is logged and counted; the rest still drain.
    """
    buffer = CounterBuffer(client)
    snapshot = (
        buffer.read_all(MESSAGE_COUNTER_PATTERN)
        + buffer.read_all(VOICE_COUNTER_PATTERN)
    )
    summary = {"keys": len(snapshot), "rows": 0, "failed": 0}

    for key, value in snapshot:
        parsed = parse_counter_key(key)
        if parsed is None:
            logger.warning("Skipping unparseable counter key %s", key)
            summary["failed"] += 1
            continue
        try:
            _upsert_member_daily(engine, parsed, value)
        except SQLAlchemyError:
            logger.exception("Counter upsert failed for %s", key, extra={"task": "sync_counters"})
            summary["failed"] += 1
            continue
        try:
            buffer.settle(key, value)
        except RedisError:
            # Already persisted; the next cycle will persist it again.
            logger.exception("Counter settle failed for %s", key, extra={"task": "sync_counters"})
            summary["failed"] += 1
            continue
        summary["rows"] += 1

    if summary["keys"]:
        logger.info(
            "Counter sync: %d keys, %d rows upserted, %d failed",
            summary["keys"], summary["rows"], summary["failed"],
        )
    return summary


# ---------------------------------------------------------------------------
# Raw log sync
# ---------------------------------------------------------------------------
_UNNEST_INSERT = text("""
    INSERT INTO activity_log (timestamp, user_id, guild_id, event_type, metadata)
    SELECT * FROM UNNEST(
        CAST(:timestamps AS timestamptz[]),
        CAST(:user_ids AS bigint[]),
        CAST(:guild_ids AS bigint[]),
        CAST(:event_types AS smallint[]),
        CAST(:metadatas AS jsonb[])
    )
""")


def _insert_log_batch(engine: Engine, entries: list[RawLogEntry]) -> None:
    with get_session(engine) as session:
        if engine.dialect.name == "postgresql":
            session.execute(_UNNEST_INSERT, {
                "timestamps": [e.timestamp for e in entries],
                "user_ids": [e.user_id for e in entries],
                "guild_ids": [e.guild_id for e in entries],
                "event_types": [e.event_type for e in entries],
                "metadatas": [json.dumps(e.metadata, default=str) for e in entries],
            })
        else:
            session.execute(insert(activity_log), [
                {
                    "timestamp": e.timestamp,
                    "user_id": e.user_id,
                    "guild_id": e.guild_id,
                    "event_type": e.event_type,
                    "metadata": e.metadata,
                }
                for e in entries
            ])


def _split_routable(
    entries: list[RawLogEntry], partitions: list[PartitionDescriptor],
) -> tuple[list[RawLogEntry], int]:
    """Keep entries that fall inside a registered partition."""
    keep: list[RawLogEntry] = []
    dropped = 0
    for entry in entries:
        if any(p.covers(entry.timestamp) for p in partitions):
            keep.append(entry)
        else:
            dropped += 1
    return keep, dropped


def sync_logs(
    client: redis.Redis,
    engine: Engine,
    batch_size: int = DEFAULT_LOG_BATCH_SIZE,
    max_batches: int = DEFAULT_LOG_MAX_BATCHES,
) -> dict[str, int]:
    """Move queued raw events into ``activity_log``.

    Pops batches until the queue is empty or *max_batches* have been
    handled.  A batch whose insert fails is logged and lost.  On
    PostgreSQL, entries that no partition covers are dropped up front so
    one stray timestamp cannot sink a whole batch.

    Returns ``{"batches", "rows", "failed", "dropped"}``.
    """
    queue = RawEventQueue(client)
    summary = {"batches": 0, "rows": 0, "failed": 0, "dropped": 0}

    partitions = None
    if engine.dialect.name == "postgresql":
        partitions = list_partitions(engine)

    for _ in range(max_batches):
        entries = queue.dequeue_batch(batch_size)
        if not entries:
            break
        summary["batches"] += 1

        if partitions is not None:
            entries, dropped = _split_routable(entries, partitions)
            if dropped:
                summary["dropped"] += dropped
                logger.warning("Dropped %d log entries with no covering partition", dropped)
            if not entries:
                continue

        try:
            _insert_log_batch(engine, entries)
            summary["rows"] += len(entries)
        except SQLAlchemyError:
            summary["failed"] += len(entries)
            logger.exception(
                "Log batch insert failed — %d entries lost", len(entries),
                extra={"task": "sync_logs"},
            )

    if summary["batches"]:
        logger.info(
            "Log sync: %d batches, %d rows inserted, %d failed, %d dropped",
            summary["batches"], summary["rows"], summary["failed"], summary["dropped"],
        )
    return summary


# ---------------------------------------------------------------------------
# XP sync
# ---------------------------------------------------------------------------
_XP_UPSERT = text("""
    INSERT INTO member_leveling (guild_id, user_id, msg_exp, voice_exp, level, last_message_at)
    VALUES (:guild_id, :user_id, :msg_exp, :voice_exp, 0, :last_message_at)
    ON CONFLICT (guild_id, user_id) DO UPDATE
    SET msg_exp = member_leveling.msg_exp + excluded.msg_exp,
        voice_exp = member_leveling.voice_exp + excluded.voice_exp,
        last_message_at = COALESCE(excluded.last_message_at, member_leveling.last_message_at)
    RETURNING msg_exp, voice_exp, level
""").bindparams(bindparam("last_message_at", type_=DateTime(timezone=True)))

_LEVEL_UPDATE = text("""
    UPDATE member_leveling SET level = :level
    WHERE guild_id = :guild_id AND user_id = :user_id
""")


def _apply_xp(
    engine: Engine, key: XPKey, msg_exp: int, voice_exp: int, now: datetime,
) -> tuple[int, int]:
    """Add XP to the member's durable totals.  Returns ``(old_level, new_level)``."""
    with get_session(engine) as session:
        row = session.execute(_XP_UPSERT, {
            "guild_id": key.guild_id,
            "user_id": key.user_id,
            "msg_exp": msg_exp,
            "voice_exp": voice_exp,
            "last_message_at": now if msg_exp > 0 else None,
        }).one()
        old_level = row.level
        new_level = calculate_level(row.msg_exp + row.voice_exp)
        if new_level != old_level:
            session.execute(_LEVEL_UPDATE, {
                "level": new_level,
                "guild_id": key.guild_id,
                "user_id": key.user_id,
            })
    return old_level, new_level


def sync_xp(client: redis.Redis, engine: Engine) -> dict[str, int]:
    """Drain XP buckets into ``member_leveling`` and recompute levels.

    Returns ``{"keys", "rows", "failed", "level_ups"}``.
    """
    xp_buffer = XPBuffer(client)
    buckets = xp_buffer.read_xp_buckets()
    summary = {"keys": len(buckets), "rows": 0, "failed": 0, "level_ups": 0}
    now = datetime.now(UTC)

    for key, msg_exp, voice_exp in buckets:
        parsed = parse_xp_key(key)
        if parsed is None:
            logger.warning("Skipping unparseable XP key %s", key)
            summary["failed"] += 1
            continue
        try:
            old_level, new_level = _apply_xp(engine, parsed, msg_exp, voice_exp, now)
        except SQLAlchemyError:
            logger.exception("XP upsert failed for %s", key, extra={"task": "sync_xp"})
            summary["failed"] += 1
            continue
        try:
            xp_buffer.settle_xp(key, msg_exp, voice_exp)
        except RedisError:
            logger.exception("XP settle failed for %s", key, extra={"task": "sync_xp"})
            summary["failed"] += 1
            continue
        summary["rows"] += 1
        if new_level > old_level:
            summary["level_ups"] += 1
            logger.info(
                "Level up: guild=%s user=%s %d → %d",
                parsed.guild_id, parsed.user_id, old_level, new_level,
            )

    if summary["keys"]:
        logger.info(
            "XP sync: %d buckets, %d rows upserted, %d failed, %d level-ups",
            summary["keys"], summary["rows"], summary["failed"], summary["level_ups"],
        )
    return summary
