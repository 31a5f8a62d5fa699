"""
pulse.services.activity_tracker — Ingestion Front Door
=======================================================

``ActivityTracker.log_event`` is the only call a cog makes.  It builds an
:class:`~pulse.engine.events.ActivityEvent` and submits it to the bounded
:class:`~pulse.services.ingest.IngestQueue`; it never blocks and never
raises for store failures.

The queue's consumer runs :meth:`ActivityTracker.record` on a worker
thread, which routes the event:

=============  ==========================================================
message        message counter ``+1``, message XP (cooldown-gated), raw log
voice          voice-minute counter ``+minutes``, voice XP, raw log
join / leave   ``daily_stats`` row ``+1``, raw log
mod_action     ``daily_stats.mod_actions_count +1`` (and ``captcha_kicks``
               for ``captcha_kick`` actions), raw log
=============  ==========================================================
"""

from __future__ import annotations

import logging
from datetime import date

from redis.exceptions import RedisError
from sqlalchemy import Date, Engine, bindparam, text
from sqlalchemy.exc import SQLAlchemyError

from pulse.database.engine import get_session
from pulse.database.models import ActivityEventType
from pulse.engine.events import ActivityEvent, event_type_code
from pulse.engine.keys import message_counter_key, voice_counter_key
from pulse.services.buffer import CounterBuffer
from pulse.services.ingest import IngestQueue
from pulse.services.leveling_service import LevelingService
from pulse.services.log_queue import RawEventQueue, RawLogEntry

logger = logging.getLogger(__name__)

# stat name → daily_stats column.  Column names are interpolated into SQL,
# so only these may ever reach the statement.
DAILY_STAT_COLUMNS: dict[str, str] = {
    "join": "joins_count",
    "leave": "leaves_count",
    "message": "messages_count",
    "mod_action": "mod_actions_count",
    "captcha_kick": "captcha_kicks_count",
}

CAPTCHA_KICK_ACTION = "captcha_kick"


def increment_daily_stat(
    engine: Engine, guild_id: int, day: date, stat: str, amount: int = 1,
) -> None:
    """Add *amount* to one ``daily_stats`` column, creating the row if needed.

    Raises ``ValueError`` for a stat name outside :data:`DAILY_STAT_COLUMNS`.
    """
    column = DAILY_STAT_COLUMNS.get(stat)
    if column is None:
        raise ValueError(f"Unknown daily stat: {stat!r}")

    stmt = text(f"""
        INSERT INTO daily_stats (guild_id, date, {column})
        VALUES (:guild_id, :day, :amount)
        ON CONFLICT (guild_id, date) DO UPDATE
        SET {column} = daily_stats.{column} + excluded.{column},
            updated_at = CURRENT_TIMESTAMP
    """).bindparams(bindparam("day", type_=Date))

    with get_session(engine) as session:
        session.execute(stmt, {"guild_id": guild_id, "day": day, "amount": amount})


class ActivityTracker:
    """Routes activity events into the buffers, the raw queue and ``daily_stats``."""

    def __init__(
        self,
        engine: Engine,
        counters: CounterBuffer,
        log_queue: RawEventQueue,
        leveling: LevelingService | None = None,
        queue_size: int = 10_000,
    ) -> None:
        self.engine = engine
        self.counters = counters
        self.log_queue = log_queue
        self.leveling = leveling
        self.ingest = IngestQueue(self.record, maxsize=queue_size)

    # -------------------------------------------------------------------
    # Producer side (event loop)
    # -------------------------------------------------------------------
    def log_event(
        self,
        guild_id: int,
        event_type: ActivityEventType | str,
        user_id: int | None = None,
        channel_id: int | None = None,
        metadata: dict | None = None,
    ) -> bool:
        """Queue one activity event.  Returns False if it had to be dropped.

        Raises ``ValueError`` for an unknown event type.
        """
        event = ActivityEvent(
            guild_id=guild_id,
            event_type=ActivityEventType(event_type),
            user_id=user_id,
            channel_id=channel_id,
            metadata=dict(metadata or {}),
        )
        return self.ingest.submit(event)

    def log_mod_action(
        self,
        guild_id: int,
        moderator_id: int,
        target_id: int | None,
        action_type: str,
        reason: str | None = None,
    ) -> bool:
        metadata = {"action_type": action_type, "target_id": target_id}
        if reason:
            metadata["reason"] = reason
        return self.log_event(
            guild_id, ActivityEventType.MOD_ACTION, user_id=moderator_id, metadata=metadata,
        )

    # -------------------------------------------------------------------
    # Consumer side (worker thread)
    # -------------------------------------------------------------------
    def record(self, event: ActivityEvent) -> None:
        """Apply *event* to the stores.  Store failures are logged, never raised."""
        try:
            self._route(event)
        except (RedisError, SQLAlchemyError):
            logger.exception(
                "Dropping %s event for guild=%s user=%s",
                event.event_type, event.guild_id, event.user_id,
            )
            return

        if event.user_id is not None:
            self.log_queue.enqueue(RawLogEntry(
                timestamp=event.timestamp,
                user_id=event.user_id,
                guild_id=event.guild_id,
                event_type=event_type_code(event.event_type),
                metadata=event.metadata,
            ))

    def _route(self, event: ActivityEvent) -> None:
        day = event.stat_date
        kind = event.event_type

        if kind == ActivityEventType.MESSAGE:
            if event.user_id is None:
                return
            self.counters.increment(message_counter_key(event.guild_id, event.user_id, day))
            if self.leveling is not None:
                self.leveling.award_message_xp(
                    event.guild_id, event.user_id, event.channel_id,
                    is_bot=bool(event.metadata.get("bot")),
                )

        elif kind == ActivityEventType.VOICE:
            if event.user_id is None:
                return
            minutes = int(event.metadata.get("minutes", 1))
            if minutes <= 0:
                return
            self.counters.increment(
                voice_counter_key(event.guild_id, event.user_id, day), minutes,
            )
            if self.leveling is not None:
                self.leveling.award_voice_xp(
                    event.guild_id,
                    event.user_id,
                    event.channel_id,
                    minutes,
                    self_mute=bool(event.metadata.get("self_mute")),
                    self_deaf=bool(event.metadata.get("self_deaf")),
                    is_bot=bool(event.metadata.get("bot")),
                )

        elif kind == ActivityEventType.MOD_ACTION:
            increment_daily_stat(self.engine, event.guild_id, day, "mod_action")
            if event.metadata.get("action_type") == CAPTCHA_KICK_ACTION:
                increment_daily_stat(self.engine, event.guild_id, day, "captcha_kick")

        else:  # join / leave
            increment_daily_stat(self.engine, event.guild_id, day, str(kind))
