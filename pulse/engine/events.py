"""
pulse.engine.events — ActivityEvent and raw log codes
======================================================

The envelope every producer hands to the ingestion front door.  A cog
never touches Redis or PostgreSQL itself; it builds an ``ActivityEvent``
and submits it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime

from pulse.database.models import ActivityEventType

__all__ = ["ActivityEvent", "EVENT_TYPE_CODES", "event_type_code"]

# ---------------------------------------------------------------------------
# SMALLINT codes stored in activity_log.event_type
# ---------------------------------------------------------------------------
EVENT_TYPE_CODES: dict[ActivityEventType, int] = {
    ActivityEventType.MESSAGE: 1,
    ActivityEventType.VOICE: 2,
    ActivityEventType.JOIN: 3,
    ActivityEventType.LEAVE: 4,
    ActivityEventType.MOD_ACTION: 5,
}


def event_type_code(event_type: ActivityEventType | str) -> int:
    """Return the raw-log code for *event_type*.

    Raises ``ValueError`` for names that are not an :class:`ActivityEventType`.
    """
    return EVENT_TYPE_CODES[ActivityEventType(event_type)]


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# ActivityEvent — the ingestion envelope
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ActivityEvent:
    """One observed activity in a guild.

    ``message`` and ``voice`` events feed the counter buffer; ``join``,
    ``leave`` and ``mod_action`` increment ``daily_stats`` directly.  Every
    event carrying a ``user_id`` is also appended to the raw event queue.
    """

    guild_id: int
    event_type: ActivityEventType
    user_id: int | None = None
    channel_id: int | None = None
    metadata: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def stat_date(self) -> date:
        """UTC calendar day the event is counted under."""
        ts = self.timestamp
        if ts.tzinfo is not None:
            ts = ts.astimezone(UTC)
        return ts.date()
