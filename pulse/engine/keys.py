"""
pulse.engine.keys — Redis key builders / parsers
=================================================

Every Redis key the pipeline reads or writes is built here so producers
and drain workers can never disagree on the layout::

    activity:msg:{guild}:{user}:{YYYY-MM-DD}     STRING  message counter
    activity:voice:{guild}:{user}:{YYYY-MM-DD}   STRING  voice-minute counter
    activity:log_queue                           LIST    raw event FIFO
    leveling:xp:{guild}:{user}                   HASH    {msg_exp, voice_exp}
    leveling:cooldown:{guild}:{user}             STRING  anti-spam marker
    leveling:config:{guild}                      STRING  cached guild config
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

MESSAGE_COUNTER_PREFIX = "activity:msg:"
VOICE_COUNTER_PREFIX = "activity:voice:"
XP_BUCKET_PREFIX = "leveling:xp:"
COOLDOWN_PREFIX = "leveling:cooldown:"
CONFIG_CACHE_PREFIX = "leveling:config:"

LOG_QUEUE_KEY = "activity:log_queue"

MESSAGE_COUNTER_PATTERN = MESSAGE_COUNTER_PREFIX + "*"
VOICE_COUNTER_PATTERN = VOICE_COUNTER_PREFIX + "*"
XP_BUCKET_PATTERN = XP_BUCKET_PREFIX + "*"


@dataclass(frozen=True, slots=True)
class CounterKey:
    """Parsed ``activity:{kind}:{guild}:{user}:{date}`` key."""

    kind: str  # "msg" or "voice"
    guild_id: int
    user_id: int
    stat_date: date


@dataclass(frozen=True, slots=True)
class XPKey:
    """Parsed ``leveling:xp:{guild}:{user}`` key."""

    guild_id: int
    user_id: int


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------
def message_counter_key(guild_id: int, user_id: int, day: date) -> str:
    return f"{MESSAGE_COUNTER_PREFIX}{guild_id}:{user_id}:{day.isoformat()}"


def voice_counter_key(guild_id: int, user_id: int, day: date) -> str:
    return f"{VOICE_COUNTER_PREFIX}{guild_id}:{user_id}:{day.isoformat()}"


def xp_bucket_key(guild_id: int, user_id: int) -> str:
    return f"{XP_BUCKET_PREFIX}{guild_id}:{user_id}"


def cooldown_key(guild_id: int, user_id: int) -> str:
    return f"{COOLDOWN_PREFIX}{guild_id}:{user_id}"


def config_cache_key(guild_id: int) -> str:
    return f"{CONFIG_CACHE_PREFIX}{guild_id}"


# ---------------------------------------------------------------------------
# Parsers: return None for anything malformed so workers can skip it
# ---------------------------------------------------------------------------
def parse_counter_key(key: str) -> CounterKey | None:
    """Parse a message or voice counter key.

    >>> parse_counter_key("activity:msg:1:2:2024-05-01")
    CounterKey(kind='msg', guild_id=1, user_id=2, stat_date=datetime.date(2024, 5, 1))
    """
    parts = key.split(":")
    if len(parts) != 5 or parts[0] != "activity" or parts[1] not in ("msg", "voice"):
        return None
    try:
        return CounterKey(
            kind=parts[1],
            guild_id=int(parts[2]),
            user_id=int(parts[3]),
            stat_date=date.fromisoformat(parts[4]),
        )
    except ValueError:
        return None


def parse_xp_key(key: str) -> XPKey | None:
    parts = key.split(":")
    if len(parts) != 4 or parts[0] != "leveling" or parts[1] != "xp":
        return None
    try:
        return XPKey(guild_id=int(parts[2]), user_id=int(parts[3]))
    except ValueError:
        return None
