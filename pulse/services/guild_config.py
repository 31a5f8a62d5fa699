"""
pulse.services.guild_config — Per-Guild Activity Config & Read Cache
=====================================================================

Typed access to the ``guild_activity_config`` table with a Redis read-
through cache (``leveling:config:{guild}``, 5 minute TTL).  Every write
invalidates the cached copy so the next message sees the new tier.

Reads never insert rows: a guild without a row simply gets the defaults.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any

import redis
from redis.exceptions import RedisError
from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError

from pulse.constants import (
    ANTI_SPAM_COOLDOWNS,
    CONFIG_CACHE_TTL_SECONDS,
    DEFAULT_ANTI_SPAM_LEVEL,
    FAILSAFE_ANTI_SPAM_LEVEL,
    cooldown_for_level,
)
from pulse.database.engine import get_session
from pulse.database.models import GuildActivityConfig
from pulse.engine.keys import config_cache_key

logger = logging.getLogger(__name__)

# Columns an admin may change through :meth:`GuildConfigService.update`.
EDITABLE_FIELDS = frozenset({
    "anti_spam_level",
    "excluded_message_channels",
    "excluded_voice_channels",
    "exclude_muted",
    "exclude_deafened",
    "exclude_bots",
    "remove_previous_role",
})


@dataclass(frozen=True, slots=True)
class GuildActivitySettings:
    """Immutable snapshot of one guild's activity configuration."""

    guild_id: int
    anti_spam_level: str = DEFAULT_ANTI_SPAM_LEVEL
    excluded_message_channels: tuple[int, ...] = field(default_factory=tuple)
    excluded_voice_channels: tuple[int, ...] = field(default_factory=tuple)
    exclude_muted: bool = False
    exclude_deafened: bool = True
    exclude_bots: bool = True
    remove_previous_role: bool = False

    @property
    def cooldown_seconds(self) -> int:
        return cooldown_for_level(self.anti_spam_level)

    @classmethod
    def failsafe(cls, guild_id: int) -> GuildActivitySettings:
        """Settings used when the real config cannot be read at all."""
        return cls(guild_id=guild_id, anti_spam_level=FAILSAFE_ANTI_SPAM_LEVEL)

    @classmethod
    def from_row(cls, row: GuildActivityConfig) -> GuildActivitySettings:
        return cls(
            guild_id=row.guild_id,
            anti_spam_level=row.anti_spam_level or DEFAULT_ANTI_SPAM_LEVEL,
            excluded_message_channels=_int_tuple(row.excluded_message_channels),
            excluded_voice_channels=_int_tuple(row.excluded_voice_channels),
            exclude_muted=bool(row.exclude_muted),
            exclude_deafened=bool(row.exclude_deafened),
            exclude_bots=bool(row.exclude_bots),
            remove_previous_role=bool(row.remove_previous_role),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GuildActivitySettings:
        return cls(
            guild_id=int(data["guild_id"]),
            anti_spam_level=data.get("anti_spam_level") or DEFAULT_ANTI_SPAM_LEVEL,
            excluded_message_channels=_int_tuple(data.get("excluded_message_channels")),
            excluded_voice_channels=_int_tuple(data.get("excluded_voice_channels")),
            exclude_muted=bool(data.get("exclude_muted", False)),
            exclude_deafened=bool(data.get("exclude_deafened", True)),
            exclude_bots=bool(data.get("exclude_bots", True)),
            remove_previous_role=bool(data.get("remove_previous_role", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["excluded_message_channels"] = list(self.excluded_message_channels)
        data["excluded_voice_channels"] = list(self.excluded_voice_channels)
        return data


def _int_tuple(values) -> tuple[int, ...]:
    if not values:
        return ()
    if isinstance(values, str):
        values = json.loads(values)
    return tuple(int(v) for v in values)


class GuildConfigService:
    """Read-through cache in front of ``guild_activity_config``."""

    def __init__(
        self,
        engine: Engine,
        client: redis.Redis,
        ttl: int = CONFIG_CACHE_TTL_SECONDS,
    ) -> None:
        self.engine = engine
        self.client = client
        self.ttl = ttl

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get(self, guild_id: int) -> GuildActivitySettings:
        """Return the guild's settings, from cache when possible.

        A broken cache falls through to the database.  Database errors
        propagate; use :meth:`get_or_failsafe` on the hot path.
        """
        key = config_cache_key(guild_id)
        try:
            raw = self.client.get(key)
            if raw:
                return GuildActivitySettings.from_dict(json.loads(raw))
        except RedisError:
            logger.warning("Config cache read failed for guild %s", guild_id, exc_info=True)
        except (ValueError, KeyError, TypeError):
            logger.warning("Corrupt config cache entry for guild %s — reloading", guild_id)

        with get_session(self.engine) as session:
            row = session.get(GuildActivityConfig, guild_id)
            settings = (
                GuildActivitySettings.from_row(row)
                if row is not None
                else GuildActivitySettings(guild_id=guild_id)
            )

        try:
            self.client.set(key, json.dumps(settings.to_dict()), ex=self.ttl)
        except RedisError:
            logger.warning("Config cache write failed for guild %s", guild_id, exc_info=True)
        return settings

    def get_or_failsafe(self, guild_id: int) -> tuple[GuildActivitySettings, bool]:
        """Like :meth:`get` but never raises.

        Returns ``(settings, ok)``.  When the config could not be read,
        ``ok`` is False and the settings carry the strictest cooldown tier.
        """
        try:
            return self.get(guild_id), True
        except (SQLAlchemyError, RedisError):
            logger.exception(
                "Config lookup failed for guild %s — using failsafe tier %s",
                guild_id, FAILSAFE_ANTI_SPAM_LEVEL,
            )
            return GuildActivitySettings.failsafe(guild_id), False

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    def update(self, guild_id: int, **changes: Any) -> GuildActivitySettings:
        """Create or update the guild's row and drop the cached copy.

        Raises ``ValueError`` for unknown fields or an unknown tier name.
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown config field(s): {', '.join(sorted(unknown))}")
        level = changes.get("anti_spam_level")
        if level is not None and level not in ANTI_SPAM_COOLDOWNS:
            raise ValueError(
                f"Unknown anti_spam_level {level!r}; "
                f"expected one of {', '.join(ANTI_SPAM_COOLDOWNS)}"
            )
        for list_field in ("excluded_message_channels", "excluded_voice_channels"):
            if list_field in changes:
                changes[list_field] = [int(v) for v in changes[list_field] or []]

        with get_session(self.engine) as session:
            row = session.get(GuildActivityConfig, guild_id)
            if row is None:
                defaults = GuildActivitySettings(guild_id=guild_id).to_dict()
                row = GuildActivityConfig(**defaults)
                session.add(row)
            for name, value in changes.items():
                if value is not None:
                    setattr(row, name, value)
            session.flush()
            settings = GuildActivitySettings.from_row(row)

        self.invalidate(guild_id)
        logger.info("Activity config updated for guild %s: %s", guild_id, sorted(changes))
        return settings

    def invalidate(self, guild_id: int) -> None:
        try:
            self.client.delete(config_cache_key(guild_id))
        except RedisError:
            logger.warning("Config cache invalidation failed for guild %s", guild_id, exc_info=True)
