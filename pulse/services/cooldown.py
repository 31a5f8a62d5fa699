"""
pulse.services.cooldown — Anti-Spam Cooldown Gate
==================================================

One Redis marker per (guild, member).  ``SET NX EX`` makes acquisition
atomic across every bot process: exactly one caller creates the key,
everyone else sees it until the TTL lapses.  Markers are never deleted
explicitly.
"""

from __future__ import annotations

import logging

import redis
from redis.exceptions import RedisError

from pulse.engine.keys import cooldown_key

logger = logging.getLogger(__name__)


class CooldownGate:
    """Decides whether a message may earn XP right now."""

    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    def try_acquire(self, guild_id: int, user_id: int, cooldown_seconds: int) -> bool:
        """Return True only for the call that starts a new cooldown window.

        A Redis failure is logged and treated as "on cooldown" so an outage
        never turns into unlimited XP.
        """
        if cooldown_seconds <= 0:
            raise ValueError(f"cooldown_seconds must be positive, got {cooldown_seconds}")
        try:
            created = self.client.set(
                cooldown_key(guild_id, user_id), "1", nx=True, ex=cooldown_seconds,
            )
        except RedisError:
            logger.exception(
                "Cooldown check failed for guild=%s user=%s", guild_id, user_id,
            )
            return False
        return bool(created)

