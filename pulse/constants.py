"""
pulse.constants — Shared Constants & Helpers
=============================================

Single source of truth for cooldown tiers, buffer lifetimes and the
leveling formula.  Import from here instead of duplicating in cogs,
services, and the API.
"""

from __future__ import annotations

import math

# ---------------------------------------------------------------------------
# Anti-spam cooldown tiers (seconds between XP-earning messages)
# ---------------------------------------------------------------------------
ANTI_SPAM_COOLDOWNS: dict[str, int] = {
    "soft": 15,
    "low": 30,
    "medium": 60,
    "high": 120,
    "strict": 300,   # 5 min
    "harsh": 900,    # 15 min
}

DEFAULT_ANTI_SPAM_LEVEL = "soft"

# Used when the guild config cannot be read at all.
FAILSAFE_ANTI_SPAM_LEVEL = "harsh"


def cooldown_for_level(level: str | None) -> int:
    """Seconds of cooldown for an anti-spam tier name.

    Unknown or missing tier names fall back to the default tier.
    """
    return ANTI_SPAM_COOLDOWNS.get(
        level or DEFAULT_ANTI_SPAM_LEVEL,
        ANTI_SPAM_COOLDOWNS[DEFAULT_ANTI_SPAM_LEVEL],
    )


# ---------------------------------------------------------------------------
# Buffer lifetimes (seconds)
# ---------------------------------------------------------------------------
COUNTER_TTL_SECONDS = 172_800      # 48h, daily counters
XP_BUCKET_TTL_SECONDS = 3_600      # 1h, XP accumulators
CONFIG_CACHE_TTL_SECONDS = 300     # 5 min, guild config read cache

# ---------------------------------------------------------------------------
# XP awards
# ---------------------------------------------------------------------------
XP_PER_MESSAGE = 1
XP_PER_VOICE_MINUTE = 1


# ---------------------------------------------------------------------------
# Leveling formula: THE single canonical implementation
# ---------------------------------------------------------------------------
def calculate_level(total_xp: int) -> int:
    """Level reached with *total_xp*: ``floor(sqrt(total_xp / 100))``."""
    if total_xp <= 0:
        return 0
    # floor(sqrt(x / 100)) == isqrt(x // 100) for non-negative integers
    return math.isqrt(total_xp // 100)


def xp_for_level(level: int) -> int:
    """Total XP required to reach *level*."""
    return level * level * 100
