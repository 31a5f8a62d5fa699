"""
tests/test_cooldown.py — Anti-spam cooldown gate
=================================================
"""

from __future__ import annotations

import time
from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from pulse.constants import ANTI_SPAM_COOLDOWNS, cooldown_for_level
from pulse.engine.keys import cooldown_key
from pulse.services.cooldown import CooldownGate


class TestCooldownTiers:
    def test_known_tiers(self):
        assert cooldown_for_level("soft") == 15
        assert cooldown_for_level("harsh") == 900
        assert set(ANTI_SPAM_COOLDOWNS) == {"soft", "low", "medium", "high", "strict", "harsh"}

    def test_unknown_or_missing_tier_falls_back_to_soft(self):
        assert cooldown_for_level("bogus") == 15
        assert cooldown_for_level(None) == 15


class TestCooldownGate:
    def test_first_call_wins_second_is_refused(self, redis_client):
        gate = CooldownGate(redis_client)

        assert gate.try_acquire(1, 2, 30) is True
        assert gate.try_acquire(1, 2, 30) is False

    def test_marker_carries_ttl(self, redis_client):
        gate = CooldownGate(redis_client)
        gate.try_acquire(1, 2, 30)

        assert 0 < redis_client.ttl(cooldown_key(1, 2)) <= 30

    def test_free_again_after_cooldown_elapses(self, redis_client):
        gate = CooldownGate(redis_client)
        assert gate.try_acquire(1, 2, 1) is True
        assert gate.try_acquire(1, 2, 1) is False

        time.sleep(1.1)

        assert not redis_client.exists(cooldown_key(1, 2))
        assert gate.try_acquire(1, 2, 1) is True

    def test_members_are_independent(self, redis_client):
        gate = CooldownGate(redis_client)
        assert gate.try_acquire(1, 2, 30) is True
        assert gate.try_acquire(1, 3, 30) is True
        assert gate.try_acquire(9, 2, 30) is True

    def test_non_positive_cooldown_rejected(self, redis_client):
        with pytest.raises(ValueError):
            CooldownGate(redis_client).try_acquire(1, 2, 0)

    def test_redis_failure_counts_as_cooling_down(self):
        client = MagicMock()
        client.set.side_effect = RedisConnectionError("down")

        assert CooldownGate(client).try_acquire(1, 2, 30) is False
