"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Runs the real routers against the SQLite engine and fake Redis:

- Auth guards on admin endpoints
- Public stats and leaderboard payloads
- Admin activity config, leveling roles and partitions
- Health endpoints
"""

from __future__ import annotations

from datetime import UTC, date, datetime

import jwt
import pytest

from pulse.api.deps import JWT_ALGORITHM, JWT_SECRET
from pulse.database.models import DailyStat, MemberDailyStat, MemberLeveling
from pulse.services.log_queue import RawEventQueue, RawLogEntry
from pulse.services.partition_service import ensure_future_partitions


@pytest.fixture
def non_admin_token():
    return jwt.encode(
        {"sub": "67890", "username": "RegularUser", "is_admin": False},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# ===========================================================================
# Health
# ===========================================================================
class TestHealthEndpoints:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_pipeline_reports_backlog(self, client, redis_client):
        RawEventQueue(redis_client).enqueue(
            RawLogEntry(datetime(2024, 5, 1, tzinfo=UTC), 1, 1, 1)
        )
        resp = client.get("/api/health/pipeline")
        assert resp.status_code == 200
        assert resp.json()["log_queue_length"] == 1


# ===========================================================================
# Auth guards
# ===========================================================================
class TestAdminAuthGuards:
    """All admin endpoints must return 401/403 for missing/invalid/non-admin tokens."""

    ADMIN_GET_ENDPOINTS = [
        "/api/admin/guilds/1/leveling/config",
        "/api/admin/guilds/1/leveling/roles",
        "/api/admin/partitions",
    ]

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_get_rejects_no_auth(self, client, endpoint):
        assert client.get(endpoint).status_code == 401

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_get_rejects_invalid_token(self, client, endpoint):
        resp = client.get(endpoint, headers={"Authorization": "Bearer invalid"})
        assert resp.status_code == 401

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_get_rejects_non_admin(self, client, non_admin_token, endpoint):
        resp = client.get(endpoint, headers=_auth(non_admin_token))
        assert resp.status_code == 403

    def test_post_config_rejects_no_auth(self, client):
        resp = client.post("/api/admin/guilds/1/leveling/config", json={})
        assert resp.status_code == 401


# ===========================================================================
# Public endpoints
# ===========================================================================
class TestPublicEndpoints:
    def test_activity_stats(self, client, db_session):
        today = datetime.now(UTC).date()
        db_session.add_all([
            DailyStat(guild_id=1, day=today, joins_count=3),
            MemberDailyStat(stat_date=today, user_id=5, guild_id=1, message_count=8),
        ])
        db_session.commit()

        resp = client.get("/api/guilds/1/activity/stats?days=7")

        assert resp.status_code == 200
        body = resp.json()
        assert body["guild_id"] == "1"
        assert body["activity"][0]["joins"] == 3
        assert body["activity"][0]["messages"] == 8
        assert body["totals"]["messages"] == 8

    def test_activity_stats_rejects_bad_days(self, client):
        assert client.get("/api/guilds/1/activity/stats?days=0").status_code == 422

    def test_activity_overview(self, client, db_session):
        today = datetime.now(UTC).date()
        db_session.add_all([
            MemberDailyStat(stat_date=today, user_id=5, guild_id=1,
                            message_count=8, vc_minutes=12),
            MemberDailyStat(stat_date=today, user_id=6, guild_id=1, vc_minutes=3),
        ])
        db_session.commit()

        resp = client.get("/api/guilds/1/activity/overview")

        assert resp.status_code == 200
        body = resp.json()
        assert body["guild_id"] == "1"
        assert body["messages_last_24h"] == 8
        assert body["active_members_today"] == 1
        assert body["voice_minutes_today"] == 15

    def test_top_members_stringifies_ids(self, client, db_session):
        today = datetime.now(UTC).date()
        db_session.add(MemberDailyStat(
            stat_date=today, user_id=123456789012345678, guild_id=1, message_count=2,
        ))
        db_session.commit()

        resp = client.get("/api/guilds/1/activity/top")

        assert resp.status_code == 200
        assert resp.json()["members"][0]["user_id"] == "123456789012345678"

    def test_top_members_rejects_unknown_metric(self, client):
        assert client.get("/api/guilds/1/activity/top?metric=reactions").status_code == 422

    def test_leaderboard(self, client, db_session):
        db_session.add_all([
            MemberLeveling(guild_id=1, user_id=10, msg_exp=100, voice_exp=0),
            MemberLeveling(guild_id=1, user_id=20, msg_exp=150, voice_exp=100),
            MemberLeveling(guild_id=1, user_id=30, msg_exp=40, voice_exp=0),
        ])
        db_session.commit()

        resp = client.get("/api/guilds/1/leveling/leaderboard?limit=2")

        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 3
        assert [m["user_id"] for m in body["members"]] == ["20", "10"]
        assert [m["total_exp"] for m in body["members"]] == [250, 100]

    def test_member_without_xp(self, client):
        resp = client.get("/api/guilds/1/leveling/members/42")
        assert resp.status_code == 200
        assert resp.json()["total_exp"] == 0
        assert resp.json()["user_id"] == "42"


# ===========================================================================
# Admin endpoints
# ===========================================================================
class TestAdminConfig:
    def test_defaults_for_unconfigured_guild(self, client, admin_token):
        resp = client.get("/api/admin/guilds/1/leveling/config", headers=_auth(admin_token))

        assert resp.status_code == 200
        body = resp.json()
        assert body["anti_spam_level"] == "soft"
        assert body["cooldown_seconds"] == 15

    def test_update_then_read_back(self, client, admin_token):
        resp = client.post(
            "/api/admin/guilds/1/leveling/config",
            json={"anti_spam_level": "strict", "excluded_voice_channels": [555]},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 200
        assert resp.json()["cooldown_seconds"] == 300

        body = client.get(
            "/api/admin/guilds/1/leveling/config", headers=_auth(admin_token),
        ).json()
        assert body["anti_spam_level"] == "strict"
        assert body["excluded_voice_channels"] == ["555"]

    def test_invalid_tier_is_400(self, client, admin_token):
        resp = client.post(
            "/api/admin/guilds/1/leveling/config",
            json={"anti_spam_level": "nuclear"},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 400


class TestAdminRoles:
    def test_role_lifecycle(self, client, admin_token):
        url = "/api/admin/guilds/1/leveling/roles"
        resp = client.put(
            f"{url}/777",
            json={"msg_exp_requirement": 100, "logic_operator": "AND", "rolling_period_days": 30},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 200
        assert resp.json()["role_id"] == "777"
        assert resp.json()["rolling_period_days"] == 30

        roles = client.get(url, headers=_auth(admin_token)).json()["roles"]
        assert [r["role_id"] for r in roles] == ["777"]

        assert client.delete(f"{url}/777", headers=_auth(admin_token)).status_code == 200
        assert client.delete(f"{url}/777", headers=_auth(admin_token)).status_code == 404

    def test_bad_operator_is_422(self, client, admin_token):
        resp = client.put(
            "/api/admin/guilds/1/leveling/roles/1",
            json={"logic_operator": "XOR"},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 422


class TestAdminPartitions:
    def test_lists_registered_partitions(self, client, admin_token, db_engine):
        ensure_future_partitions(db_engine, months_ahead=1, now=datetime(2024, 5, 3, tzinfo=UTC))

        resp = client.get("/api/admin/partitions", headers=_auth(admin_token))

        assert resp.status_code == 200
        body = resp.json()
        assert [p["partition_name"] for p in body["partitions"]] == [
            "activity_log_y2024m05", "activity_log_y2024m06",
        ]
        assert body["partitions"][0]["start_date"] == date(2024, 5, 1).isoformat()
        assert body["stats"] == []
