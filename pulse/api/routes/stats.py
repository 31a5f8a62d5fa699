"""
pulse.api.routes.stats — Read-only activity & leveling endpoints
=================================================================

Everything here reads durable tables only; figures trail the live Redis
buffers by at most one sync interval.  Discord snowflakes are returned
as strings so JavaScript clients don't lose precision.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import Engine

from pulse.api.deps import get_engine
from pulse.services import leveling_service, stats_service

router = APIRouter(prefix="/guilds/{guild_id}", tags=["stats"])


def _stringify_user(row: dict) -> dict:
    return {**row, "user_id": str(row["user_id"])}


# ---------------------------------------------------------------------------
# GET /guilds/{guild_id}/activity/overview
# ---------------------------------------------------------------------------
@router.get("/activity/overview")
def get_activity_overview(guild_id: int, engine: Engine = Depends(get_engine)):
    """Messages in the last 24h, active members and voice minutes today."""
    overview = stats_service.get_activity_overview(engine, guild_id)
    return {**overview, "guild_id": str(guild_id)}


# ---------------------------------------------------------------------------
# GET /guilds/{guild_id}/activity/stats
# ---------------------------------------------------------------------------
@router.get("/activity/stats")
def get_activity_stats(
    guild_id: int,
    days: int = Query(30, ge=1, le=stats_service.MAX_STATS_DAYS),
    engine: Engine = Depends(get_engine),
):
    """Merged daily series (joins, leaves, messages, voice minutes, mod actions)."""
    stats = stats_service.get_guild_stats(engine, guild_id, days)
    return {**stats, "guild_id": str(guild_id)}


# ---------------------------------------------------------------------------
# GET /guilds/{guild_id}/activity/top
# ---------------------------------------------------------------------------
@router.get("/activity/top")
def get_top_members(
    guild_id: int,
    days: int = Query(30, ge=1, le=stats_service.MAX_STATS_DAYS),
    limit: int = Query(10, ge=1, le=100),
    metric: str = Query("messages", pattern="^(messages|voice)$"),
    engine: Engine = Depends(get_engine),
):
    members = stats_service.get_top_members(
        engine, guild_id, days=days, limit=limit, metric=metric,
    )
    return {
        "guild_id": str(guild_id),
        "metric": metric,
        "days": days,
        "members": [_stringify_user(m) for m in members],
    }


# ---------------------------------------------------------------------------
# GET /guilds/{guild_id}/leveling/leaderboard
# ---------------------------------------------------------------------------
@router.get("/leveling/leaderboard")
def get_leaderboard(
    guild_id: int,
    limit: int = Query(100, ge=1, le=leveling_service.MAX_LEADERBOARD_LIMIT),
    offset: int = Query(0, ge=0),
    engine: Engine = Depends(get_engine),
):
    """Members ranked by total XP (message + voice)."""
    rows = leveling_service.get_leaderboard(engine, guild_id, limit=limit, offset=offset)
    return {
        "guild_id": str(guild_id),
        "total": leveling_service.count_ranked_members(engine, guild_id),
        "limit": limit,
        "offset": offset,
        "members": [_stringify_user(r) for r in rows],
    }


# ---------------------------------------------------------------------------
# GET /guilds/{guild_id}/leveling/members/{user_id}
# ---------------------------------------------------------------------------
@router.get("/leveling/members/{user_id}")
def get_member(
    guild_id: int,
    user_id: int,
    engine: Engine = Depends(get_engine),
):
    stats = leveling_service.get_member_stats(engine, guild_id, user_id)
    return {**_stringify_user(stats), "guild_id": str(guild_id)}
