"""
pulse.api.routes.admin — Activity config & partition endpoints (JWT‑protected)
===============================================================================
"""

from __future__ import annotations

import logging

import redis
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from pulse.api.deps import get_current_admin, get_engine, get_redis
from pulse.services import leveling_service, partition_service
from pulse.services.guild_config import GuildActivitySettings, GuildConfigService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class ActivityConfigUpdate(BaseModel):
    anti_spam_level: str | None = None
    excluded_message_channels: list[int] | None = None
    excluded_voice_channels: list[int] | None = None
    exclude_muted: bool | None = None
    exclude_deafened: bool | None = None
    exclude_bots: bool | None = None
    remove_previous_role: bool | None = None


class LevelingRoleUpsert(BaseModel):
    msg_exp_requirement: int = Field(0, ge=0)
    voice_exp_requirement: int = Field(0, ge=0)
    logic_operator: str = Field("OR", pattern="^(AND|OR)$")
    rolling_period_days: int = Field(90, ge=1)
    position: int = 0


def _config_dict(settings: GuildActivitySettings) -> dict:
    data = settings.to_dict()
    data["guild_id"] = str(settings.guild_id)
    data["excluded_message_channels"] = [str(c) for c in settings.excluded_message_channels]
    data["excluded_voice_channels"] = [str(c) for c in settings.excluded_voice_channels]
    data["cooldown_seconds"] = settings.cooldown_seconds
    return data


# ---------------------------------------------------------------------------
# Activity config
# ---------------------------------------------------------------------------
@router.get("/guilds/{guild_id}/leveling/config")
def get_activity_config(
    guild_id: int,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    redis_client: redis.Redis = Depends(get_redis),
):
    settings = GuildConfigService(engine, redis_client).get(guild_id)
    return _config_dict(settings)


@router.post("/guilds/{guild_id}/leveling/config")
def update_activity_config(
    guild_id: int,
    body: ActivityConfigUpdate,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    redis_client: redis.Redis = Depends(get_redis),
):
    changes = body.model_dump(exclude_none=True)
    try:
        settings = GuildConfigService(engine, redis_client).update(guild_id, **changes)
    except ValueError as exc:
        raise HTTPException(400, detail=str(exc))
    logger.info(
        "Admin %s updated activity config for guild %s",
        admin.get("username", admin.get("sub")), guild_id,
    )
    return _config_dict(settings)


# ---------------------------------------------------------------------------
# Leveling roles
# ---------------------------------------------------------------------------
@router.get("/guilds/{guild_id}/leveling/roles")
def list_leveling_roles(
    guild_id: int,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    roles = leveling_service.list_leveling_roles(engine, guild_id)
    return {"guild_id": str(guild_id), "roles": [r.to_dict() for r in roles]}


@router.put("/guilds/{guild_id}/leveling/roles/{role_id}")
def upsert_leveling_role(
    guild_id: int,
    role_id: int,
    body: LevelingRoleUpsert,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    try:
        role = leveling_service.set_leveling_role(engine, guild_id, role_id, **body.model_dump())
    except ValueError as exc:
        raise HTTPException(400, detail=str(exc))
    return role.to_dict()


@router.delete("/guilds/{guild_id}/leveling/roles/{role_id}")
def delete_leveling_role(
    guild_id: int,
    role_id: int,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    if not leveling_service.remove_leveling_role(engine, guild_id, role_id):
        raise HTTPException(404, detail="Leveling role not found")
    return {"deleted": str(role_id)}


# ---------------------------------------------------------------------------
# Partitions
# ---------------------------------------------------------------------------
@router.get("/partitions")
def get_partitions(
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    """Registered activity_log partitions plus on-disk sizes where available."""
    return {
        "partitions": [p.to_dict() for p in partition_service.list_partitions(engine)],
        "stats": partition_service.get_partition_stats(engine),
    }
