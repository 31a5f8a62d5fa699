"""
pulse.services.leveling_service — XP Awards, Leaderboard & Level Roles
=======================================================================

Three concerns, one module:

* **Awards** — :class:`LevelingService` gates message XP behind the
  per-guild cooldown and drops both message and voice XP into the Redis
  XP buffer.  Nothing here touches PostgreSQL on the hot path.
* **Reads** — leaderboard and per-member totals straight from
  ``member_leveling`` (durable data only; the buffer is invisible until
  the next XP sync).
* **Level roles** — CRUD for ``leveling_roles`` and the periodic
  :func:`reconcile_roles` pass that grants (and optionally removes)
  community roles through a :class:`RoleGateway`.

Level formula lives in :mod:`pulse.constants` (``floor(sqrt(xp / 100))``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy import Engine, delete, func, select

from pulse.constants import XP_PER_MESSAGE, XP_PER_VOICE_MINUTE, xp_for_level
from pulse.database.engine import get_session, run_db
from pulse.database.models import (
    GuildActivityConfig,
    LevelingRole,
    LogicOperator,
    MemberLeveling,
)
from pulse.services.buffer import XPBuffer
from pulse.services.cooldown import CooldownGate
from pulse.services.guild_config import GuildConfigService

logger = logging.getLogger(__name__)

MAX_LEADERBOARD_LIMIT = 100
DEFAULT_ROLLING_PERIOD_DAYS = 90


# ---------------------------------------------------------------------------
# Awards
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class XPAward:
    """Outcome of one award attempt."""

    awarded: bool
    xp: int = 0
    reason: str | None = None
    cooldown: int | None = None


class LevelingService:
    """Hot-path XP awarding.  All methods are synchronous; call via ``run_db``."""

    def __init__(
        self,
        xp_buffer: XPBuffer,
        cooldowns: CooldownGate,
        config_service: GuildConfigService,
    ) -> None:
        self.xp_buffer = xp_buffer
        self.cooldowns = cooldowns
        self.config_service = config_service

    def award_message_xp(
        self,
        guild_id: int,
        user_id: int,
        channel_id: int | None,
        *,
        is_bot: bool = False,
    ) -> XPAward:
        """Award message XP unless the author is excluded or still cooling down.

        When the guild config cannot be read the harshest cooldown tier is
        used instead of refusing outright.
        """
        settings, _ok = self.config_service.get_or_failsafe(guild_id)

        if is_bot and settings.exclude_bots:
            return XPAward(False, reason="bot")
        if channel_id is not None and channel_id in settings.excluded_message_channels:
            return XPAward(False, reason="excluded_channel")

        cooldown = settings.cooldown_seconds
        if not self.cooldowns.try_acquire(guild_id, user_id, cooldown):
            return XPAward(False, reason="cooldown", cooldown=cooldown)

        if not self.xp_buffer.add_xp(guild_id, user_id, "msg_exp", XP_PER_MESSAGE):
            return XPAward(False, reason="error")
        return XPAward(True, xp=XP_PER_MESSAGE)

    def award_voice_xp(
        self,
        guild_id: int,
        user_id: int,
        channel_id: int | None,
        minutes: int,
        *,
        self_mute: bool = False,
        self_deaf: bool = False,
        is_bot: bool = False,
    ) -> XPAward:
        """Award ``minutes * XP_PER_VOICE_MINUTE`` voice XP.  No cooldown applies."""
        settings, _ok = self.config_service.get_or_failsafe(guild_id)

        if is_bot and settings.exclude_bots:
            return XPAward(False, reason="bot")
        if channel_id is not None and channel_id in settings.excluded_voice_channels:
            return XPAward(False, reason="excluded_channel")
        if settings.exclude_muted and self_mute:
            return XPAward(False, reason="muted")
        if settings.exclude_deafened and self_deaf:
            return XPAward(False, reason="deafened")

        xp = int(minutes * XP_PER_VOICE_MINUTE)
        if xp <= 0:
            return XPAward(False, reason="no_time")
        if not self.xp_buffer.add_xp(guild_id, user_id, "voice_exp", xp):
            return XPAward(False, reason="error")
        return XPAward(True, xp=xp)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def _member_dict(row: MemberLeveling) -> dict:
    total = row.total_exp
    return {
        "user_id": row.user_id,
        "msg_exp": row.msg_exp,
        "voice_exp": row.voice_exp,
        "total_exp": total,
        "level": row.level,
        "xp_for_next": xp_for_level(row.level + 1),
        "last_message_at": row.last_message_at.isoformat() if row.last_message_at else None,
    }


def get_leaderboard(
    engine: Engine, guild_id: int, limit: int = 100, offset: int = 0,
) -> list[dict]:
    """Members ordered by ``msg_exp + voice_exp`` descending.

    Ties break on ``user_id`` so pages are stable.
    """
    limit = max(1, min(limit, MAX_LEADERBOARD_LIMIT))
    offset = max(0, offset)
    total_col = MemberLeveling.msg_exp + MemberLeveling.voice_exp

    with get_session(engine) as session:
        rows = session.scalars(
            select(MemberLeveling)
            .where(MemberLeveling.guild_id == guild_id)
            .order_by(total_col.desc(), MemberLeveling.user_id)
            .offset(offset)
            .limit(limit)
        ).all()
        return [
            {"rank": offset + i + 1, **_member_dict(row)}
            for i, row in enumerate(rows)
        ]


def count_ranked_members(engine: Engine, guild_id: int) -> int:
    with get_session(engine) as session:
        return session.scalar(
            select(func.count())
            .select_from(MemberLeveling)
            .where(MemberLeveling.guild_id == guild_id)
        ) or 0


def get_member_stats(engine: Engine, guild_id: int, user_id: int) -> dict:
    """Durable XP totals for one member; zeros when the member has none."""
    with get_session(engine) as session:
        row = session.get(MemberLeveling, (guild_id, user_id))
        if row is None:
            return {
                "guild_id": guild_id,
                "user_id": user_id,
                "msg_exp": 0,
                "voice_exp": 0,
                "total_exp": 0,
                "level": 0,
                "xp_for_next": xp_for_level(1),
                "last_message_at": None,
            }
        return {"guild_id": guild_id, **_member_dict(row)}


# ---------------------------------------------------------------------------
# Level-role definitions
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RoleRequirement:
    """A ``leveling_roles`` row detached from its session."""

    role_id: int
    msg_exp_requirement: int = 0
    voice_exp_requirement: int = 0
    logic_operator: str = LogicOperator.OR
    position: int = 0
    rolling_period_days: int = DEFAULT_ROLLING_PERIOD_DAYS

    def qualifies(self, msg_exp: int, voice_exp: int) -> bool:
        """Check the member's XP against the axes this role actually sets.

        A requirement of 0 means the axis is unused, so it never satisfies
        an OR on its own.  A role with no requirements always qualifies.
        """
        checks = []
        if self.msg_exp_requirement > 0:
            checks.append(msg_exp >= self.msg_exp_requirement)
        if self.voice_exp_requirement > 0:
            checks.append(voice_exp >= self.voice_exp_requirement)
        if not checks:
            return True
        if self.logic_operator == LogicOperator.AND:
            return all(checks)
        return any(checks)

    @classmethod
    def from_row(cls, row: LevelingRole) -> RoleRequirement:
        return cls(
            role_id=row.role_id,
            msg_exp_requirement=row.msg_exp_requirement,
            voice_exp_requirement=row.voice_exp_requirement,
            logic_operator=row.logic_operator,
            position=row.position,
            rolling_period_days=row.rolling_period_days,
        )

    def to_dict(self) -> dict:
        return {
            "role_id": str(self.role_id),
            "msg_exp_requirement": self.msg_exp_requirement,
            "voice_exp_requirement": self.voice_exp_requirement,
            "logic_operator": str(self.logic_operator),
            "position": self.position,
            "rolling_period_days": self.rolling_period_days,
        }


def list_leveling_roles(engine: Engine, guild_id: int) -> list[RoleRequirement]:
    with get_session(engine) as session:
        rows = session.scalars(
            select(LevelingRole)
            .where(LevelingRole.guild_id == guild_id)
            .order_by(LevelingRole.position, LevelingRole.role_id)
        ).all()
        return [RoleRequirement.from_row(r) for r in rows]


def set_leveling_role(
    engine: Engine,
    guild_id: int,
    role_id: int,
    *,
    msg_exp_requirement: int = 0,
    voice_exp_requirement: int = 0,
    logic_operator: str = "OR",
    position: int = 0,
    rolling_period_days: int = DEFAULT_ROLLING_PERIOD_DAYS,
) -> RoleRequirement:
    """Create or replace the requirement for *role_id*."""
    try:
        operator = LogicOperator(str(logic_operator).upper())
    except ValueError:
        raise ValueError(f"logic_operator must be AND or OR, got {logic_operator!r}") from None
    if msg_exp_requirement < 0 or voice_exp_requirement < 0:
        raise ValueError("XP requirements must be non-negative")
    if rolling_period_days <= 0:
        raise ValueError(f"rolling_period_days must be positive, got {rolling_period_days}")

    with get_session(engine) as session:
        row = session.get(LevelingRole, (guild_id, role_id))
        if row is None:
            row = LevelingRole(guild_id=guild_id, role_id=role_id)
            session.add(row)
        row.msg_exp_requirement = msg_exp_requirement
        row.voice_exp_requirement = voice_exp_requirement
        row.logic_operator = operator.value
        row.position = position
        row.rolling_period_days = rolling_period_days
        session.flush()
        result = RoleRequirement.from_row(row)

    logger.info(
        "Leveling role %s set for guild %s (msg>=%d %s voice>=%d)",
        role_id, guild_id, msg_exp_requirement, operator.value, voice_exp_requirement,
    )
    return result


def remove_leveling_role(engine: Engine, guild_id: int, role_id: int) -> bool:
    with get_session(engine) as session:
        result = session.execute(
            delete(LevelingRole).where(
                LevelingRole.guild_id == guild_id,
                LevelingRole.role_id == role_id,
            )
        )
        removed = bool(result.rowcount)
    if removed:
        logger.info("Leveling role %s removed for guild %s", role_id, guild_id)
    return removed


# ---------------------------------------------------------------------------
# Role reconciliation
# ---------------------------------------------------------------------------
class RoleGateway(Protocol):
    """What the reconciler needs from the chat platform."""

    async def member_role_ids(self, guild_id: int, user_id: int) -> set[int] | None:
        """Current role ids, or None when the member is no longer in the guild."""
        ...

    async def add_roles(self, guild_id: int, user_id: int, role_ids: list[int]) -> None: ...

    async def remove_roles(self, guild_id: int, user_id: int, role_ids: list[int]) -> None: ...


@dataclass(frozen=True, slots=True)
class RoleChanges:
    add: list[int] = field(default_factory=list)
    remove: list[int] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.add or self.remove)


def compute_role_changes(
    requirements: list[RoleRequirement],
    msg_exp: int,
    voice_exp: int,
    current_role_ids: set[int],
    remove_previous: bool,
) -> RoleChanges:
    """Diff the member's current roles against the roles their XP earns.

    Only roles listed in *requirements* are ever touched.
    """
    add: list[int] = []
    remove: list[int] = []
    for req in sorted(requirements, key=lambda r: (r.position, r.role_id)):
        has_role = req.role_id in current_role_ids
        if req.qualifies(msg_exp, voice_exp):
            if not has_role:
                add.append(req.role_id)
        elif has_role and remove_previous:
            remove.append(req.role_id)
    return RoleChanges(add=add, remove=remove)


@dataclass(slots=True)
class _GuildRolePlan:
    guild_id: int
    requirements: list[RoleRequirement]
    remove_previous: bool
    members: list[tuple[int, int, int]]  # (user_id, msg_exp, voice_exp)


def _load_role_plans(engine: Engine) -> list[_GuildRolePlan]:
    with get_session(engine) as session:
        role_rows = session.scalars(
            select(LevelingRole).order_by(LevelingRole.guild_id, LevelingRole.position)
        ).all()
        by_guild: dict[int, list[RoleRequirement]] = {}
        for row in role_rows:
            by_guild.setdefault(row.guild_id, []).append(RoleRequirement.from_row(row))

        plans: list[_GuildRolePlan] = []
        for guild_id, requirements in by_guild.items():
            cfg = session.get(GuildActivityConfig, guild_id)
            members = session.execute(
                select(
                    MemberLeveling.user_id,
                    MemberLeveling.msg_exp,
                    MemberLeveling.voice_exp,
                ).where(MemberLeveling.guild_id == guild_id)
            ).all()
            plans.append(_GuildRolePlan(
                guild_id=guild_id,
                requirements=requirements,
                remove_previous=bool(cfg.remove_previous_role) if cfg else False,
                members=[(m.user_id, m.msg_exp, m.voice_exp) for m in members],
            ))
        return plans


async def reconcile_roles(engine: Engine, gateway: RoleGateway) -> dict[str, int]:
    """Grant (and, if configured, revoke) level roles for every ranked member.

    Per-member failures are logged and counted; the pass carries on.
    """
    plans = await run_db(_load_role_plans, engine)
    summary = {"guilds": len(plans), "members": 0, "added": 0, "removed": 0, "failed": 0}

    for plan in plans:
        for user_id, msg_exp, voice_exp in plan.members:
            try:
                current = await gateway.member_role_ids(plan.guild_id, user_id)
                if current is None:
                    continue
                summary["members"] += 1
                changes = compute_role_changes(
                    plan.requirements, msg_exp, voice_exp, current, plan.remove_previous,
                )
                if changes.add:
                    await gateway.add_roles(plan.guild_id, user_id, changes.add)
                    summary["added"] += len(changes.add)
                if changes.remove:
                    await gateway.remove_roles(plan.guild_id, user_id, changes.remove)
                    summary["removed"] += len(changes.remove)
            except Exception:
                summary["failed"] += 1
                logger.exception(
                    "Role reconcile failed for guild=%s user=%s",
                    plan.guild_id, user_id,
                    extra={"task": "role_reconcile"},
                )

    logger.info(
        "Role reconcile complete — guilds=%d members=%d added=%d removed=%d failed=%d",
        summary["guilds"], summary["members"], summary["added"],
        summary["removed"], summary["failed"],
    )
    return summary
