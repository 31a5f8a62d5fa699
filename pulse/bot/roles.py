"""
pulse.bot.roles — discord.py implementation of the RoleGateway
===============================================================

The reconciler in :mod:`pulse.services.leveling_service` only knows the
:class:`~pulse.services.leveling_service.RoleGateway` protocol.  This is
the one place that turns those calls into Discord API requests.
"""

from __future__ import annotations

import logging

import discord
from discord.ext import commands

logger = logging.getLogger(__name__)

AUDIT_REASON = "Pulse: leveling role reconcile"


class DiscordRoleGateway:
    """Resolves guilds and members from the bot cache, fetching on a miss."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    async def _member(self, guild_id: int, user_id: int) -> discord.Member | None:
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            return None
        member = guild.get_member(user_id)
        if member is not None:
            return member
        try:
            return await guild.fetch_member(user_id)
        except discord.NotFound:
            return None

    def _roles(self, member: discord.Member, role_ids: list[int]) -> list[discord.Role]:
        roles = []
        for role_id in role_ids:
            role = member.guild.get_role(role_id)
            if role is None:
                logger.warning(
                    "Leveling role %s no longer exists in guild %s", role_id, member.guild.id,
                )
                continue
            roles.append(role)
        return roles

    async def member_role_ids(self, guild_id: int, user_id: int) -> set[int] | None:
        member = await self._member(guild_id, user_id)
        if member is None:
            return None
        return {role.id for role in member.roles}

    async def add_roles(self, guild_id: int, user_id: int, role_ids: list[int]) -> None:
        member = await self._member(guild_id, user_id)
        if member is None:
            return
        roles = self._roles(member, role_ids)
        if roles:
            await member.add_roles(*roles, reason=AUDIT_REASON)
            logger.info("Added roles %s to %s in guild %s", role_ids, user_id, guild_id)

    async def remove_roles(self, guild_id: int, user_id: int, role_ids: list[int]) -> None:
        member = await self._member(guild_id, user_id)
        if member is None:
            return
        roles = self._roles(member, role_ids)
        if roles:
            await member.remove_roles(*roles, reason=AUDIT_REASON)
            logger.info("Removed roles %s from %s in guild %s", role_ids, user_id, guild_id)
