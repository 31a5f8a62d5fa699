"""
pulse.bot.cogs.membership — Join / Leave / Moderation Capture
==============================================================

Member joins and leaves land in ``daily_stats`` via the ingest queue.
Kicks, bans and unbans are picked up from the audit log stream and
logged as ``mod_action`` events; a kick whose reason mentions the
captcha gate is counted as a captcha kick as well.

Requires the GUILD_MEMBERS privileged intent, and the bot needs
*View Audit Log* in each guild for moderation capture.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from pulse.database.models import ActivityEventType

if TYPE_CHECKING:
    from pulse.bot.core import PulseBot

logger = logging.getLogger(__name__)

MOD_ACTIONS: dict[discord.AuditLogAction, str] = {
    discord.AuditLogAction.kick: "kick",
    discord.AuditLogAction.ban: "ban",
    discord.AuditLogAction.unban: "unban",
}


def mod_action_type(action: discord.AuditLogAction, reason: str | None) -> str | None:
    """Map an audit log action to the ``action_type`` stored with the event."""
    name = MOD_ACTIONS.get(action)
    if name == "kick" and reason and "captcha" in reason.lower():
        return "captcha_kick"
    return name


class Membership(commands.Cog, name="Membership"):
    """Captures member join/leave and moderation events."""

    def __init__(self, bot: PulseBot) -> None:
        self.bot = bot

    def _log_membership(self, member: discord.Member, event_type: ActivityEventType) -> None:
        try:
            self.bot.tracker.log_event(
                member.guild.id,
                event_type,
                user_id=member.id,
                metadata={"bot": True} if member.bot else {},
            )
            logger.info("Member %s: %s (ID: %d)", event_type, member.display_name, member.id)
        except Exception:
            logger.exception(
                "Error processing %s for %s", event_type, member.id,
                extra={"event_type": str(event_type), "user_id": member.id},
            )

    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member) -> None:
        self._log_membership(member, ActivityEventType.JOIN)

    @commands.Cog.listener()
    async def on_member_remove(self, member: discord.Member) -> None:
        self._log_membership(member, ActivityEventType.LEAVE)

    @commands.Cog.listener()
    async def on_audit_log_entry_create(self, entry: discord.AuditLogEntry) -> None:
        action_type = mod_action_type(entry.action, entry.reason)
        if action_type is None or entry.user_id is None:
            return
        target_id = getattr(entry.target, "id", None)
        try:
            self.bot.tracker.log_mod_action(
                entry.guild.id,
                moderator_id=entry.user_id,
                target_id=target_id,
                action_type=action_type,
                reason=entry.reason,
            )
            logger.info(
                "Mod action %s by %s on %s in guild %s",
                action_type, entry.user_id, target_id, entry.guild.id,
            )
        except Exception:
            logger.exception(
                "Error processing audit log entry %s", entry.id,
                extra={"event_type": "mod_action", "user_id": entry.user_id},
            )


async def setup(bot: PulseBot) -> None:
    await bot.add_cog(Membership(bot))
