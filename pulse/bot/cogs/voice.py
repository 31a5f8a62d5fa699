"""
pulse.bot.cogs.voice — Voice Minute Capture
============================================

Every ``voice_tick_minutes`` (default 1) the cog walks each guild's voice
and stage channels and logs one ``voice`` event per connected member,
carrying the tick length and mute/deaf state.  Whether muted or deafened
members earn XP is a per-guild setting applied downstream; the guild's
AFK channel is never counted.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands, tasks

from pulse.database.models import ActivityEventType

if TYPE_CHECKING:
    from pulse.bot.core import PulseBot

logger = logging.getLogger(__name__)


class Voice(commands.Cog, name="Voice"):
    """Logs voice presence as minute-granular activity events."""

    def __init__(self, bot: PulseBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        self.voice_tick_loop.change_interval(minutes=self.bot.cfg.voice_tick_minutes)
        self.voice_tick_loop.start()

    async def cog_unload(self) -> None:
        self.voice_tick_loop.cancel()

    def _channels(self, guild: discord.Guild):
        afk_id = guild.afk_channel.id if guild.afk_channel else None
        for channel in [*guild.voice_channels, *guild.stage_channels]:
            if channel.id != afk_id:
                yield channel

    def tick_guild(self, guild: discord.Guild, minutes: int) -> int:
        """Log one voice event per connected member.  Returns events queued."""
        queued = 0
        for channel in self._channels(guild):
            for member in channel.members:
                state = member.voice
                metadata = {
                    "minutes": minutes,
                    "self_mute": bool(state and (state.self_mute or state.mute)),
                    "self_deaf": bool(state and (state.self_deaf or state.deaf)),
                }
                if member.bot:
                    metadata["bot"] = True
                if self.bot.tracker.log_event(
                    guild.id,
                    ActivityEventType.VOICE,
                    user_id=member.id,
                    channel_id=channel.id,
                    metadata=metadata,
                ):
                    queued += 1
        return queued

    @tasks.loop(minutes=1)
    async def voice_tick_loop(self) -> None:
        minutes = self.bot.cfg.voice_tick_minutes
        total = 0
        for guild in self.bot.guilds:
            try:
                total += self.tick_guild(guild, minutes)
            except Exception:
                logger.exception(
                    "Voice tick failed for guild %s", guild.id, extra={"task": "voice_tick"},
                )
        if total:
            logger.debug("Voice tick queued %d events", total)

    @voice_tick_loop.before_loop
    async def _wait_voice_tick(self) -> None:
        await self.bot.wait_until_ready()


async def setup(bot: PulseBot) -> None:
    await bot.add_cog(Voice(bot))
