"""
pulse.bot.cogs.messages — Message Activity Capture
===================================================

Turns every guild message into a ``message`` activity event.  The cog
does no I/O of its own: ``log_event`` is a non-blocking queue submit and
the counter, XP and raw-log work happens on the ingest consumer.
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


class Messages(commands.Cog, name="Messages"):
    """Counts messages and feeds message XP."""

    def __init__(self, bot: PulseBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        # Gate 1: DMs carry no guild
        if message.guild is None:
            return
        # Gate 2: never count ourselves
        if self.bot.user is not None and message.author.id == self.bot.user.id:
            return

        metadata: dict = {}
        if message.author.bot:
            metadata["bot"] = True  # per-guild exclude_bots decides downstream

        try:
            accepted = self.bot.tracker.log_event(
                message.guild.id,
                ActivityEventType.MESSAGE,
                user_id=message.author.id,
                channel_id=message.channel.id,
                metadata=metadata,
            )
        except Exception:
            logger.exception(
                "Error queueing message %s from user %s",
                message.id, message.author.id,
                extra={"event_type": "message", "user_id": message.author.id},
            )
            return

        if not accepted:
            logger.debug("Message %s dropped by a full ingest queue", message.id)


async def setup(bot: PulseBot) -> None:
    await bot.add_cog(Messages(bot))
