"""
pulse.bot.core — Bot Instance & Cog Loader
===========================================

Defines :class:`PulseBot`, a ``commands.Bot`` subclass that carries the
shared pipeline state so every cog can reach it via ``self.bot.*``:

- ``bot.cfg``       — :class:`~pulse.config.PulseConfig`
- ``bot.engine``    — SQLAlchemy engine (PostgreSQL)
- ``bot.redis``     — redis-py client (volatile buffers)
- ``bot.tracker``   — :class:`~pulse.services.activity_tracker.ActivityTracker`
- ``bot.guild_config`` — cached per-guild activity config
- ``bot.jobs``      — skip-if-running :class:`~pulse.services.jobs.JobRunner`

Cogs only ever call ``bot.tracker.log_event(...)``; the ingest consumer
started in :meth:`PulseBot.setup_hook` does the store work off the
gateway path.
"""

from __future__ import annotations

import logging

import discord
import redis
from discord.ext import commands
from sqlalchemy import Engine

from pulse.config import PulseConfig
from pulse.services.activity_tracker import ActivityTracker
from pulse.services.buffer import CounterBuffer, XPBuffer
from pulse.services.cooldown import CooldownGate
from pulse.services.guild_config import GuildConfigService
from pulse.services.jobs import JobRunner
from pulse.services.leveling_service import LevelingService
from pulse.services.log_queue import RawEventQueue

logger = logging.getLogger(__name__)

# Cog modules to load on startup.
EXTENSIONS: list[str] = [
    "pulse.bot.cogs.messages",
    "pulse.bot.cogs.voice",
    "pulse.bot.cogs.membership",
    "pulse.bot.cogs.tasks",
]


class PulseBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`PulseConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` connected to PostgreSQL.
    redis_client:
        A redis-py client for counters, XP buckets, cooldowns and the raw queue.
    """

    def __init__(self, cfg: PulseConfig, engine: Engine, redis_client: redis.Redis) -> None:
        # MESSAGE_CONTENT is not needed: only authorship and channel are counted.
        # GUILD_MEMBERS is privileged and required for join/leave events.
        intents = discord.Intents.default()
        intents.members = True
        intents.presences = False

        super().__init__(command_prefix=cfg.bot_prefix, intents=intents)

        self.cfg = cfg
        self.engine = engine
        self.redis = redis_client

        self.guild_config = GuildConfigService(engine, redis_client)
        self.leveling = LevelingService(
            XPBuffer(redis_client), CooldownGate(redis_client), self.guild_config,
        )
        self.tracker = ActivityTracker(
            engine,
            CounterBuffer(redis_client),
            RawEventQueue(redis_client),
            leveling=self.leveling,
            queue_size=cfg.ingest_queue_size,
        )
        self.jobs = JobRunner()

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Start the ingest consumer and load every cog.

        A cog that fails to load is logged and skipped; one broken cog
        shouldn't take down the whole bot.
        """
        self.tracker.ingest.start()

        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        assert self.user is not None  # guaranteed after on_ready
        logger.info(
            "Logged in as %s (ID: %s) — tracking %d guilds",
            self.user.name, self.user.id, len(self.guilds),
        )

    async def close(self) -> None:
        """Graceful shutdown — let queued events finish before disconnecting."""
        logger.info("Bot shutting down…")
        await self.tracker.ingest.stop()
        logger.info("Job counters at shutdown: %s", self.jobs.snapshot())
        await super().close()
