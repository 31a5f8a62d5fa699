"""
pulse.bot.cogs.tasks — Periodic Drain & Maintenance Loops
==========================================================

Scheduled jobs that run on ``discord.ext.tasks`` loops:

- **Counter / log / XP sync** — every ``sync_interval_minutes`` (default 5),
  draining the Redis buffers into PostgreSQL.
- **Role reconcile** — every ``role_reconcile_minutes`` (default 60).
- **Partition upkeep** — daily: ensure future ``activity_log`` partitions;
  on the 1st of each month also drop partitions past retention.

Every job goes through the bot's :class:`~pulse.services.jobs.JobRunner`,
so a tick that fires while the previous run of the same job is still in
flight is skipped rather than overlapped.  Blocking work runs on a
background thread via ``run_db``.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, time
from typing import TYPE_CHECKING

from discord.ext import commands, tasks

from pulse.bot.roles import DiscordRoleGateway
from pulse.services import partition_service, sync_service
from pulse.services.leveling_service import reconcile_roles

if TYPE_CHECKING:
    from pulse.bot.core import PulseBot

logger = logging.getLogger(__name__)

# Daily partition upkeep runs shortly after midnight UTC.
PARTITION_UPKEEP_TIME = time(hour=0, minute=5, tzinfo=UTC)


class PeriodicTasks(commands.Cog):
    """Cog for the drain workers and scheduled maintenance."""

    def __init__(self, bot: PulseBot) -> None:
        self.bot = bot
        self.gateway = DiscordRoleGateway(bot)

    async def cog_load(self) -> None:
        """Start task loops with the configured intervals."""
        cfg = self.bot.cfg
        for loop in (self.counter_sync_loop, self.log_sync_loop, self.xp_sync_loop):
            loop.change_interval(minutes=cfg.sync_interval_minutes)
            loop.start()
        self.role_reconcile_loop.change_interval(minutes=cfg.role_reconcile_minutes)
        self.role_reconcile_loop.start()
        self.partition_loop.start()

    async def cog_unload(self) -> None:
        """Cancel task loops on unload."""
        self.counter_sync_loop.cancel()
        self.log_sync_loop.cancel()
        self.xp_sync_loop.cancel()
        self.role_reconcile_loop.cancel()
        self.partition_loop.cancel()

    # -------------------------------------------------------------------
    # Buffer drains
    # -------------------------------------------------------------------
    @tasks.loop(minutes=5)
    async def counter_sync_loop(self):
        """Drain message / voice counters into member_daily_stats."""
        await self.bot.jobs.run(
            "sync_counters", sync_service.sync_counters, self.bot.redis, self.bot.engine,
        )

    @tasks.loop(minutes=5)
    async def log_sync_loop(self):
        """Bulk-insert queued raw events into activity_log."""
        cfg = self.bot.cfg
        await self.bot.jobs.run(
            "sync_logs",
            sync_service.sync_logs,
            self.bot.redis,
            self.bot.engine,
            batch_size=cfg.log_batch_size,
            max_batches=cfg.log_max_batches,
        )

    @tasks.loop(minutes=5)
    async def xp_sync_loop(self):
        """Drain XP buckets into member_leveling and recompute levels."""
        await self.bot.jobs.run(
            "sync_xp", sync_service.sync_xp, self.bot.redis, self.bot.engine,
        )

    # -------------------------------------------------------------------
    # Leveling roles
    # -------------------------------------------------------------------
    @tasks.loop(minutes=60)
    async def role_reconcile_loop(self):
        """Grant (and optionally remove) level roles from durable XP totals."""
        await self.bot.jobs.run(
            "role_reconcile", reconcile_roles, self.bot.engine, self.gateway,
        )

    @role_reconcile_loop.before_loop
    async def _wait_role_reconcile(self):
        await self.bot.wait_until_ready()

    # -------------------------------------------------------------------
    # Partition upkeep: daily ensure, monthly retention
    # -------------------------------------------------------------------
    @tasks.loop(time=PARTITION_UPKEEP_TIME)
    async def partition_loop(self):
        cfg = self.bot.cfg
        result = await self.bot.jobs.run(
            "ensure_partitions",
            partition_service.ensure_future_partitions,
            self.bot.engine,
            cfg.partition_months_ahead,
        )
        if result and result["failed"]:
            logger.warning(
                "Partition ensure left %d failures — retrying tomorrow",
                len(result["failed"]),
            )

        if datetime.now(UTC).day == 1:
            await self.bot.jobs.run(
                "drop_partitions",
                partition_service.drop_old_partitions,
                self.bot.engine,
                cfg.partition_retention_months,
            )


async def setup(bot: PulseBot) -> None:
    await bot.add_cog(PeriodicTasks(bot))
