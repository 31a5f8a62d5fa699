"""
pulse.bot.__main__ — Entry point for ``python -m pulse.bot``
=============================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (infrastructure settings).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Create the Redis client and verify it answers.
5. Ensure activity_log partitions cover the coming months.
6. Create the PulseBot and hand it config + engine + redis.
7. Start the bot (blocking — runs the asyncio event loop).

Run with::

    python -m pulse.bot
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from pulse.bot.core import PulseBot
from pulse.config import load_config
from pulse.database.engine import create_db_engine, init_db
from pulse.database.redis_client import create_redis_client
from pulse.services.partition_service import ensure_future_partitions

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("pulse")


def main() -> None:
    """Bootstrap and run the Pulse bot."""

    # 1. Environment variables (secrets).
    load_dotenv()

    token = os.getenv("DISCORD_TOKEN")
    if not token or token == "your-discord-bot-token-here":
        logger.critical(
            "DISCORD_TOKEN is not set.  "
            "Copy .env.example → .env and paste your bot token."
        )
        sys.exit(1)

    # 2. Infrastructure configuration.
    cfg = load_config()
    logger.info(
        "Config loaded — sync every %d min, retention %d months",
        cfg.sync_interval_minutes, cfg.partition_retention_months,
    )

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)

    # 4. Redis.
    redis_client = create_redis_client()
    redis_client.ping()

    # 5. Partitions for this month and the next few.
    ensure_future_partitions(engine, cfg.partition_months_ahead)

    # 6. Bot.
    bot = PulseBot(cfg=cfg, engine=engine, redis_client=redis_client)

    # 7. Run (blocks until Ctrl+C or SIGTERM).
    logger.info("Starting Pulse bot…")
    try:
        bot.run(token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")
    finally:
        redis_client.close()


if __name__ == "__main__":
    main()
