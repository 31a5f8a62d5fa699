"""
pulse.database.redis_client — Volatile Store Connection
========================================================

Builds the shared synchronous Redis client used by the buffers, the
cooldown gate, the raw event queue and the config read cache.  Like the
SQLAlchemy engine it is called from worker threads through ``run_db``.
"""

from __future__ import annotations

import logging
import os

import redis
from redis.backoff import ExponentialBackoff
from redis.retry import Retry

logger = logging.getLogger(__name__)


def create_redis_client() -> redis.Redis:
    """Build a :class:`redis.Redis` client from the ``REDIS_URL`` env var.

    * ``decode_responses=True`` — keys and values come back as ``str``.
    * Connection errors are retried up to 10 times with exponential
      backoff capped at 2 s.
    * Short socket timeouts keep a dead Redis from stalling the hot path.

    Raises
    ------
    RuntimeError
        If ``REDIS_URL`` is not set.
    """
    url = os.getenv("REDIS_URL")
    if not url:
        raise RuntimeError(
            "REDIS_URL is not set.  "
            "Copy .env.example → .env and set a valid redis:// URL."
        )

    client = redis.Redis.from_url(
        url,
        decode_responses=True,
        socket_timeout=2,
        socket_connect_timeout=2,
        health_check_interval=30,
        retry=Retry(ExponentialBackoff(cap=2.0, base=0.05), 10),
    )
    logger.info("Redis client created → %s", url.rsplit("@", 1)[-1])
    return client
