"""
Pulse — Activity & Leveling Telemetry for Discord Communities
==============================================================
Captures every message, voice minute and membership change without ever
blocking the gateway, buffers the hot counters in Redis, and drains them
on a schedule into a time-partitioned PostgreSQL store that feeds charts,
leaderboards and level roles.

Package layout::

    pulse/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Cooldown tiers, TTLs, leveling formula
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── redis_client.py # Redis client factory
    │   └── models.py      # ORM models + partitioned activity_log
    ├── engine/
    │   ├── events.py      # ActivityEvent envelope + raw log codes
    │   └── keys.py        # Redis key builders / parsers
    ├── services/
    │   ├── buffer.py          # Volatile counter + XP buffers
    │   ├── cooldown.py        # Anti-spam cooldown gate
    │   ├── guild_config.py    # Per-guild activity config + read cache
    │   ├── log_queue.py       # Raw event FIFO
    │   ├── ingest.py          # Bounded non-blocking submit queue
    │   ├── activity_tracker.py  # log_event front door
    │   ├── sync_service.py    # Counter / log / XP drain workers
    │   ├── partition_service.py # activity_log partition lifecycle
    │   ├── leveling_service.py  # XP awards, leaderboard, level roles
    │   ├── stats_service.py   # Chart-ready aggregates
    │   └── jobs.py            # Skip-if-running job runner
    ├── bot/
    │   ├── core.py        # Bot subclass, cog loader
    │   ├── roles.py       # Discord role gateway
    │   └── cogs/          # messages, voice, membership, tasks
    └── api/
        ├── main.py        # FastAPI app
        └── routes/        # Public stats + admin config endpoints
"""

__version__ = "0.1.0"
