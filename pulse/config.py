"""
pulse.config — YAML Configuration Loader
=========================================

This module reads ``config.yaml`` for **infrastructure-only** settings:
how often the drain workers run, how large a log batch is, how far ahead
partitions are created and how long they are kept.  Per-guild tuning
(anti-spam tier, excluded channels, role behaviour) lives in the
``guild_activity_config`` table and is read through
:class:`pulse.services.guild_config.GuildConfigService`.

Secrets and connection strings (``DATABASE_URL``, ``REDIS_URL``,
``DISCORD_TOKEN``, ``JWT_SECRET``) come from the environment, never YAML.

Usage::

    from pulse.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.sync_interval_minutes) # 5
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object: infrastructure only.
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class PulseConfig:
    """Immutable configuration loaded from ``config.yaml``.

    Every field has a production default so a minimal YAML file only
    needs the keys an operator actually wants to change.
    """

    # Discord
    bot_prefix: str = "!"

    # Drain workers
    sync_interval_minutes: int = 5
    log_batch_size: int = 1000
    log_max_batches: int = 50  # per tick; the rest waits for the next one

    # Ingestion
    ingest_queue_size: int = 10_000

    # Partition lifecycle
    partition_months_ahead: int = 2
    partition_retention_months: int = 12

    # Leveling
    role_reconcile_minutes: int = 60
    voice_tick_minutes: int = 1


_INT_FIELDS = (
    "sync_interval_minutes",
    "log_batch_size",
    "log_max_batches",
    "ingest_queue_size",
    "partition_months_ahead",
    "partition_retention_months",
    "role_reconcile_minutes",
    "voice_tick_minutes",
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> PulseConfig:
    """Read *path* and return a :class:`PulseConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If a numeric setting is not a positive integer.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    values: dict[str, object] = {}
    if "bot_prefix" in raw:
        values["bot_prefix"] = str(raw["bot_prefix"])

    for key in _INT_FIELDS:
        if key not in raw:
            continue
        value = int(raw[key])
        if value <= 0:
            raise ValueError(f"{key} must be a positive integer, got {value}")
        values[key] = value

    return PulseConfig(**values)
