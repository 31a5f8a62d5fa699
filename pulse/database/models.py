"""
pulse.database.models — SQLAlchemy 2.0 Data Models
===================================================

Durable side of the activity pipeline.

Tables:
- daily_stats            — Per-guild daily joins/leaves/mod actions (low volume)
- member_daily_stats     — Per-member daily message + voice aggregates
- activity_log           — Raw event log, RANGE-partitioned by month
- activity_log_partitions — Registry of created activity_log partitions
- member_leveling        — Per-member XP totals and level
- guild_activity_config  — Per-guild anti-spam tier and exclusions
- leveling_roles         — XP thresholds that grant community roles
"""

from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    SmallInteger,
    String,
    Table,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Pulse ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ActivityEventType(enum.StrEnum):
    """Every event type a producer may hand to ``log_event``."""
    MESSAGE = "message"
    VOICE = "voice"
    JOIN = "join"
    LEAVE = "leave"
    MOD_ACTION = "mod_action"


class LogicOperator(enum.StrEnum):
    """How a leveling role combines its message and voice requirements."""
    AND = "AND"
    OR = "OR"


# ---------------------------------------------------------------------------
# DailyStat — legacy low-volume per-guild aggregate
# ---------------------------------------------------------------------------
class DailyStat(Base):
    """One row per guild per day, incremented directly on join/leave/mod paths.

    ``messages_count`` is kept for rows written before message counting
    moved to :class:`MemberDailyStat`.
    """
    __tablename__ = "daily_stats"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    day: Mapped[date] = mapped_column("date", Date, primary_key=True)
    joins_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    leaves_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    messages_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    mod_actions_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    captcha_kicks_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<DailyStat guild={self.guild_id} date={self.day}>"


# ---------------------------------------------------------------------------
# MemberDailyStat — drained from the Redis counter buffer
# ---------------------------------------------------------------------------
class MemberDailyStat(Base):
    __tablename__ = "member_daily_stats"

    stat_date: Mapped[date] = mapped_column(Date, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    message_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    vc_minutes: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )

    __table_args__ = (
        Index("ix_member_daily_stats_guild_date", "guild_id", "stat_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<MemberDailyStat guild={self.guild_id} user={self.user_id} "
            f"date={self.stat_date} msgs={self.message_count}>"
        )


# ---------------------------------------------------------------------------
# activity_log — partitioned raw event log
# ---------------------------------------------------------------------------
# Mapped as a Core table: rows are only ever bulk-inserted by the log-sync
# worker and PostgreSQL partitioned tables carry no surrogate key.
activity_log = Table(
    "activity_log",
    Base.metadata,
    Column("timestamp", DateTime(timezone=True), nullable=False),
    Column("user_id", BigInteger, nullable=False),
    Column("guild_id", BigInteger, nullable=False),
    Column("event_type", SmallInteger, nullable=False),
    Column("metadata", JSONB, nullable=False, server_default="{}"),
    Index("ix_activity_log_guild_ts", "guild_id", "timestamp"),
    Index("ix_activity_log_user_ts", "user_id", "timestamp"),
    postgresql_partition_by="RANGE (timestamp)",
)


class ActivityLogPartition(Base):
    """Registry row for one monthly ``activity_log`` partition.

    Covers ``[start_date, end_date)``.  Written in the same transaction as
    the partition's ``CREATE TABLE``; the primary key makes concurrent
    creation from several bot processes idempotent.
    """
    __tablename__ = "activity_log_partitions"

    partition_name: Mapped[str] = mapped_column(String(64), primary_key=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_activity_log_partitions_start", "start_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<ActivityLogPartition {self.partition_name} "
            f"[{self.start_date}, {self.end_date})>"
        )


# ---------------------------------------------------------------------------
# MemberLeveling — durable XP totals
# ---------------------------------------------------------------------------
class MemberLeveling(Base):
    __tablename__ = "member_leveling"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    msg_exp: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0, server_default="0"
    )
    voice_exp: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0, server_default="0"
    )
    level: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    last_message_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_member_leveling_guild", "guild_id"),
    )

    @property
    def total_exp(self) -> int:
        return (self.msg_exp or 0) + (self.voice_exp or 0)

    def __repr__(self) -> str:
        return (
            f"<MemberLeveling guild={self.guild_id} user={self.user_id} "
            f"xp={self.total_exp} lvl={self.level}>"
        )


# ---------------------------------------------------------------------------
# GuildActivityConfig — per-guild tuning
# ---------------------------------------------------------------------------
class GuildActivityConfig(Base):
    __tablename__ = "guild_activity_config"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    anti_spam_level: Mapped[str] = mapped_column(
        String(16), nullable=False, default="soft"
    )
    excluded_message_channels: Mapped[list] = mapped_column(
        JSONB, nullable=False, default=list
    )
    excluded_voice_channels: Mapped[list] = mapped_column(
        JSONB, nullable=False, default=list
    )
    exclude_muted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    exclude_deafened: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    exclude_bots: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    remove_previous_role: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<GuildActivityConfig guild={self.guild_id} tier={self.anti_spam_level!r}>"


# ---------------------------------------------------------------------------
# LevelingRole — XP thresholds → community roles
# ---------------------------------------------------------------------------
class LevelingRole(Base):
    __tablename__ = "leveling_roles"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    role_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    msg_exp_requirement: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0, server_default="0"
    )
    voice_exp_requirement: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0, server_default="0"
    )
    logic_operator: Mapped[str] = mapped_column(String(3), nullable=False, default="OR")
    # Stored for dashboards; qualification reads lifetime totals.
    rolling_period_days: Mapped[int] = mapped_column(
        Integer, nullable=False, default=90, server_default="90"
    )
    position: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )

    def __repr__(self) -> str:
        return (
            f"<LevelingRole guild={self.guild_id} role={self.role_id} "
            f"msg>={self.msg_exp_requirement} {self.logic_operator} "
            f"voice>={self.voice_exp_requirement}>"
        )
