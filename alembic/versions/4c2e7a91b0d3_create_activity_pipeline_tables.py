"""Create activity pipeline tables

Revision ID: 4c2e7a91b0d3
Revises:
Create Date: 2026-10-17 09:12:41.118204

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '4c2e7a91b0d3'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create aggregate, log, leveling and config tables."""

    # --- daily_stats ---
    op.create_table(
        "daily_stats",
        sa.Column("guild_id", sa.BigInteger, primary_key=True),
        sa.Column("date", sa.Date, primary_key=True),
        sa.Column("joins_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("leaves_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("messages_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("mod_actions_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("captcha_kicks_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # --- member_daily_stats ---
    op.create_table(
        "member_daily_stats",
        sa.Column("stat_date", sa.Date, primary_key=True),
        sa.Column("user_id", sa.BigInteger, primary_key=True),
        sa.Column("guild_id", sa.BigInteger, primary_key=True),
        sa.Column("message_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("vc_minutes", sa.Integer, nullable=False, server_default="0"),
    )
    op.create_index(
        "ix_member_daily_stats_guild_date", "member_daily_stats",
        ["guild_id", "stat_date"],
    )

    # --- activity_log (RANGE-partitioned parent; partitions created at runtime) ---
    op.create_table(
        "activity_log",
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("user_id", sa.BigInteger, nullable=False),
        sa.Column("guild_id", sa.BigInteger, nullable=False),
        sa.Column("event_type", sa.SmallInteger, nullable=False),
        sa.Column("metadata", postgresql.JSONB, nullable=False, server_default="{}"),
        postgresql_partition_by="RANGE (timestamp)",
    )
    op.create_index("ix_activity_log_guild_ts", "activity_log", ["guild_id", "timestamp"])
    op.create_index("ix_activity_log_user_ts", "activity_log", ["user_id", "timestamp"])

    # --- activity_log_partitions ---
    op.create_table(
        "activity_log_partitions",
        sa.Column("partition_name", sa.String(64), primary_key=True),
        sa.Column("start_date", sa.Date, nullable=False),
        sa.Column("end_date", sa.Date, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_activity_log_partitions_start", "activity_log_partitions", ["start_date"],
    )

    # --- member_leveling ---
    op.create_table(
        "member_leveling",
        sa.Column("guild_id", sa.BigInteger, primary_key=True),
        sa.Column("user_id", sa.BigInteger, primary_key=True),
        sa.Column("msg_exp", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("voice_exp", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("level", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_member_leveling_guild", "member_leveling", ["guild_id"])

    # --- guild_activity_config ---
    op.create_table(
        "guild_activity_config",
        sa.Column("guild_id", sa.BigInteger, primary_key=True),
        sa.Column("anti_spam_level", sa.String(16), nullable=False, server_default="soft"),
        sa.Column(
            "excluded_message_channels", postgresql.JSONB,
            nullable=False, server_default="[]",
        ),
        sa.Column(
            "excluded_voice_channels", postgresql.JSONB,
            nullable=False, server_default="[]",
        ),
        sa.Column("exclude_muted", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("exclude_deafened", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("exclude_bots", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column(
            "remove_previous_role", sa.Boolean, nullable=False, server_default=sa.false(),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # --- leveling_roles ---
    op.create_table(
        "leveling_roles",
        sa.Column("guild_id", sa.BigInteger, primary_key=True),
        sa.Column("role_id", sa.BigInteger, primary_key=True),
        sa.Column("msg_exp_requirement", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("voice_exp_requirement", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("logic_operator", sa.String(3), nullable=False, server_default="OR"),
        sa.Column("rolling_period_days", sa.Integer, nullable=False, server_default="90"),
        sa.Column("position", sa.Integer, nullable=False, server_default="0"),
    )


def downgrade() -> None:
    """Drop all activity pipeline tables.

    Dropping the partitioned parent drops every attached partition with it.
    """
    op.drop_table("leveling_roles")
    op.drop_table("guild_activity_config")
    op.drop_index("ix_member_leveling_guild", table_name="member_leveling")
    op.drop_table("member_leveling")
    op.drop_index("ix_activity_log_partitions_start", table_name="activity_log_partitions")
    op.drop_table("activity_log_partitions")
    op.drop_index("ix_activity_log_user_ts", table_name="activity_log")
    op.drop_index("ix_activity_log_guild_ts", table_name="activity_log")
    op.drop_table("activity_log")
    op.drop_index("ix_member_daily_stats_guild_date", table_name="member_daily_stats")
    op.drop_table("member_daily_stats")
    op.drop_table("daily_stats")
