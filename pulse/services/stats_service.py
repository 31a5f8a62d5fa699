"""
pulse.services.stats_service — Chart-Ready Activity Aggregates
===============================================================

Read side of the pipeline.  Serves only durable data, so numbers lag the
live buffers by at most one sync interval.

``daily_stats`` (joins / leaves / mod actions) and ``member_daily_stats``
(messages / voice minutes) are merged into a single series keyed on the
**union** of their dates.  A day that appears in only one table still
shows up, with zeros for the other table's fields.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, timedelta

from sqlalchemy import Engine, func, select

from pulse.database.engine import get_session
from pulse.database.models import DailyStat, MemberDailyStat

logger = logging.getLogger(__name__)

TOP_MEMBER_METRICS = ("messages", "voice")
MAX_STATS_DAYS = 366

_EMPTY_DAY = {
    "joins": 0,
    "leaves": 0,
    "messages": 0,
    "voice_minutes": 0,
    "mod_actions": 0,
    "captcha_kicks": 0,
}


def _window_start(days: int, today: date | None) -> date:
    if days <= 0:
        raise ValueError(f"days must be positive, got {days}")
    days = min(days, MAX_STATS_DAYS)
    today = today or datetime.now(UTC).date()
    return today - timedelta(days=days)


def get_guild_stats(
    engine: Engine, guild_id: int, days: int = 30, today: date | None = None,
) -> dict:
    """Merged daily series plus totals for the last *days* days.

    Returns::

        {
          "guild_id": 1, "days": 30,
          "activity": [{"date": "2024-05-01", "joins": 2, "leaves": 0,
                        "messages": 120, "voice_minutes": 45,
                        "mod_actions": 1, "captcha_kicks": 0}, ...],
          "totals": {"joins": ..., "leaves": ..., "messages": ...,
                     "voice_minutes": ..., "mod_actions": ..., "captcha_kicks": ...},
        }
    """
    since = _window_start(days, today)
    series: dict[date, dict[str, int]] = {}

    with get_session(engine) as session:
        legacy_rows = session.execute(
            select(
                DailyStat.day,
                DailyStat.joins_count,
                DailyStat.leaves_count,
                DailyStat.mod_actions_count,
                DailyStat.captcha_kicks_count,
            )
            .where(DailyStat.guild_id == guild_id, DailyStat.day >= since)
        ).all()

        member_rows = session.execute(
            select(
                MemberDailyStat.stat_date,
                func.coalesce(func.sum(MemberDailyStat.message_count), 0),
                func.coalesce(func.sum(MemberDailyStat.vc_minutes), 0),
            )
            .where(MemberDailyStat.guild_id == guild_id, MemberDailyStat.stat_date >= since)
            .group_by(MemberDailyStat.stat_date)
        ).all()

    for day, joins, leaves, mod_actions, captcha_kicks in legacy_rows:
        entry = series.setdefault(day, dict(_EMPTY_DAY))
        entry["joins"] += joins or 0
        entry["leaves"] += leaves or 0
        entry["mod_actions"] += mod_actions or 0
        entry["captcha_kicks"] += captcha_kicks or 0

    for day, messages, voice_minutes in member_rows:
        entry = series.setdefault(day, dict(_EMPTY_DAY))
        entry["messages"] += int(messages or 0)
        entry["voice_minutes"] += int(voice_minutes or 0)

    activity = [
        {"date": day.isoformat(), **series[day]}
        for day in sorted(series)
    ]
    totals = {
        field: sum(row[field] for row in activity)
        for field in _EMPTY_DAY
    }
    return {"guild_id": guild_id, "days": days, "activity": activity, "totals": totals}


def get_top_members(
    engine: Engine,
    guild_id: int,
    days: int = 30,
    limit: int = 10,
    metric: str = "messages",
    today: date | None = None,
) -> list[dict]:
    """Most active members over the window, by messages or voice minutes."""
    if metric not in TOP_MEMBER_METRICS:
        raise ValueError(f"metric must be one of {TOP_MEMBER_METRICS}, got {metric!r}")
    since = _window_start(days, today)
    limit = max(1, min(limit, 100))

    messages = func.coalesce(func.sum(MemberDailyStat.message_count), 0).label("messages")
    voice = func.coalesce(func.sum(MemberDailyStat.vc_minutes), 0).label("voice_minutes")
    order_col = messages if metric == "messages" else voice

    with get_session(engine) as session:
        rows = session.execute(
            select(MemberDailyStat.user_id, messages, voice)
            .where(MemberDailyStat.guild_id == guild_id, MemberDailyStat.stat_date >= since)
            .group_by(MemberDailyStat.user_id)
            .order_by(order_col.desc(), MemberDailyStat.user_id)
            .limit(limit)
        ).all()

    return [
        {
            "rank": i + 1,
            "user_id": row.user_id,
            "messages": int(row.messages),
            "voice_minutes": int(row.voice_minutes),
        }
        for i, row in enumerate(rows)
    ]


def get_activity_overview(
    engine: Engine, guild_id: int, today: date | None = None,
) -> dict:
    """Headline numbers for a guild's activity page.

    ``messages_last_24h`` sums yesterday and today, since the durable
    counters are per UTC day.  The other two cover today only.
    """
    today = today or datetime.now(UTC).date()
    yesterday = today - timedelta(days=1)
    in_guild = MemberDailyStat.guild_id == guild_id

    with get_session(engine) as session:
        messages = session.scalar(
            select(func.coalesce(func.sum(MemberDailyStat.message_count), 0))
            .where(in_guild, MemberDailyStat.stat_date >= yesterday)
        )
        active = session.scalar(
            select(func.count(func.distinct(MemberDailyStat.user_id)))
            .where(
                in_guild,
                MemberDailyStat.stat_date >= today,
                MemberDailyStat.message_count > 0,
            )
        )
        voice = session.scalar(
            select(func.coalesce(func.sum(MemberDailyStat.vc_minutes), 0))
            .where(in_guild, MemberDailyStat.stat_date >= today)
        )

    return {
        "guild_id": guild_id,
        "date": today.isoformat(),
        "messages_last_24h": int(messages or 0),
        "active_members_today": int(active or 0),
        "voice_minutes_today": int(voice or 0),
    }
