"""
pulse.services.partition_service — activity_log Partition Lifecycle
====================================================================

The only module that issues DDL at runtime.

``activity_log`` is RANGE-partitioned on ``timestamp`` with one partition
per calendar month, named ``activity_log_yYYYYmMM``.  Every partition is
also recorded in ``activity_log_partitions`` so retention can find it
without catalog queries.

Schedule (see :mod:`pulse.bot.cogs.tasks`):
    - :func:`ensure_future_partitions` — on startup and daily; covers the
      current month plus ``months_ahead`` more.
    - :func:`drop_old_partitions` — monthly; drops partitions whose start
      date is older than ``retention_months`` before today.

Several bot processes may run this concurrently: ``IF NOT EXISTS`` DDL
and the registry primary key keep it idempotent.

On non-PostgreSQL engines (dev/test SQLite) a "partition" is a plain
table with the parent's columns; the registry behaves identically.
"""

from __future__ import annotations

import calendar
import logging
import re
from dataclasses import dataclass
from datetime import UTC, date, datetime, time

from sqlalchemy import (
    Column,
    Date,
    Engine,
    MetaData,
    Table,
    bindparam,
    delete,
    select,
    text,
)
from sqlalchemy.exc import SQLAlchemyError

from pulse.database.engine import get_session
from pulse.database.models import ActivityLogPartition, activity_log

logger = logging.getLogger(__name__)

PARTITION_NAME_RE = re.compile(r"^activity_log_y\d{4}m\d{2}$")

DEFAULT_MONTHS_AHEAD = 2
DEFAULT_RETENTION_MONTHS = 12


# ---------------------------------------------------------------------------
# Month arithmetic
# ---------------------------------------------------------------------------
def month_start(d: date) -> date:
    return date(d.year, d.month, 1)


def add_months(d: date, months: int) -> date:
    """Shift *d* by *months*, clamping the day to the target month's length."""
    index = d.year * 12 + (d.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def partition_name_for(d: date) -> str:
    return f"activity_log_y{d.year:04d}m{d.month:02d}"


def validate_partition_name(name: str) -> str:
    """Return *name* unchanged, or raise ``ValueError``.

    Partition names are interpolated into DDL; nothing else may pass.
    """
    if not PARTITION_NAME_RE.match(name):
        raise ValueError(f"Invalid partition name: {name!r}")
    return name


def _utc_midnight(d: date) -> datetime:
    return datetime.combine(d, time.min, tzinfo=UTC)


def _today(now: datetime | None) -> date:
    now = now or datetime.now(UTC)
    if now.tzinfo is not None:
        now = now.astimezone(UTC)
    return now.date()


# ---------------------------------------------------------------------------
# Descriptor
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class PartitionDescriptor:
    """One monthly partition covering ``[start_date, end_date)``."""

    partition_name: str
    start_date: date
    end_date: date

    @classmethod
    def for_month(cls, d: date) -> PartitionDescriptor:
        start = month_start(d)
        return cls(
            partition_name=partition_name_for(start),
            start_date=start,
            end_date=add_months(start, 1),
        )

    def covers(self, ts: datetime) -> bool:
        if ts.tzinfo is not None:
            ts = ts.astimezone(UTC)
        return self.start_date <= ts.date() < self.end_date

    def to_dict(self) -> dict:
        return {
            "partition_name": self.partition_name,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
        }


def _descriptor(row: ActivityLogPartition) -> PartitionDescriptor:
    return PartitionDescriptor(row.partition_name, row.start_date, row.end_date)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------
_REGISTER = text("""
    INSERT INTO activity_log_partitions (partition_name, start_date, end_date)
    VALUES (:partition_name, :start_date, :end_date)
    ON CONFLICT (partition_name) DO NOTHING
""").bindparams(
    bindparam("start_date", type_=Date),
    bindparam("end_date", type_=Date),
)


def _standalone_table(name: str) -> Table:
    """A detached copy of ``activity_log``'s columns under *name*."""
    return Table(
        name,
        MetaData(),
        *(Column(c.name, c.type, nullable=c.nullable) for c in activity_log.columns),
    )


def create_partition(engine: Engine, descriptor: PartitionDescriptor) -> bool:
    """Create the partition and its registry row in one transaction.

    Returns True if the registry row is new, False if it already existed.
    """
    name = validate_partition_name(descriptor.partition_name)
    with get_session(engine) as session:
        existed = session.get(ActivityLogPartition, name) is not None
        if engine.dialect.name == "postgresql":
            start = _utc_midnight(descriptor.start_date).isoformat(sep=" ")
            end = _utc_midnight(descriptor.end_date).isoformat(sep=" ")
            session.execute(text(
                f"CREATE TABLE IF NOT EXISTS {name} PARTITION OF activity_log "
                f"FOR VALUES FROM ('{start}') TO ('{end}')"
            ))
        else:
            _standalone_table(name).create(session.connection(), checkfirst=True)
        session.execute(_REGISTER, {
            "partition_name": name,
            "start_date": descriptor.start_date,
            "end_date": descriptor.end_date,
        })
    return not existed


def ensure_future_partitions(
    engine: Engine,
    months_ahead: int = DEFAULT_MONTHS_AHEAD,
    now: datetime | None = None,
) -> dict[str, list[str]]:
    """Make sure the current month and the next *months_ahead* months exist.

    Each partition is its own transaction; one failure doesn't stop the
    rest.  Returns ``{"created": [...], "existing": [...], "failed": [...]}``.
    """
    if months_ahead < 0:
        raise ValueError("months_ahead must be >= 0")
    current = month_start(_today(now))
    result: dict[str, list[str]] = {"created": [], "existing": [], "failed": []}

    for offset in range(months_ahead + 1):
        descriptor = PartitionDescriptor.for_month(add_months(current, offset))
        try:
            if create_partition(engine, descriptor):
                result["created"].append(descriptor.partition_name)
                logger.info(
                    "Created partition %s [%s, %s)",
                    descriptor.partition_name, descriptor.start_date, descriptor.end_date,
                )
            else:
                result["existing"].append(descriptor.partition_name)
        except SQLAlchemyError:
            result["failed"].append(descriptor.partition_name)
            logger.exception(
                "Failed to create partition %s", descriptor.partition_name,
                extra={"task": "partitions"},
            )

    logger.info(
        "Partitions ensured through %s — %d created, %d existing, %d failed",
        add_months(current, months_ahead).strftime("%Y-%m"),
        len(result["created"]), len(result["existing"]), len(result["failed"]),
    )
    return result


# ---------------------------------------------------------------------------
# Drop
# ---------------------------------------------------------------------------
def retention_cutoff(retention_months: int, now: datetime | None = None) -> date:
    """Same calendar day *retention_months* before today."""
    return add_months(_today(now), -retention_months)


def drop_partition(engine: Engine, name: str) -> None:
    name = validate_partition_name(name)
    with get_session(engine) as session:
        session.execute(text(f"DROP TABLE IF EXISTS {name}"))
        session.execute(
            delete(ActivityLogPartition).where(ActivityLogPartition.partition_name == name)
        )


def drop_old_partitions(
    engine: Engine,
    retention_months: int = DEFAULT_RETENTION_MONTHS,
    now: datetime | None = None,
) -> dict[str, list[str]]:
    """Drop every registered partition starting before the retention cutoff.

    Returns ``{"dropped": [...], "failed": [...]}``.
    """
    if retention_months <= 0:
        raise ValueError("retention_months must be positive")
    cutoff = retention_cutoff(retention_months, now)

    with get_session(engine) as session:
        names = session.scalars(
            select(ActivityLogPartition.partition_name)
            .where(ActivityLogPartition.start_date < cutoff)
            .order_by(ActivityLogPartition.start_date)
        ).all()

    result: dict[str, list[str]] = {"dropped": [], "failed": []}
    for name in names:
        try:
            drop_partition(engine, name)
            result["dropped"].append(name)
            logger.info("Dropped partition %s (cutoff %s)", name, cutoff)
        except (SQLAlchemyError, ValueError):
            result["failed"].append(name)
            logger.exception("Failed to drop partition %s", name, extra={"task": "partitions"})

    logger.info(
        "Partition retention (%d months, cutoff %s): %d dropped, %d failed",
        retention_months, cutoff, len(result["dropped"]), len(result["failed"]),
    )
    return result


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def list_partitions(engine: Engine) -> list[PartitionDescriptor]:
    with get_session(engine) as session:
        rows = session.scalars(
            select(ActivityLogPartition).order_by(ActivityLogPartition.start_date)
        ).all()
        return [_descriptor(r) for r in rows]


def find_partition(engine: Engine, ts: datetime) -> PartitionDescriptor | None:
    """Registered partition covering *ts*, or None."""
    day = ts.astimezone(UTC).date() if ts.tzinfo is not None else ts.date()
    with get_session(engine) as session:
        row = session.scalars(
            select(ActivityLogPartition)
            .where(
                ActivityLogPartition.start_date <= day,
                ActivityLogPartition.end_date > day,
            )
            .limit(1)
        ).first()
        return _descriptor(row) if row is not None else None


def get_partition_stats(engine: Engine) -> list[dict]:
    """Per-partition on-disk size and approximate row count (PostgreSQL only)."""
    if engine.dialect.name != "postgresql":
        return []
    with get_session(engine) as session:
        rows = session.execute(text("""
            SELECT p.partition_name,
                   p.start_date,
                   p.end_date,
                   COALESCE(pg_total_relation_size(c.oid), 0) AS size_bytes,
                   COALESCE(c.reltuples, 0)::bigint AS approx_rows
            FROM activity_log_partitions p
            LEFT JOIN pg_class c ON c.relname = p.partition_name
            ORDER BY p.start_date
        """)).all()
    return [
        {
            "partition_name": r.partition_name,
            "start_date": r.start_date.isoformat(),
            "end_date": r.end_date.isoformat(),
            "size_bytes": int(r.size_bytes),
            "approx_rows": max(int(r.approx_rows), 0),
        }
        for r in rows
    ]
