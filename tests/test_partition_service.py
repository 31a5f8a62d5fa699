"""
tests/test_partition_service.py — activity_log partition lifecycle
===================================================================

Runs against SQLite, where each partition is a standalone table and the
registry behaves exactly as on PostgreSQL.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError

from pulse.services import partition_service as ps

NOW = datetime(2024, 5, 17, 10, 0, tzinfo=UTC)


class TestMonthArithmetic:
    def test_add_months_across_year_boundary(self):
        assert ps.add_months(date(2024, 11, 1), 2) == date(2025, 1, 1)
        assert ps.add_months(date(2024, 1, 15), -1) == date(2023, 12, 15)

    def test_add_months_clamps_day(self):
        assert ps.add_months(date(2024, 3, 31), -1) == date(2024, 2, 29)
        assert ps.add_months(date(2023, 3, 31), -1) == date(2023, 2, 28)

    def test_partition_name(self):
        assert ps.partition_name_for(date(2024, 5, 17)) == "activity_log_y2024m05"

    def test_descriptor_bounds(self):
        d = ps.PartitionDescriptor.for_month(date(2024, 12, 9))
        assert d == ps.PartitionDescriptor("activity_log_y2024m12", date(2024, 12, 1), date(2025, 1, 1))
        assert d.covers(datetime(2024, 12, 31, 23, 59, tzinfo=UTC))
        assert not d.covers(datetime(2025, 1, 1, tzinfo=UTC))

    @pytest.mark.parametrize("name", [
        "activity_log",
        "activity_log_y2024m5",
        "activity_log_y2024m05; DROP TABLE activity_log",
        "other_y2024m05",
    ])
    def test_invalid_names_rejected(self, name):
        with pytest.raises(ValueError):
            ps.validate_partition_name(name)


class TestEnsureFuturePartitions:
    def test_creates_current_and_ahead(self, db_engine):
        result = ps.ensure_future_partitions(db_engine, months_ahead=2, now=NOW)

        assert result["created"] == [
            "activity_log_y2024m05",
            "activity_log_y2024m06",
            "activity_log_y2024m07",
        ]
        assert result["failed"] == []
        tables = set(inspect(db_engine).get_table_names())
        assert set(result["created"]) <= tables

    def test_every_instant_through_horizon_is_covered(self, db_engine):
        ps.ensure_future_partitions(db_engine, months_ahead=2, now=NOW)

        for ts in (
            datetime(2024, 5, 1, tzinfo=UTC),
            NOW,
            datetime(2024, 6, 30, 23, 59, 59, tzinfo=UTC),
            datetime(2024, 7, 31, 23, 59, 59, tzinfo=UTC),
        ):
            assert ps.find_partition(db_engine, ts) is not None
        assert ps.find_partition(db_engine, datetime(2024, 8, 1, tzinfo=UTC)) is None

    def test_idempotent(self, db_engine):
        ps.ensure_future_partitions(db_engine, months_ahead=1, now=NOW)

        result = ps.ensure_future_partitions(db_engine, months_ahead=1, now=NOW)

        assert result["created"] == []
        assert len(result["existing"]) == 2
        assert len(ps.list_partitions(db_engine)) == 2

    def test_one_failure_does_not_stop_the_rest(self, db_engine):
        real_create = ps.create_partition

        def _flaky(engine, descriptor):
            if descriptor.partition_name.endswith("m06"):
                raise OperationalError("CREATE", {}, Exception("lock timeout"))
            return real_create(engine, descriptor)

        with patch.object(ps, "create_partition", _flaky):
            result = ps.ensure_future_partitions(db_engine, months_ahead=2, now=NOW)

        assert result["failed"] == ["activity_log_y2024m06"]
        assert len(result["created"]) == 2

    def test_postgres_issues_partition_ddl(self):
        engine = MagicMock()
        engine.dialect.name = "postgresql"
        session = MagicMock()
        session.get.return_value = None

        with patch.object(ps, "get_session") as mock_get_session:
            mock_get_session.return_value.__enter__ = MagicMock(return_value=session)
            mock_get_session.return_value.__exit__ = MagicMock(return_value=False)
            created = ps.create_partition(
                engine, ps.PartitionDescriptor.for_month(date(2024, 5, 1)),
            )

        assert created is True
        ddl = str(session.execute.call_args_list[0].args[0])
        assert "CREATE TABLE IF NOT EXISTS activity_log_y2024m05 PARTITION OF activity_log" in ddl
        assert "FROM ('2024-05-01 00:00:00+00:00') TO ('2024-06-01 00:00:00+00:00')" in ddl


class TestDropOldPartitions:
    def test_cutoff_is_same_day_n_months_back(self):
        assert ps.retention_cutoff(12, NOW) == date(2023, 5, 17)

    def test_retention_removes_registry_row_and_table(self, db_engine):
        ps.ensure_future_partitions(db_engine, months_ahead=0, now=datetime(2023, 4, 2, tzinfo=UTC))
        ps.ensure_future_partitions(db_engine, months_ahead=0, now=datetime(2023, 5, 2, tzinfo=UTC))
        ps.ensure_future_partitions(db_engine, months_ahead=0, now=NOW)

        result = ps.drop_old_partitions(db_engine, retention_months=12, now=NOW)

        # 2023-05-01 starts before the 2023-05-17 cutoff, so it goes too.
        assert result["dropped"] == ["activity_log_y2023m04", "activity_log_y2023m05"]
        remaining = [p.partition_name for p in ps.list_partitions(db_engine)]
        assert remaining == ["activity_log_y2024m05"]
        tables = set(inspect(db_engine).get_table_names())
        assert "activity_log_y2023m04" not in tables
        assert "activity_log_y2024m05" in tables

    def test_nothing_to_drop(self, db_engine):
        ps.ensure_future_partitions(db_engine, months_ahead=1, now=NOW)
        assert ps.drop_old_partitions(db_engine, 12, now=NOW) == {"dropped": [], "failed": []}

    def test_invalid_retention(self, db_engine):
        with pytest.raises(ValueError):
            ps.drop_old_partitions(db_engine, 0)


class TestReads:
    def test_partition_stats_empty_off_postgres(self, db_engine):
        assert ps.get_partition_stats(db_engine) == []
