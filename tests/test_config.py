"""
tests/test_config.py — YAML infrastructure config
==================================================
"""

from __future__ import annotations

import pytest

from pulse.config import PulseConfig, load_config


class TestLoadConfig:
    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")

        cfg = load_config(path)

        assert cfg == PulseConfig()
        assert cfg.sync_interval_minutes == 5
        assert cfg.partition_months_ahead == 2
        assert cfg.partition_retention_months == 12

    def test_overrides(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "bot_prefix: '?'\nlog_batch_size: 500\npartition_retention_months: 6\n",
            encoding="utf-8",
        )

        cfg = load_config(path)

        assert cfg.bot_prefix == "?"
        assert cfg.log_batch_size == 500
        assert cfg.partition_retention_months == 6
        assert cfg.ingest_queue_size == 10_000

    def test_non_positive_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("sync_interval_minutes: 0\n", encoding="utf-8")

        with pytest.raises(ValueError, match="sync_interval_minutes"):
            load_config(path)
