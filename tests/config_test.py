"""Tests for environment-driven settings."""

from __future__ import annotations

from pathlib import Path

import pytest
from investtrack.config import DEFAULT_BCRYPT_ROUNDS, Settings, validate_rounds


class TestFromEnv:
    """Tests for Settings.from_env."""

    def test_defaults(self):
        settings = Settings.from_env({})
        assert settings.db_path == (
            Path.home() / ".investtrack" / "data" / "investment_tracker.duckdb"
        )
        assert settings.legacy_snapshot is None
        assert settings.bcrypt_rounds == DEFAULT_BCRYPT_ROUNDS
        assert settings.allow_raw_queries is False

    def test_data_dir(self, tmp_path):
        settings = Settings.from_env({"INVESTTRACK_DATA_DIR": str(tmp_path)})
        assert settings.db_path == tmp_path / "investment_tracker.duckdb"

    def test_db_path_overrides_data_dir(self, tmp_path):
        settings = Settings.from_env(
            {
                "INVESTTRACK_DATA_DIR": str(tmp_path / "ignored"),
                "INVESTTRACK_DB_PATH": str(tmp_path / "custom.duckdb"),
            }
        )
        assert settings.db_path == tmp_path / "custom.duckdb"

    def test_snapshot_and_rounds(self, tmp_path):
        settings = Settings.from_env(
            {
                "INVESTTRACK_LEGACY_SNAPSHOT": str(tmp_path / "userData.json"),
                "INVESTTRACK_BCRYPT_ROUNDS": "10",
            }
        )
        assert settings.legacy_snapshot == tmp_path / "userData.json"
        assert settings.bcrypt_rounds == 10

    @pytest.mark.parametrize("raw", ["1", "true", "YES", " on "])
    def test_raw_queries_enabled(self, raw):
        settings = Settings.from_env({"INVESTTRACK_ALLOW_RAW_QUERIES": raw})
        assert settings.allow_raw_queries is True

    @pytest.mark.parametrize("raw", ["", "0", "false", "off"])
    def test_raw_queries_disabled(self, raw):
        settings = Settings.from_env({"INVESTTRACK_ALLOW_RAW_QUERIES": raw})
        assert settings.allow_raw_queries is False

    def test_invalid_flag_raises(self):
        with pytest.raises(ValueError, match="INVESTTRACK_ALLOW_RAW_QUERIES"):
            Settings.from_env({"INVESTTRACK_ALLOW_RAW_QUERIES": "maybe"})

    @pytest.mark.parametrize("raw", ["twelve", "2", "40"])
    def test_invalid_rounds_raise(self, raw):
        with pytest.raises(ValueError):
            Settings.from_env({"INVESTTRACK_BCRYPT_ROUNDS": raw})


class TestValidateRounds:
    """Tests for bcrypt cost validation."""

    @pytest.mark.parametrize("rounds", [4, 12, 31])
    def test_accepts_range(self, rounds):
        assert validate_rounds(rounds) == rounds

    @pytest.mark.parametrize("rounds", [0, 3, 32])
    def test_rejects_outside_range(self, rounds):
        with pytest.raises(ValueError, match="bcrypt rounds"):
            validate_rounds(rounds)
