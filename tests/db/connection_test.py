"""Tests for DuckDB connection management."""

from __future__ import annotations

import tempfile
from pathlib import Path

from investtrack.db.connection import get_connection


class TestGetConnection:
    """Tests for database connection factory."""

    def test_in_memory_connection(self):
        conn = get_connection(None)
        assert conn is not None
        conn.execute("SELECT 1").fetchone()
        conn.close()

    def test_file_connection(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = Path(tmpdir) / "test.duckdb"
            conn = get_connection(db_path)
            conn.execute("CREATE TABLE test_tbl (id INT)")
            conn.execute("INSERT INTO test_tbl VALUES (1)")
            result = conn.execute("SELECT * FROM test_tbl").fetchone()
            assert result == (1,)
            conn.close()

    def test_creates_parent_directories(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = Path(tmpdir) / "nested" / "deep" / "test.duckdb"
            conn = get_connection(db_path)
            conn.execute("SELECT 1").fetchone()
            conn.close()
            assert db_path.parent.exists()

    def test_reopened_file_keeps_data(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = Path(tmpdir) / "test.duckdb"
            conn = get_connection(db_path)
            conn.execute("CREATE TABLE test_tbl (id INT)")
            conn.execute("INSERT INTO test_tbl VALUES (7)")
            conn.close()

            conn = get_connection(db_path)
            assert conn.execute("SELECT id FROM test_tbl").fetchall() == [(7,)]
            conn.close()
