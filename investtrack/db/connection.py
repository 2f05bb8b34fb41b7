"""DuckDB connection management for InvestTrack.

Handles opening the database file and creating its parent directory.
The default location is::

    ~/.investtrack/
      data/
        investment_tracker.duckdb

"""

from __future__ import annotations

from pathlib import Path

import duckdb


def get_connection(db_path: str | Path | None = None) -> duckdb.DuckDBPyConnection:
    """Open a read-write DuckDB connection for the data store.

    Args:
        db_path: Path to the .duckdb file. If None, uses in-memory database.

    Returns:
        Active DuckDB connection.

    """
    if db_path is None:
        return duckdb.connect(":memory:")

    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(str(path))
