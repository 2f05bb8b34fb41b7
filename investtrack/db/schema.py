"""DuckDB schema definitions for InvestTrack.

Contains DDL statements for the two tables the managed service exposes:
- users: Registered accounts, unique on email
- portfolios: Portfolio snapshots owned by an account email

Caller-facing table names follow the managed service (``Users``,
``Portfolios``); :class:`TableName` maps them to the native tables.

"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

import duckdb

from investtrack.errors import StorageError, UnsupportedTableError

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


class TableName(Enum):
    """Tables exposed through the data store."""

    USERS = "Users"
    PORTFOLIOS = "Portfolios"

    @property
    def native(self) -> str:
        """Name of the backing DuckDB table."""
        return self.value.lower()

    @classmethod
    def resolve(cls, name: str | TableName) -> TableName:
        """Look up a table by its caller-facing name.

        Raises:
            UnsupportedTableError: If the name is not a known table.

        """
        if isinstance(name, TableName):
            return name
        try:
            return cls(name)
        except ValueError:
            raise UnsupportedTableError(name) from None


# ── Users ──

CREATE_USERS_SEQUENCE = "CREATE SEQUENCE IF NOT EXISTS users_row_id_seq START 1;"

CREATE_USERS = """
CREATE TABLE IF NOT EXISTS users (
    row_id         BIGINT PRIMARY KEY DEFAULT nextval('users_row_id_seq'),
    email          VARCHAR NOT NULL UNIQUE,
    password_hash  VARCHAR NOT NULL,
    display_name   VARCHAR NOT NULL,
    created_at     TIMESTAMP NOT NULL DEFAULT current_timestamp,
    updated_at     TIMESTAMP NOT NULL DEFAULT current_timestamp
);
"""

# ── Portfolios ──
# No key constraints here: payload/last_updated updates rewrite indexed
# rows, and owner_email is checked against users by the adapter.

CREATE_PORTFOLIOS_SEQUENCE = (
    "CREATE SEQUENCE IF NOT EXISTS portfolios_row_id_seq START 1;"
)

CREATE_PORTFOLIOS = """
CREATE TABLE IF NOT EXISTS portfolios (
    row_id         BIGINT NOT NULL DEFAULT nextval('portfolios_row_id_seq'),
    owner_email    VARCHAR NOT NULL,
    payload        VARCHAR NOT NULL,
    last_updated   TIMESTAMP NOT NULL DEFAULT current_timestamp
);
"""

CREATE_PORTFOLIOS_OWNER_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_portfolios_owner_email "
    "ON portfolios(owner_email);"
)

CREATE_PORTFOLIOS_UPDATED_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_portfolios_last_updated "
    "ON portfolios(last_updated);"
)

# All DDL statements in creation order
ALL_STATEMENTS: list[str] = [
    CREATE_USERS_SEQUENCE,
    CREATE_USERS,
    CREATE_PORTFOLIOS_SEQUENCE,
    CREATE_PORTFOLIOS,
    CREATE_PORTFOLIOS_OWNER_INDEX,
    CREATE_PORTFOLIOS_UPDATED_INDEX,
]


def initialize(
    conn: duckdb.DuckDBPyConnection,
    statements: Iterable[str] = ALL_STATEMENTS,
) -> None:
    """Create tables, sequences and indexes if they are absent.

    Safe to call on every startup. A failure here is fatal and is not
    retried.

    Args:
        conn: Active DuckDB connection.
        statements: DDL to run, in order.

    Raises:
        StorageError: If any statement fails.

    """
    try:
        for ddl in statements:
            conn.execute(ddl)
    except duckdb.Error as exc:
        msg = f"Failed to initialize schema: {exc}"
        raise StorageError(msg) from exc
    logger.info("Schema ready (%s)", ", ".join(t.native for t in TableName))
