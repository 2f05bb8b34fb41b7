"""Local stand-in for the managed table service.

:class:`LocalDataStore` owns the DuckDB connection and hands out table
adapters by name, mirroring the managed service's ``table(name)`` API::

    store = LocalDataStore(db_path).initialize()
    users = store.table("Users")
    users.insert_row({"email": "a@x.com", "password_hash": "...", "display_name": "A"})
    store.search("Portfolios", TableFilter.by_owner("a@x.com"))

Every call runs on its own cursor inside an explicit transaction, so
concurrent callers rely on DuckDB's transactional guarantees rather
than application locks.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import duckdb

from investtrack.config import DEFAULT_BCRYPT_ROUNDS
from investtrack.db.connection import get_connection
from investtrack.db.schema import TableName, initialize
from investtrack.db.tables import PortfoliosTable, TableAdapter, UsersTable
from investtrack.errors import ConflictError, StorageError, UnsupportedQueryError

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping, Sequence

    from investtrack.config import Settings
    from investtrack.db.query import RawQuery

logger = logging.getLogger(__name__)


def _is_constraint_violation(exc: duckdb.Error) -> bool:
    """Return True if a commit failed on a PRIMARY KEY or UNIQUE check."""
    return "constraint violated" in str(exc).lower()


class LocalDataStore:
    """DuckDB-backed data store addressed by table name."""

    def __init__(
        self,
        db_path: str | Path | None = None,
        *,
        allow_raw_queries: bool = False,
        bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS,
    ) -> None:
        self.db_path = Path(db_path) if db_path is not None else None
        self.allow_raw_queries = allow_raw_queries
        self.bcrypt_rounds = bcrypt_rounds
        self._conn: duckdb.DuckDBPyConnection | None = None
        self._lock = threading.Lock()
        self.users = UsersTable(self)
        self.portfolios = PortfoliosTable(self)
        self._tables: dict[TableName, TableAdapter] = {
            TableName.USERS: self.users,
            TableName.PORTFOLIOS: self.portfolios,
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> LocalDataStore:
        """Build a store from resolved settings."""
        return cls(
            settings.db_path,
            allow_raw_queries=settings.allow_raw_queries,
            bcrypt_rounds=settings.bcrypt_rounds,
        )

    # ── lifecycle ─────────────────────────────────────────────────

    def initialize(self) -> LocalDataStore:
        """Open the database and ensure the schema exists.

        Returns:
            The store itself, for chaining.

        Raises:
            StorageError: If the database cannot be opened or the schema
                cannot be created.

        """
        with self._lock:
            if self._conn is None:
                try:
                    self._conn = get_connection(self.db_path)
                except duckdb.Error as exc:
                    msg = f"Failed to open database at {self.db_path}: {exc}"
                    raise StorageError(msg) from exc
            initialize(self._conn)
        logger.info("Local data store ready at %s", self.db_path or ":memory:")
        return self

    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.info("Database connection closed")

    def __enter__(self) -> LocalDataStore:
        return self.initialize()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ── tables ────────────────────────────────────────────────────

    def table(self, name: str | TableName) -> TableAdapter:
        """Return the adapter for a table.

        Raises:
            UnsupportedTableError: If the name is not a known table.

        """
        return self._tables[TableName.resolve(name)]

    def insert_row(self, table: str, record: Mapping[str, Any]) -> dict[str, Any]:
        """Insert ``record`` into ``table``; return the stored row."""
        return self.table(table).insert_row(record)

    def update_row(
        self,
        table: str,
        criteria: Mapping[str, Any],
        patch: Mapping[str, Any],
    ) -> int:
        """Patch rows of ``table`` matching ``criteria``; return the count."""
        return self.table(table).update_row(criteria, patch)

    def search(self, table: str, query: Any) -> list[dict[str, Any]]:
        """Return rows of ``table`` matching ``query``."""
        return self.table(table).search(query)

    def delete_rows(self, table: str, criteria: Mapping[str, Any]) -> int:
        """Delete rows of ``table`` matching ``criteria``; return the count."""
        return self.table(table).delete_rows(criteria)

    # ── execution ─────────────────────────────────────────────────

    def _cursor(self) -> duckdb.DuckDBPyConnection:
        with self._lock:
            if self._conn is None:
                msg = "Data store is not initialized"
                raise StorageError(msg)
            return self._conn.cursor()

    @contextmanager
    def transaction(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """Yield a cursor inside a transaction.

        Commits on success and rolls back on any error. Engine
        constraint violations surface as ConflictError, including those
        DuckDB only detects at COMMIT when two writers race on a unique
        key. Other engine failures surface as StorageError.
        """
        cursor = self._cursor()
        try:
            cursor.begin()
            yield cursor
            cursor.commit()
        except duckdb.ConstraintException as exc:
            self._rollback(cursor)
            raise ConflictError(str(exc)) from exc
        except duckdb.TransactionException as exc:
            self._rollback(cursor)
            if _is_constraint_violation(exc):
                raise ConflictError(str(exc)) from exc
            raise StorageError(str(exc)) from exc
        except duckdb.Error as exc:
            self._rollback(cursor)
            raise StorageError(str(exc)) from exc
        except Exception:
            self._rollback(cursor)
            raise
        finally:
            cursor.close()

    @staticmethod
    def _rollback(cursor: duckdb.DuckDBPyConnection) -> None:
        # A failed COMMIT has already ended the transaction.
        with contextlib.suppress(duckdb.TransactionException):
            cursor.rollback()

    def fetch(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Run a read query and return rows as dicts."""
        with self.transaction() as cur:
            cur.execute(sql, list(params))
            result = cur.fetchall()
            columns = [desc[0] for desc in cur.description]
        return [dict(zip(columns, row, strict=True)) for row in result]

    def run_raw(self, query: RawQuery) -> list[dict[str, Any]]:
        """Run an untranslated query when transitional mode allows it.

        Raises:
            UnsupportedQueryError: If raw queries are disabled.

        """
        if not self.allow_raw_queries:
            msg = "Query matches no supported pattern and raw queries are disabled"
            raise UnsupportedQueryError(msg)
        logger.warning(
            "Running raw query without translation (transitional mode): %s",
            query.sql,
        )
        return self.fetch(query.sql, query.params)
