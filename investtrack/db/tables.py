"""Table adapters: one class per table the data store exposes.

Each adapter implements the same four operations the managed service
offers (insert, update, search, delete) with table-specific SQL. The
set of tables is closed; :class:`~investtrack.db.schema.TableName`
picks the adapter.

Records may use the managed service's legacy column names
(``password``, ``name``, ``user_id``, ``portfolio_data``); they are
mapped onto the native columns before anything is written.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, ClassVar

from investtrack.auth.passwords import ensure_hashed
from investtrack.db.query import RawQuery, coerce_query, translate
from investtrack.db.schema import TableName
from investtrack.errors import ConflictError, StorageError, UnsupportedQueryError

if TYPE_CHECKING:
    import duckdb

    from investtrack.db.datastore import LocalDataStore

logger = logging.getLogger(__name__)

DEFAULT_DISPLAY_NAME = "User"


def _utcnow() -> datetime:
    """Return the current UTC time as a naive datetime."""
    return datetime.now(UTC).replace(tzinfo=None)


def _coerce_timestamp(value: Any, field: str) -> datetime:
    """Normalize a caller-supplied timestamp to naive UTC.

    Args:
        value: None, a datetime, or an ISO-8601 string.
        field: Field name, for error messages.

    Returns:
        The timestamp, or now if value is None.

    Raises:
        ValueError: If the value cannot be interpreted.

    """
    if value is None:
        return _utcnow()
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError as exc:
            msg = f"{field} must be an ISO-8601 timestamp, got '{value}'"
            raise ValueError(msg) from exc
    if not isinstance(value, datetime):
        msg = f"{field} must be a datetime or ISO-8601 string"
        raise ValueError(msg)
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value


def _normalize(
    record: Mapping[str, Any],
    aliases: Mapping[str, str],
    allowed: set[str],
) -> dict[str, Any]:
    """Map legacy column names onto native ones and reject unknown keys."""
    if not isinstance(record, Mapping):
        msg = f"Expected a mapping of column values, got {type(record).__name__}"
        raise ValueError(msg)
    normalized: dict[str, Any] = {}
    for key, value in record.items():
        column = aliases.get(key, key)
        if column not in allowed:
            msg = f"Unknown column '{key}'"
            raise ValueError(msg)
        if column in normalized:
            msg = f"Column '{column}' given more than once"
            raise ValueError(msg)
        normalized[column] = value
    return normalized


def _require_text(values: Mapping[str, Any], field: str) -> str:
    value = values.get(field)
    if not isinstance(value, str) or not value.strip():
        msg = f"{field} must be a non-empty string"
        raise ValueError(msg)
    return value


def _criterion(
    table: TableName,
    criteria: Mapping[str, Any],
    column: str,
    aliases: Mapping[str, str] | None = None,
) -> str:
    """Extract the single equality criterion an operation supports."""
    try:
        normalized = _normalize(criteria, aliases or {}, {column})
    except ValueError as exc:
        msg = f"{table.value} criteria must be {{'{column}': <value>}}: {exc}"
        raise UnsupportedQueryError(msg) from exc
    value = normalized.get(column)
    if not isinstance(value, str) or not value:
        msg = f"{table.value} criteria must be {{'{column}': <value>}}"
        raise UnsupportedQueryError(msg)
    return value


def _fetch_dicts(cursor: duckdb.DuckDBPyConnection) -> list[dict[str, Any]]:
    result = cursor.fetchall()
    columns = [desc[0] for desc in cursor.description]
    return [dict(zip(columns, row, strict=True)) for row in result]


def _count(cursor: duckdb.DuckDBPyConnection) -> int:
    """Read the affected-row count DuckDB returns for DML statements."""
    row = cursor.fetchone()
    return int(row[0]) if row else 0


def serialize_payload(payload: Any) -> str:
    """Return the JSON text stored for a portfolio payload.

    Strings are taken as already serialized and only validated.

    Raises:
        ValueError: If the payload is missing, invalid JSON text, or
            not JSON serializable.

    """
    if payload is None:
        msg = "payload is required"
        raise ValueError(msg)
    if isinstance(payload, str):
        try:
            json.loads(payload)
        except json.JSONDecodeError as exc:
            msg = "payload string is not valid JSON"
            raise ValueError(msg) from exc
        return payload
    try:
        return json.dumps(payload)
    except (TypeError, ValueError) as exc:
        msg = f"payload is not JSON serializable: {exc}"
        raise ValueError(msg) from exc


class TableAdapter(ABC):
    """Uniform CRUD contract over one table."""

    table: ClassVar[TableName]

    def __init__(self, store: LocalDataStore) -> None:
        self._store = store

    @property
    def name(self) -> str:
        """Caller-facing table name."""
        return self.table.value

    @abstractmethod
    def insert_row(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """Insert a row and return it with generated values filled in."""

    @abstractmethod
    def update_row(
        self,
        criteria: Mapping[str, Any],
        patch: Mapping[str, Any],
    ) -> int:
        """Apply ``patch`` to rows matching ``criteria``; return the count."""

    @abstractmethod
    def delete_rows(self, criteria: Mapping[str, Any]) -> int:
        """Delete rows matching ``criteria``; return the count."""

    def search(self, query: Any) -> list[dict[str, Any]]:
        """Return rows matching a filter, legacy query string or raw query.

        Raises:
            UnsupportedQueryError: If the query shape is not recognized,
                or is raw while raw queries are disabled.

        """
        coerced = coerce_query(self.table, query)
        if isinstance(coerced, RawQuery):
            rows = self._store.run_raw(coerced)
        else:
            native = translate(coerced)
            rows = self._store.fetch(native.sql, native.params)
        return [self._decode(row) for row in rows]

    def _decode(self, row: dict[str, Any]) -> dict[str, Any]:
        return row


class UsersTable(TableAdapter):
    """Registered accounts, unique on email."""

    table = TableName.USERS

    _ALIASES: ClassVar[dict[str, str]] = {
        "password": "password_hash",
        "name": "display_name",
    }
    _INSERT_COLUMNS: ClassVar[set[str]] = {
        "email",
        "password_hash",
        "display_name",
        "created_at",
        "updated_at",
    }
    _PATCH_COLUMNS: ClassVar[set[str]] = {"email", "password_hash", "display_name"}

    def insert_row(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """Insert an account.

        A plaintext ``password_hash`` is hashed before it is written.

        Raises:
            ConflictError: If the email is already registered.
            ValueError: If a required field is missing or invalid.

        """
        values = _normalize(record, self._ALIASES, self._INSERT_COLUMNS)
        email = _require_text(values, "email")
        password_hash = ensure_hashed(
            _require_text(values, "password_hash"),
            self._store.bcrypt_rounds,
        )
        display_name = values.get("display_name") or DEFAULT_DISPLAY_NAME
        if not isinstance(display_name, str):
            msg = "display_name must be a string"
            raise ValueError(msg)
        created_at = _coerce_timestamp(values.get("created_at"), "created_at")
        updated_at = (
            _coerce_timestamp(values["updated_at"], "updated_at")
            if values.get("updated_at") is not None
            else created_at
        )

        with self._store.transaction() as cur:
            self._ensure_available(cur, email)
            cur.execute(
                """
                INSERT INTO users
                    (email, password_hash, display_name, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                RETURNING *
                """,
                [email, password_hash, display_name, created_at, updated_at],
            )
            row = _fetch_dicts(cur)[0]

        logger.info("Inserted account %s", email)
        return row

    def update_row(
        self,
        criteria: Mapping[str, Any],
        patch: Mapping[str, Any],
    ) -> int:
        """Update an account's fields.

        Changing ``email`` moves the account and its portfolios to the
        new key in a single transaction.

        Args:
            criteria: ``{"email": <current email>}``.
            patch: Any of ``email``, ``password_hash``, ``display_name``.

        Returns:
            1 if the account was updated, 0 if it does not exist.

        Raises:
            ConflictError: If the new email is already registered.
            UnsupportedQueryError: If the criteria shape is not supported.
            ValueError: If the patch is empty or invalid.

        """
        email = _criterion(self.table, criteria, "email")
        changes = _normalize(patch, self._ALIASES, self._PATCH_COLUMNS)
        if not changes:
            msg = "patch must change at least one column"
            raise ValueError(msg)
        for column in changes:
            _require_text(changes, column)
        if "password_hash" in changes:
            changes["password_hash"] = ensure_hashed(
                changes["password_hash"], self._store.bcrypt_rounds
            )
        new_email = changes.pop("email", email)
        now = _utcnow()

        with self._store.transaction() as cur:
            if new_email != email:
                count = self._rename(cur, email, new_email, changes, now)
            else:
                assignments = "".join(f"{column} = ?, " for column in changes)
                cur.execute(
                    f"UPDATE users SET {assignments}updated_at = ? WHERE email = ?",  # noqa: S608
                    [*changes.values(), now, email],
                )
                count = _count(cur)

        logger.info("Updated %d account row(s) for %s", count, email)
        return count

    def delete_rows(self, criteria: Mapping[str, Any]) -> int:
        """Delete an account and, first, every portfolio it owns.

        Both deletes run in one transaction so a failure leaves no
        orphaned snapshot behind.

        Returns:
            Number of account rows removed.

        """
        email = _criterion(self.table, criteria, "email")
        with self._store.transaction() as cur:
            cur.execute("DELETE FROM portfolios WHERE owner_email = ?", [email])
            snapshots = _count(cur)
            cur.execute("DELETE FROM users WHERE email = ?", [email])
            count = _count(cur)

        logger.info(
            "Deleted %d account row(s) and %d portfolio row(s) for %s",
            count,
            snapshots,
            email,
        )
        return count

    @staticmethod
    def _ensure_available(cur: duckdb.DuckDBPyConnection, email: str) -> None:
        taken = cur.execute("SELECT 1 FROM users WHERE email = ?", [email]).fetchone()
        if taken:
            msg = f"Account {email} already exists"
            raise ConflictError(msg)

    def _rename(
        self,
        cur: duckdb.DuckDBPyConnection,
        old_email: str,
        new_email: str,
        changes: dict[str, Any],
        now: datetime,
    ) -> int:
        cur.execute("SELECT * FROM users WHERE email = ?", [old_email])
        rows = _fetch_dicts(cur)
        if not rows:
            return 0
        current = rows[0]
        self._ensure_available(cur, new_email)

        cur.execute(
            """
            INSERT INTO users
                (email, password_hash, display_name, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            [
                new_email,
                changes.get("password_hash", current["password_hash"]),
                changes.get("display_name", current["display_name"]),
                current["created_at"],
                now,
            ],
        )
        cur.execute(
            "UPDATE portfolios SET owner_email = ? WHERE owner_email = ?",
            [new_email, old_email],
        )
        cur.execute("DELETE FROM users WHERE email = ?", [old_email])
        logger.info("Moved account %s to %s", old_email, new_email)
        return 1


class PortfoliosTable(TableAdapter):
    """Portfolio snapshots, newest ``last_updated`` is authoritative."""

    table = TableName.PORTFOLIOS

    _ALIASES: ClassVar[dict[str, str]] = {
        "user_id": "owner_email",
        "portfolio_data": "payload",
    }
    _INSERT_COLUMNS: ClassVar[set[str]] = {"owner_email", "payload", "last_updated"}

    def insert_row(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """Insert a snapshot for an existing account.

        Raises:
            ConflictError: If no account is registered for the owner.
            ValueError: If a required field is missing or invalid.

        """
        values = _normalize(record, self._ALIASES, self._INSERT_COLUMNS)
        owner = _require_text(values, "owner_email")
        payload = serialize_payload(values.get("payload"))
        last_updated = _coerce_timestamp(values.get("last_updated"), "last_updated")

        with self._store.transaction() as cur:
            self._require_owner(cur, owner)
            row = self._insert(cur, owner, payload, last_updated)

        logger.info("Inserted portfolio snapshot for %s", owner)
        return self._decode(row)

    def update_row(
        self,
        criteria: Mapping[str, Any],
        patch: Mapping[str, Any],
    ) -> int:
        """Replace the payload of an owner's snapshots.

        Args:
            criteria: ``{"owner_email": <email>}``.
            patch: ``{"payload": <data>}``.

        Returns:
            Number of rows changed. Zero is not an error.

        """
        owner = _criterion(self.table, criteria, "owner_email", self._ALIASES)
        changes = _normalize(patch, self._ALIASES, {"payload"})
        payload = serialize_payload(changes.get("payload"))

        with self._store.transaction() as cur:
            count = self._update(cur, owner, payload, _utcnow())

        logger.info("Updated %d portfolio row(s) for %s", count, owner)
        return count

    def delete_rows(self, criteria: Mapping[str, Any]) -> int:
        """Delete an owner's snapshots. Returns the number removed."""
        owner = _criterion(self.table, criteria, "owner_email", self._ALIASES)
        with self._store.transaction() as cur:
            cur.execute("DELETE FROM portfolios WHERE owner_email = ?", [owner])
            count = _count(cur)

        logger.info("Deleted %d portfolio row(s) for %s", count, owner)
        return count

    def save(self, owner_email: str, payload: Any) -> dict[str, Any]:
        """Replace the owner's current snapshot, creating it if needed.

        Args:
            owner_email: Account email owning the snapshot.
            payload: Portfolio data (JSON-serializable or JSON text).

        Returns:
            The current snapshot after the write.

        Raises:
            ConflictError: If no account is registered for the owner.

        """
        owner = _require_text({"owner_email": owner_email}, "owner_email")
        serialized = serialize_payload(payload)
        now = _utcnow()

        with self._store.transaction() as cur:
            if self._update(cur, owner, serialized, now) == 0:
                self._require_owner(cur, owner)
                self._insert(cur, owner, serialized, now)
            cur.execute(
                "SELECT * FROM portfolios WHERE owner_email = ? "
                "ORDER BY last_updated DESC, row_id DESC LIMIT 1",
                [owner],
            )
            row = _fetch_dicts(cur)[0]

        return self._decode(row)

    def _decode(self, row: dict[str, Any]) -> dict[str, Any]:
        payload = row.get("payload")
        if isinstance(payload, str):
            try:
                row["payload"] = json.loads(payload)
            except json.JSONDecodeError as exc:
                msg = f"Portfolio payload is not valid JSON: {exc}"
                raise StorageError(msg) from exc
        return row

    @staticmethod
    def _require_owner(cur: duckdb.DuckDBPyConnection, owner: str) -> None:
        exists = cur.execute("SELECT 1 FROM users WHERE email = ?", [owner]).fetchone()
        if not exists:
            msg = f"No account registered for {owner}"
            raise ConflictError(msg)

    @staticmethod
    def _insert(
        cur: duckdb.DuckDBPyConnection,
        owner: str,
        payload: str,
        last_updated: datetime,
    ) -> dict[str, Any]:
        cur.execute(
            """
            INSERT INTO portfolios (owner_email, payload, last_updated)
            VALUES (?, ?, ?)
            RETURNING *
            """,
            [owner, payload, last_updated],
        )
        return _fetch_dicts(cur)[0]

    @staticmethod
    def _update(
        cur: duckdb.DuckDBPyConnection,
        owner: str,
        payload: str,
        last_updated: datetime,
    ) -> int:
        cur.execute(
            "UPDATE portfolios SET payload = ?, last_updated = ? WHERE owner_email = ?",
            [payload, last_updated, owner],
        )
        return _count(cur)

