"""Error taxonomy for the data store.

Every error carries a ``kind`` string so the sidecar can report a
machine-readable type back to the UI layer.
"""

from __future__ import annotations


class DataStoreError(Exception):
    """Base class for all data store errors."""

    kind = "datastore"


class UnsupportedTableError(DataStoreError):
    """The caller addressed a table outside the known set."""

    kind = "unsupported_table"

    def __init__(self, table_name: object) -> None:
        self.table_name = table_name
        super().__init__(f"Table {table_name!r} not supported")


class UnsupportedQueryError(DataStoreError):
    """A query or criteria shape is outside the recognized sub-grammar."""

    kind = "unsupported_query"


class ConflictError(DataStoreError):
    """A write would violate a uniqueness or owner-reference invariant."""

    kind = "conflict"


class StorageError(DataStoreError):
    """The embedded engine failed. Never retried by this layer."""

    kind = "storage"


class MigrationError(DataStoreError):
    """The legacy migration hit a fatal condition."""

    kind = "migration"
